"""ChavrusaAI client - chat session store and its collaborators."""

__version__ = "1.0.0"
