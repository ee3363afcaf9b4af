"""Models module."""

from .session import (
    DEFAULT_SESSION_TITLE, MessageStatus, Reference, Message, Session,
    SessionSummary, SessionHistory,
)
from .persona import Persona, FALLBACK_PERSONAS, simulated_reply
from .user import (
    AuthEvent, AuthStep, AuthUser, AuthTokens, UserProfile, UserContext,
    AuthResult, PersistedAuthState,
)
from .state import ConnectionStatus, StartupPhase, ChatState, PersistedChatState

__all__ = [
    'DEFAULT_SESSION_TITLE', 'MessageStatus', 'Reference', 'Message', 'Session',
    'SessionSummary', 'SessionHistory',
    'Persona', 'FALLBACK_PERSONAS', 'simulated_reply',
    'AuthEvent', 'AuthStep', 'AuthUser', 'AuthTokens', 'UserProfile', 'UserContext',
    'AuthResult', 'PersistedAuthState',
    'ConnectionStatus', 'StartupPhase', 'ChatState', 'PersistedChatState',
]
