"""Core module - notices and logging setup.

The session store is imported from ``chavrusa.core.session_store``; it
depends on the API and auth packages, which in turn log through this package.
"""

from .notices import Notice, NoticeCenter

__all__ = ['Notice', 'NoticeCenter']
