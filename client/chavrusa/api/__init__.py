"""API module - clients for the remote chat backend."""

from .client import ChatAPIClient, ChatReply
from .errors import ChatAPIError, MalformedResponseError, TranslationError
from .translation import TranslationService

__all__ = [
    'ChatAPIClient', 'ChatReply', 'TranslationService',
    'ChatAPIError', 'MalformedResponseError', 'TranslationError',
]
