"""Auth module - identity backend adapter and client auth session."""

from .identity import (
    AnonymousIdentityBackend, IdentityBackend, IdentityError, SupabaseIdentityBackend,
)
from .session import AuthSession

__all__ = ['AnonymousIdentityBackend', 'IdentityBackend', 'IdentityError', 'SupabaseIdentityBackend', 'AuthSession']
