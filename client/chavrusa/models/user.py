"""
Auth Models - Identity, tokens and profile as seen by the client.
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


class AuthStep(str, Enum):
    SIGNIN = "signin"
    SIGNUP = "signup"
    VERIFICATION = "verification"
    RESET = "reset"


class AuthUser(BaseModel):
    """User record issued by the identity backend."""
    model_config = ConfigDict(extra="allow")

    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)


class AuthTokens(BaseModel):
    """Token bundle of an identity-backend session."""
    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None  # epoch seconds
    user: Optional[AuthUser] = None

    def is_expired(self, leeway: int = 0) -> bool:
        if self.expires_at is None:
            return False
        return time.time() + leeway >= self.expires_at


class UserProfile(BaseModel):
    """Profile served by ``GET /auth/profile`` on the chat API."""
    model_config = ConfigDict(extra="allow")

    display_name: Optional[str] = None


class UserContext(BaseModel):
    """Identity summary sent along with every chat message."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")


class AuthResult(BaseModel):
    """Outcome of an auth action; errors are user-friendly messages."""
    success: bool
    error: Optional[str] = None
    requires_verification: bool = False
    data: Optional[Dict[str, Any]] = None


class PersistedAuthState(BaseModel):
    """The auth-owned persisted record. Shares no keys with the chat record."""
    user: Optional[AuthUser] = None
    session: Optional[AuthTokens] = None
    profile: Optional[UserProfile] = None
    email_verification_sent: bool = False
    password_reset_sent: bool = False
    last_email_sent: Optional[datetime] = None
    auth_step: AuthStep = AuthStep.SIGNIN
    pending_email: Optional[str] = None
