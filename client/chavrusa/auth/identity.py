"""
Identity Backend - Capability interface over the third-party auth service.

``SupabaseIdentityBackend`` talks to the GoTrue REST API that backs Supabase
auth. It only adapts requests and responses; token issuance, verification
emails and password rules all live on the service.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..middleware import build_event_hooks
from ..models import AuthTokens, AuthUser

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Raised when the identity backend rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class IdentityBackend(ABC):
    """Operations the client needs from an identity provider."""

    def restore(self, tokens: Optional[AuthTokens]) -> None:
        """Seed the backend with persisted tokens. No-op by default."""
        pass

    @abstractmethod
    async def get_session(self) -> Optional[AuthTokens]:
        """Return the backend's current session, or None when signed out."""
        pass

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Register a new user.

        Returns:
            Dict with ``user`` and ``session`` (session is None until the
            email is verified)
        """
        pass

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthTokens:
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def resend_signup(self, email: str) -> None:
        pass

    @abstractmethod
    async def refresh_session(self, refresh_token: Optional[str] = None) -> AuthTokens:
        pass


class SupabaseIdentityBackend(IdentityBackend):
    """GoTrue REST client. Holds the current session in memory."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        timeout: float = 15.0,
        log_requests: bool = True,
    ):
        """
        Initialize the backend.

        Args:
            url: Supabase project URL, e.g. "https://xyz.supabase.co"
            anon_key: Public anon key sent as ``apikey``
            timeout: Request timeout in seconds
            log_requests: Attach request/response logging hooks
        """
        self.auth_url = f"{url.rstrip('/')}/auth/v1"
        self.anon_key = anon_key
        self.timeout = timeout
        self.event_hooks = build_event_hooks(log_requests)
        self._session: Optional[AuthTokens] = None

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token or self.anon_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            payload = resp.json()
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        if isinstance(payload, dict):
            for key in ("msg", "error_description", "message", "error"):
                if payload.get(key):
                    return str(payload[key])
        return f"HTTP {resp.status_code}"

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, event_hooks=self.event_hooks) as client:
                resp = await client.request(
                    method,
                    f"{self.auth_url}{path}",
                    json=json,
                    params=params,
                    headers=self._headers(access_token),
                )
        except httpx.HTTPError as e:
            raise IdentityError(f"Identity backend unreachable: {e}") from e

        if resp.status_code >= 400:
            raise IdentityError(self._error_message(resp), resp.status_code)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise IdentityError("Identity backend returned invalid JSON") from e

    def _store_session(self, payload: Dict[str, Any]) -> AuthTokens:
        if payload.get("expires_in") and not payload.get("expires_at"):
            payload = {**payload, "expires_at": int(time.time()) + int(payload["expires_in"])}
        try:
            tokens = AuthTokens.model_validate(payload)
        except ValidationError as e:
            raise IdentityError("Identity backend returned an invalid session") from e
        self._session = tokens
        return tokens

    def restore(self, tokens: Optional[AuthTokens]) -> None:
        self._session = tokens

    async def get_session(self) -> Optional[AuthTokens]:
        if self._session is None:
            return None

        if self._session.is_expired(leeway=10):
            if not self._session.refresh_token:
                self._session = None
                return None
            return await self.refresh_session(self._session.refresh_token)

        # Validate the token against the service
        user = await self._request("GET", "/user", access_token=self._session.access_token)
        self._session = self._session.model_copy(update={"user": AuthUser.model_validate(user)})
        return self._session

    async def sign_up(
        self, email: str, password: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        payload = await self._request(
            "POST", "/signup",
            json={"email": email, "password": password, "data": data or {}},
        )

        # With email confirmation on, GoTrue returns the bare user
        if payload.get("access_token"):
            tokens = self._store_session(payload)
            return {"user": tokens.user, "session": tokens}
        user = payload.get("user") or payload
        return {
            "user": AuthUser.model_validate(user) if user.get("id") else None,
            "session": None,
        }

    async def sign_in_with_password(self, email: str, password: str) -> AuthTokens:
        payload = await self._request(
            "POST", "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._store_session(payload)

    async def sign_out(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        await self._request("POST", "/logout", access_token=session.access_token)

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request("POST", "/recover", json={"email": email}, params=params)

    async def resend_signup(self, email: str) -> None:
        await self._request("POST", "/resend", json={"type": "signup", "email": email})

    async def refresh_session(self, refresh_token: Optional[str] = None) -> AuthTokens:
        token = refresh_token or (self._session.refresh_token if self._session else None)
        if not token:
            raise IdentityError("No refresh token available")

        payload = await self._request(
            "POST", "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": token},
        )
        return self._store_session(payload)


class AnonymousIdentityBackend(IdentityBackend):
    """Used when no identity provider is configured; every user is anonymous."""

    async def get_session(self) -> Optional[AuthTokens]:
        return None

    async def sign_up(
        self, email: str, password: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        raise IdentityError("Authentication is not configured")

    async def sign_in_with_password(self, email: str, password: str) -> AuthTokens:
        raise IdentityError("Authentication is not configured")

    async def sign_out(self) -> None:
        return None

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        raise IdentityError("Authentication is not configured")

    async def resend_signup(self, email: str) -> None:
        raise IdentityError("Authentication is not configured")

    async def refresh_session(self, refresh_token: Optional[str] = None) -> AuthTokens:
        raise IdentityError("Authentication is not configured")
