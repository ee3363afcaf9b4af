"""
Auth Session - Owns the signed-in identity and its persisted record.

The chat store never reads this object's internals; it only uses the narrow
capability surface: ``get_auth_headers``, ``get_user_context``,
``is_authenticated`` and the readiness wait.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError

from ..middleware import build_event_hooks
from ..models import (
    AuthEvent, AuthResult, AuthStep, AuthTokens, AuthUser, PersistedAuthState,
    UserContext, UserProfile,
)
from ..storage import PersistedRecordStore
from .identity import IdentityBackend, IdentityError

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent, Optional[AuthTokens]], Union[None, Awaitable[None]]]

UNEXPECTED_ERROR = "An unexpected error occurred. Please try again."
RESEND_COOLDOWN_SECONDS = 60


def _friendly_sign_up_error(message: str) -> str:
    lowered = message.lower()
    if "already registered" in lowered:
        return "This email is already registered. Try signing in instead."
    if "password" in lowered:
        return "Password must be at least 6 characters long."
    if "email" in lowered:
        return "Please enter a valid email address."
    return message


def _friendly_sign_in_error(message: str) -> str:
    lowered = message.lower()
    if "invalid login credentials" in lowered:
        return "Invalid email or password. Please check your credentials and try again."
    if "email not confirmed" in lowered:
        return (
            "Please verify your email address before signing in. "
            "Check your inbox for a verification link."
        )
    if "too many requests" in lowered:
        return "Too many sign-in attempts. Please wait a moment and try again."
    return message


def _friendly_reset_error(message: str) -> str:
    lowered = message.lower()
    if "email" in lowered:
        return "Please enter a valid email address."
    if "not found" in lowered:
        return "No account found with this email address."
    return message


class AuthSession:
    """
    Client-side authentication state.

    ``initialize`` runs once per process and resolves a one-shot readiness
    event when done, whether or not it succeeded.
    """

    def __init__(
        self,
        backend: IdentityBackend,
        records: PersistedRecordStore,
        api_base_url: str = "http://localhost:8081/api",
        record_name: str = "chavrusa-auth",
        password_reset_redirect_url: Optional[str] = None,
        timeout: float = 15.0,
        log_requests: bool = True,
    ):
        """
        Initialize the auth session.

        Args:
            backend: Identity provider adapter
            records: Persisted record store; only ``record_name`` is touched
            api_base_url: Chat API root, used for ``/auth/profile``
            record_name: Name of this session's persisted record
            password_reset_redirect_url: Link target put in reset emails
            timeout: Timeout for profile calls in seconds
            log_requests: Attach request/response logging hooks
        """
        self.backend = backend
        self.records = records
        self.api_base_url = api_base_url.rstrip("/")
        self.record_name = record_name
        self.password_reset_redirect_url = password_reset_redirect_url
        self.timeout = timeout
        self.event_hooks = build_event_hooks(log_requests)

        self.user: Optional[AuthUser] = None
        self.tokens: Optional[AuthTokens] = None
        self.profile: Optional[UserProfile] = None
        self.loading = False
        self.error: Optional[str] = None
        self.initialized = False

        self.email_verification_sent = False
        self.password_reset_sent = False
        self.last_email_sent: Optional[datetime] = None
        self.auth_step = AuthStep.SIGNIN
        self.pending_email: Optional[str] = None

        self._ready = asyncio.Event()
        self._init_task: Optional[asyncio.Task] = None
        self._listeners: List[AuthListener] = []

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _to_record(self) -> PersistedAuthState:
        return PersistedAuthState(
            user=self.user,
            session=self.tokens,
            profile=self.profile,
            email_verification_sent=self.email_verification_sent,
            password_reset_sent=self.password_reset_sent,
            last_email_sent=self.last_email_sent,
            auth_step=self.auth_step,
            pending_email=self.pending_email,
        )

    async def _save(self) -> None:
        await self.records.save_record(self.record_name, self._to_record().model_dump(mode="json"))

    async def restore(self) -> None:
        """Rehydrate from this session's own persisted record."""
        data = await self.records.load_record(self.record_name)
        if data is None:
            logger.info("No persisted auth state found")
            return

        try:
            persisted = PersistedAuthState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Discarding invalid persisted auth state: {e}")
            return

        self.user = persisted.user
        self.tokens = persisted.session
        self.profile = persisted.profile
        self.email_verification_sent = persisted.email_verification_sent
        self.password_reset_sent = persisted.password_reset_sent
        self.last_email_sent = persisted.last_email_sent
        self.auth_step = persisted.auth_step
        self.pending_email = persisted.pending_email
        self.backend.restore(self.tokens)

        logger.info(
            "Auth state restored",
            extra={"extra_fields": {"has_user": self.user is not None, "has_session": self.tokens is not None}}
        )

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Validate the current session with the backend. Safe to call repeatedly."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._run_initialize())
        await asyncio.shield(self._init_task)

    async def _run_initialize(self) -> None:
        self.loading = True
        try:
            tokens = await self.backend.get_session()
            if tokens:
                await self.set_session(tokens)
                await self._emit(AuthEvent.INITIAL_SESSION, tokens)
            elif self.tokens:
                logger.info("Persisted session is no longer valid, clearing auth")
                await self.clear_auth()
        except IdentityError as e:
            logger.error(f"Error getting session: {e.message}")
            if e.status_code in (401, 403):
                await self.clear_auth()
            self.error = e.message
        except Exception as e:
            logger.error(f"Error initializing auth: {e}", exc_info=True)
            self.error = str(e)
        finally:
            self.initialized = True
            self.loading = False
            self._ready.set()
            logger.info(
                "Auth initialization complete",
                extra={"extra_fields": {"authenticated": self.is_authenticated(), "error": self.error}}
            )

    async def wait_until_initialized(self, timeout: Optional[float] = None) -> bool:
        """Wait for ``initialize`` to finish. Returns False on timeout."""
        if self.initialized:
            return True
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener for auth events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: AuthEvent, tokens: Optional[AuthTokens]) -> None:
        logger.info(
            f"Auth state changed: {event.value}",
            extra={"extra_fields": {"email": self.user.email if self.user else None}}
        )
        for listener in list(self._listeners):
            try:
                result = listener(event, tokens)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Auth listener failed for {event.value}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    async def set_session(self, tokens: Optional[AuthTokens]) -> None:
        """Adopt a token bundle and fetch the matching profile."""
        self.tokens = tokens
        self.user = tokens.user if tokens else None
        if self.user:
            await self.fetch_profile()
        await self._save()

    async def clear_auth(self) -> None:
        """Reset identity and verification state. Touches only the auth record."""
        self.user = None
        self.tokens = None
        self.profile = None
        self.error = None
        self.email_verification_sent = False
        self.password_reset_sent = False
        self.last_email_sent = None
        self.auth_step = AuthStep.SIGNIN
        self.pending_email = None
        await self._save()

    def set_auth_step(self, step: AuthStep, email: Optional[str] = None) -> None:
        self.auth_step = AuthStep(step)
        self.pending_email = email
        self.error = None

    def clear_error(self) -> None:
        self.error = None

    def _fail(self, message: str) -> AuthResult:
        self.error = message
        self.loading = False
        return AuthResult(success=False, error=message)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def sign_up(
        self, email: str, password: str, user_data: Optional[Dict[str, Any]] = None
    ) -> AuthResult:
        self.loading = True
        self.error = None
        try:
            result = await self.backend.sign_up(email, password, user_data or {})
        except IdentityError as e:
            return self._fail(_friendly_sign_up_error(e.message))
        except Exception as e:
            logger.error(f"Sign up error: {e}", exc_info=True)
            return self._fail(UNEXPECTED_ERROR)

        self.loading = False
        self.email_verification_sent = True
        self.last_email_sent = datetime.now(timezone.utc)
        self.auth_step = AuthStep.VERIFICATION
        self.pending_email = email

        session = result.get("session")
        if session:
            await self.set_session(session)
            await self._emit(AuthEvent.SIGNED_IN, session)
        else:
            await self._save()

        return AuthResult(
            success=True,
            requires_verification=session is None,
            data={"user": result.get("user"), "session": session},
        )

    async def sign_in(self, email: str, password: str) -> AuthResult:
        self.loading = True
        self.error = None
        try:
            tokens = await self.backend.sign_in_with_password(email, password)
        except IdentityError as e:
            friendly = _friendly_sign_in_error(e.message)
            if "email not confirmed" in e.message.lower():
                self.auth_step = AuthStep.VERIFICATION
                self.pending_email = email
                self.email_verification_sent = True
            return self._fail(friendly)
        except Exception as e:
            logger.error(f"Sign in error: {e}", exc_info=True)
            return self._fail(UNEXPECTED_ERROR)

        self.loading = False
        self.auth_step = AuthStep.SIGNIN
        self.email_verification_sent = False
        self.pending_email = None
        await self.set_session(tokens)
        await self._emit(AuthEvent.SIGNED_IN, tokens)
        return AuthResult(success=True, data={"user": tokens.user, "session": tokens})

    async def sign_out(self) -> AuthResult:
        self.loading = True
        self.error = None
        try:
            await self.backend.sign_out()
        except IdentityError as e:
            return self._fail(e.message)

        await self.clear_auth()
        self.loading = False
        await self._emit(AuthEvent.SIGNED_OUT, None)
        return AuthResult(success=True)

    async def refresh_session(self) -> AuthResult:
        try:
            tokens = await self.backend.refresh_session(
                self.tokens.refresh_token if self.tokens else None
            )
        except IdentityError as e:
            logger.warning(f"Token refresh failed: {e.message}")
            return AuthResult(success=False, error=e.message)

        await self.set_session(tokens)
        await self._emit(AuthEvent.TOKEN_REFRESHED, tokens)
        return AuthResult(success=True)

    async def resend_verification_email(self, email: Optional[str] = None) -> AuthResult:
        self.loading = True
        self.error = None

        email_to_use = email or self.pending_email
        if not email_to_use:
            return self._fail("No email address found")

        try:
            await self.backend.resend_signup(email_to_use)
        except IdentityError as e:
            return self._fail(e.message)

        self.loading = False
        self.last_email_sent = datetime.now(timezone.utc)
        await self._save()
        return AuthResult(success=True)

    async def reset_password(self, email: str) -> AuthResult:
        self.loading = True
        self.error = None
        try:
            await self.backend.reset_password_for_email(email, self.password_reset_redirect_url)
        except IdentityError as e:
            return self._fail(_friendly_reset_error(e.message))
        except Exception as e:
            logger.error(f"Reset password error: {e}", exc_info=True)
            return self._fail(UNEXPECTED_ERROR)

        self.loading = False
        self.password_reset_sent = True
        self.last_email_sent = datetime.now(timezone.utc)
        self.auth_step = AuthStep.RESET
        self.pending_email = email
        await self._save()
        return AuthResult(success=True)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    @staticmethod
    def _unwrap_profile(payload: Any) -> Dict[str, Any]:
        # Chat API wraps as {"success", "data": {"profile": {...}}}
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"].get("profile", payload["data"])
        return payload if isinstance(payload, dict) else {}

    async def fetch_profile(self) -> None:
        if not self.user:
            return
        try:
            async with httpx.AsyncClient(timeout=self.timeout, event_hooks=self.event_hooks) as client:
                resp = await client.get(f"{self.api_base_url}/auth/profile", headers=self.get_auth_headers())
            if resp.is_success:
                self.profile = UserProfile.model_validate(self._unwrap_profile(resp.json()))
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error(f"Error fetching profile: {e}")

    async def update_profile(self, updates: Dict[str, Any]) -> AuthResult:
        self.loading = True
        self.error = None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, event_hooks=self.event_hooks) as client:
                resp = await client.put(
                    f"{self.api_base_url}/auth/profile", json=updates, headers=self.get_auth_headers()
                )
            if not resp.is_success:
                return self._fail(resp.text)
            self.profile = UserProfile.model_validate(self._unwrap_profile(resp.json()))
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error(f"Update profile error: {e}")
            return self._fail(str(e))

        self.loading = False
        await self._save()
        return AuthResult(success=True, data={"profile": self.profile.model_dump()})

    # ------------------------------------------------------------------
    # Capability surface
    # ------------------------------------------------------------------

    def get_access_token(self) -> Optional[str]:
        return self.tokens.access_token if self.tokens else None

    def is_authenticated(self) -> bool:
        return bool(self.get_access_token())

    def get_auth_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.get_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def get_user_context(self) -> Optional[UserContext]:
        """Identity summary sent with chat messages; None when anonymous."""
        if not self.is_authenticated():
            return None
        return UserContext(
            id=self.user.id if self.user else None,
            email=self.user.email if self.user else None,
            display_name=self.profile.display_name if self.profile else None,
        )

    def get_verification_state(self) -> Dict[str, Any]:
        return {
            "email_verification_sent": self.email_verification_sent,
            "password_reset_sent": self.password_reset_sent,
            "last_email_sent": self.last_email_sent,
            "auth_step": self.auth_step,
            "pending_email": self.pending_email,
        }

    def can_resend_email(self) -> bool:
        """Verification and reset emails share a 60 second cooldown."""
        if not self.last_email_sent:
            return True
        last_sent = self.last_email_sent
        if last_sent.tzinfo is None:
            last_sent = last_sent.replace(tzinfo=timezone.utc)
        elapsed = (datetime.now(timezone.utc) - last_sent).total_seconds()
        return elapsed >= RESEND_COOLDOWN_SECONDS

    async def close(self) -> None:
        """Stop a still-running initialization."""
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
            try:
                await self._init_task
            except asyncio.CancelledError:
                pass
