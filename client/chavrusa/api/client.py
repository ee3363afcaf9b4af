"""
Chat API Client - Wire contract of the remote chat backend.

Every response is wrapped as ``{"success": true, "data": {...}}``; a 2xx
response whose ``data`` lacks the field a caller needs is reported as
``MalformedResponseError`` instead of being treated as success.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..middleware import build_event_hooks
from ..models import Persona, Reference, SessionHistory, SessionSummary, UserContext
from .errors import MalformedResponseError

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    """Assistant answer returned by ``POST /chat/message``."""
    content: str
    references: List[Reference] = field(default_factory=list)


class ChatAPIClient:
    """
    Async client for the chat backend.
    Transport failures propagate as httpx exceptions (timeouts, connection
    errors, ``HTTPStatusError`` for 4xx/5xx).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8081/api",
        timeout: float = 15.0,
        request_timeout: float = 30.0,
        log_requests: bool = True,
    ):
        """
        Initialize the API client.

        Args:
            base_url: API root, e.g. "http://localhost:8081/api"
            timeout: Timeout for session/persona/history calls in seconds
            request_timeout: Upper bound for a message send in seconds
            log_requests: Attach request/response logging hooks
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.request_timeout = request_timeout
        self.event_hooks = build_event_hooks(log_requests)

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            event_hooks=self.event_hooks,
        )

    @staticmethod
    def _json_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = {"Content-Type": "application/json"}
        if headers:
            merged.update(headers)
        return merged

    @staticmethod
    def _extract_data(payload: Any, endpoint: str) -> Dict[str, Any]:
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            raise MalformedResponseError(endpoint, "data")
        return payload["data"]

    async def get_personas(self) -> List[Persona]:
        """Fetch the available personas (``GET /chat/rabbis``)."""
        endpoint = "/chat/rabbis"
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}{endpoint}")
            resp.raise_for_status()
            data = self._extract_data(resp.json(), endpoint)

        rabbis = data.get("rabbis")
        if not isinstance(rabbis, list):
            raise MalformedResponseError(endpoint, "rabbis")
        try:
            return [Persona.model_validate(item) for item in rabbis]
        except ValidationError as e:
            logger.warning(f"Invalid persona payload: {e}")
            raise MalformedResponseError(endpoint, "rabbis") from e

    async def create_session(self, headers: Optional[Dict[str, str]] = None) -> str:
        """Request a new server-issued session id (``POST /chat/session``)."""
        endpoint = "/chat/session"
        async with self._client() as client:
            resp = await client.post(
                f"{self.base_url}{endpoint}", json={}, headers=self._json_headers(headers)
            )
            resp.raise_for_status()
            data = self._extract_data(resp.json(), endpoint)

        session_id = data.get("sessionId")
        if not session_id:
            raise MalformedResponseError(endpoint, "sessionId")
        return str(session_id)

    async def get_sessions(self, headers: Optional[Dict[str, str]] = None) -> List[SessionSummary]:
        """List the signed-in user's sessions (``GET /chat/sessions``)."""
        endpoint = "/chat/sessions"
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}{endpoint}", headers=self._json_headers(headers))
            resp.raise_for_status()
            data = self._extract_data(resp.json(), endpoint)

        sessions = data.get("sessions")
        if sessions is None:
            return []
        if not isinstance(sessions, list):
            raise MalformedResponseError(endpoint, "sessions")
        try:
            return [SessionSummary.model_validate(item) for item in sessions]
        except ValidationError as e:
            raise MalformedResponseError(endpoint, "sessions") from e

    async def get_history(
        self, session_id: str, headers: Optional[Dict[str, str]] = None
    ) -> SessionHistory:
        """Fetch full message history (``GET /chat/history/{sessionId}``)."""
        endpoint = f"/chat/history/{session_id}"
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}{endpoint}", headers=self._json_headers(headers))
            resp.raise_for_status()
            data = self._extract_data(resp.json(), endpoint)

        if not isinstance(data.get("messages"), list):
            raise MalformedResponseError(endpoint, "messages")
        try:
            return SessionHistory.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(endpoint, "messages") from e

    async def send_message(
        self,
        message: str,
        session_id: str,
        persona_id: Optional[str],
        user_context: Optional[UserContext] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> ChatReply:
        """
        Send a user message and wait for the assistant's answer.

        Args:
            message: Message text
            session_id: Target session id
            persona_id: Selected persona id
            user_context: Identity summary, None for anonymous use
            headers: Auth headers

        Returns:
            ChatReply with the answer text and its references

        Raises:
            MalformedResponseError: Response lacks ``aiResponse``
        """
        endpoint = "/chat/message"
        payload = {
            "message": message,
            "sessionId": session_id,
            "rabbi": persona_id,
            "userContext": user_context.model_dump(by_alias=True) if user_context else None,
        }

        async with self._client(timeout=self.request_timeout) as client:
            resp = await client.post(
                f"{self.base_url}{endpoint}", json=payload, headers=self._json_headers(headers)
            )
            resp.raise_for_status()
            data = self._extract_data(resp.json(), endpoint)

        ai_response = data.get("aiResponse")
        if not ai_response:
            raise MalformedResponseError(endpoint, "aiResponse")

        references = []
        for item in data.get("references") or []:
            try:
                references.append(Reference.model_validate(item))
            except ValidationError:
                logger.warning(f"Skipping malformed reference in reply: {item!r}")

        return ChatReply(content=ai_response, references=references)
