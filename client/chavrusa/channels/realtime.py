"""
Realtime Channel - socket.io connection to the chat server.

Inbound push events are parsed and handed to an injected handler target
(the session store); outbound intents are emitted only while connected.
The only state kept here is the id of the joined session.
"""

import logging
from typing import Any, Dict, Optional, Protocol, Tuple

import socketio
from pydantic import ValidationError
from socketio.exceptions import ConnectionError as SocketConnectionError, SocketIOError

from ..models import Message, MessageStatus, Reference

logger = logging.getLogger(__name__)


class RealtimeHandlers(Protocol):
    """Mutator entry points invoked for server-pushed events."""

    def add_received_message(self, message: Message, session_id: Optional[str] = None) -> None: ...

    def set_typing(self, is_typing: bool) -> None: ...

    def update_message_status(
        self, message_id: str, status: MessageStatus, session_id: Optional[str] = None
    ) -> None: ...

    def add_reference(self, reference: Reference, session_id: Optional[str] = None) -> None: ...


class RealtimeChannel:
    """
    Wrapper around ``socketio.AsyncClient``.
    Reconnects automatically and re-joins the last joined session on connect.
    """

    def __init__(
        self,
        url: str = "http://localhost:8081",
        reconnection_attempts: int = 5,
        reconnection_delay: float = 1.0,
        client: Optional[socketio.AsyncClient] = None,
    ):
        """
        Initialize the channel.

        Args:
            url: Server URL
            reconnection_attempts: Reconnect attempts before giving up
            reconnection_delay: Initial delay between attempts in seconds
            client: Pre-built socket.io client, mainly for tests
        """
        self.url = url
        self.session_id: Optional[str] = None
        self.handlers: Optional[RealtimeHandlers] = None
        self.sio = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=reconnection_attempts,
            reconnection_delay=reconnection_delay,
        )
        self._register_events()

    def bind(self, handlers: RealtimeHandlers) -> None:
        """Set the target that receives push events."""
        self.handlers = handlers

    def _register_events(self) -> None:
        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("connect_error", self._on_connect_error)
        self.sio.on("message-received", self._on_message_received)
        self.sio.on("typing-started", self._on_typing_started)
        self.sio.on("typing-stopped", self._on_typing_stopped)
        self.sio.on("message-status-update", self._on_message_status_update)
        self.sio.on("reference-found", self._on_reference_found)
        self.sio.on("session-update", self._on_session_update)
        self.sio.on("user-joined", self._on_user_joined)
        self.sio.on("user-left", self._on_user_left)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Connect to the server. Failures are logged, never raised."""
        if self.is_connected():
            return True
        try:
            await self.sio.connect(self.url, transports=["websocket", "polling"])
            return True
        except (SocketConnectionError, ValueError) as e:
            logger.warning(f"WebSocket connection failed: {e}")
            return False

    async def disconnect(self) -> None:
        if self.is_connected():
            await self.sio.disconnect()

    def is_connected(self) -> bool:
        return bool(self.sio.connected)

    async def _on_connect(self) -> None:
        logger.info("WebSocket connected")
        if self.session_id:
            await self.join_session(self.session_id)

    async def _on_disconnect(self, *args) -> None:
        logger.info("WebSocket disconnected")

    async def _on_connect_error(self, data=None) -> None:
        logger.error(f"WebSocket connection error: {data}")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _emit(self, event: str, data: Any) -> bool:
        if not self.is_connected():
            logger.debug(f"Skipping {event}: not connected")
            return False
        try:
            await self.sio.emit(event, data)
            return True
        except SocketIOError as e:
            logger.warning(f"Failed to emit {event}: {e}")
            return False

    async def join_session(self, session_id: str) -> None:
        if not session_id:
            return
        self.session_id = session_id
        await self._emit("join-session", session_id)

    async def leave_session(self) -> None:
        if not self.session_id:
            return
        session_id, self.session_id = self.session_id, None
        await self._emit("leave-session", session_id)

    async def start_typing(self, user: str = "user") -> None:
        await self._emit("typing-start", {"user": user, "sessionId": self.session_id})

    async def stop_typing(self, user: str = "user") -> None:
        await self._emit("typing-stop", {"user": user, "sessionId": self.session_id})

    async def update_message_status(self, message_id: str, status: MessageStatus) -> None:
        await self._emit("message-status", {
            "messageId": message_id,
            "status": MessageStatus(status).value,
            "sessionId": self.session_id,
        })

    # ------------------------------------------------------------------
    # Payload parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_message(payload: Any) -> Tuple[Optional[Message], Optional[str]]:
        """Convert a ``message-received`` payload into (message, session id)."""
        if not isinstance(payload, dict) or not payload.get("content"):
            return None, None
        data = {"isUser": False, **payload}
        try:
            return Message.model_validate(data), payload.get("sessionId")
        except ValidationError as e:
            logger.warning(f"Ignoring malformed pushed message: {e}")
            return None, None

    @staticmethod
    def parse_reference(payload: Any) -> Tuple[Optional[Reference], Optional[str]]:
        if not isinstance(payload, dict):
            return None, None
        try:
            return Reference.model_validate(payload), payload.get("sessionId")
        except ValidationError as e:
            logger.warning(f"Ignoring malformed pushed reference: {e}")
            return None, None

    @staticmethod
    def parse_status_update(payload: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(payload, dict) or not payload.get("messageId"):
            return None
        try:
            status = MessageStatus(payload.get("status"))
        except ValueError:
            logger.warning(f"Ignoring unknown message status: {payload.get('status')!r}")
            return None
        return {
            "message_id": payload["messageId"],
            "status": status,
            "session_id": payload.get("sessionId"),
        }

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _on_message_received(self, payload) -> None:
        message, session_id = self.parse_message(payload)
        if message and self.handlers:
            self.handlers.add_received_message(message, session_id)

    async def _on_typing_started(self, payload=None) -> None:
        if self.handlers:
            self.handlers.set_typing(True)

    async def _on_typing_stopped(self, payload=None) -> None:
        if self.handlers:
            self.handlers.set_typing(False)

    async def _on_message_status_update(self, payload) -> None:
        update = self.parse_status_update(payload)
        if update and self.handlers:
            self.handlers.update_message_status(**update)

    async def _on_reference_found(self, payload) -> None:
        reference, session_id = self.parse_reference(payload)
        if reference and self.handlers:
            self.handlers.add_reference(reference, session_id)

    async def _on_session_update(self, payload) -> None:
        logger.info(f"Session update: {payload}")

    async def _on_user_joined(self, payload=None) -> None:
        logger.info(f"User joined session at {(payload or {}).get('timestamp')}")

    async def _on_user_left(self, payload=None) -> None:
        logger.info(f"User left session at {(payload or {}).get('timestamp')}")
