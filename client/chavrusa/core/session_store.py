"""
Session Store - Multi-session chat state and its synchronization protocol.

Owns the session map, the current session, the selected persona and the
send/abort/retry protocol. State is a frozen ``ChatState`` snapshot that is
replaced as a whole on every action, so interleaved coroutines never observe
a half-applied update.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Set

import httpx
from pydantic import ValidationError

from ..api.errors import ChatAPIError
from ..config import Settings, settings as default_settings
from ..models import (
    DEFAULT_SESSION_TITLE, FALLBACK_PERSONAS, ChatState, ConnectionStatus, Message,
    MessageStatus, PersistedChatState, Persona, Reference, Session, SessionSummary,
    StartupPhase, simulated_reply,
)
from ..models.session import new_local_session_id, utcnow
from ..storage import PersistedRecordStore
from .notices import NoticeCenter

if TYPE_CHECKING:
    from ..api import ChatAPIClient
    from ..auth import AuthSession
    from ..channels import RealtimeChannel

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000

StateListener = Callable[[ChatState], None]

# Failures recovered locally; anything else during startup drops to offline mode
RECOVERABLE_ERRORS = (httpx.HTTPError, ChatAPIError)


@dataclass
class AbortHandle:
    """Cancellation handle of one in-flight message send."""
    message_id: str
    session_id: str
    task: Optional[asyncio.Future] = None
    aborted: bool = False

    def abort(self) -> bool:
        if self.task is None or self.task.done():
            return False
        self.aborted = True
        self.task.cancel()
        return True


class SessionStore:
    """
    Client-side chat store.

    Collaborators are injected; the store reads auth only through
    ``get_auth_headers``, ``get_user_context`` and ``is_authenticated``.
    """

    def __init__(
        self,
        api: "ChatAPIClient",
        auth: "AuthSession",
        realtime: "RealtimeChannel",
        records: PersistedRecordStore,
        notices: Optional[NoticeCenter] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the store.

        Args:
            api: Remote chat API client
            auth: Auth session (read-only use)
            realtime: Realtime channel for joins; push events arrive via ``bind``
            records: Persisted record store; only the chat record is touched
            notices: Notice center for user-visible messages
            settings: Client settings
        """
        self.api = api
        self.auth = auth
        self.realtime = realtime
        self.records = records
        self.notices = notices or NoticeCenter()
        self.settings = settings or default_settings

        self._state = ChatState()
        self._listeners: List[StateListener] = []
        self._rehydrated = asyncio.Event()
        self._init_task: Optional[asyncio.Task] = None
        self._session_creation: Optional[asyncio.Task] = None
        self._in_flight: Dict[str, AbortHandle] = {}
        self._background: Set[asyncio.Task] = set()
        self._persist_task: Optional[asyncio.Task] = None
        self._persist_dirty = False
        self._offline_notice_shown = False

    # ------------------------------------------------------------------
    # State plumbing
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChatState:
        return self._state

    def get_state(self) -> ChatState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called with every new snapshot."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)

        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

        # Writing before rehydration would overwrite the stored record
        if self._state.rehydrated:
            self._schedule_persist()

    def _put_session(self, session: Session, **changes: Any) -> None:
        self._set(sessions={**self._state.sessions, session.id: session}, **changes)

    def _update_session(
        self, session_id: str, update: Callable[[Session], Session], **changes: Any
    ) -> bool:
        session = self._state.sessions.get(session_id)
        if session is None:
            if changes:
                self._set(**changes)
            return False
        self._put_session(update(session), **changes)
        return True

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _enter_phase(self, phase: StartupPhase) -> None:
        previous = self._state.startup_phase
        self._set(startup_phase=phase)
        logger.info(
            f"Startup phase: {previous.value} -> {phase.value}",
            extra={"extra_fields": {"from": previous.value, "to": phase.value}}
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _schedule_persist(self) -> None:
        self._persist_dirty = True
        if self._persist_task is not None and not self._persist_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the next flush() writes the snapshot
            return
        self._persist_task = loop.create_task(self._persist_loop())

    async def _persist_loop(self) -> None:
        while self._persist_dirty:
            self._persist_dirty = False
            await self._write_record()

    async def _write_record(self) -> None:
        record = PersistedChatState.from_state(self._state).to_record()
        if not await self.records.save_record(self.settings.chat_record_name, record):
            logger.warning("Failed to persist chat state")

    async def flush(self) -> None:
        """Write the current snapshot now, after any scheduled write."""
        if self._persist_task is not None and not self._persist_task.done():
            await self._persist_task
        if self._state.rehydrated:
            self._persist_dirty = False
            await self._write_record()

    async def rehydrate(self) -> None:
        """
        Restore sessions, current session and selected persona from the
        chat record, then release anyone waiting on rehydration.

        Sends that were in flight when the record was written cannot have
        completed, so their messages come back as ``failed``.
        """
        if self._state.rehydrated:
            return

        restored: Optional[PersistedChatState] = None
        data = await self.records.load_record(self.settings.chat_record_name)
        if data is not None:
            try:
                restored = PersistedChatState.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Discarding invalid persisted chat state: {e}")

        changes: Dict[str, Any] = {"rehydrated": True}
        if restored is not None:
            sessions = {
                session_id: self._fail_stale_sends(session)
                for session_id, session in restored.sessions.items()
            }
            # Sessions created while startup ran without the record win over stored ones
            sessions.update(self._state.sessions)

            current_id = self._state.current_session_id or restored.current_session_id
            if current_id not in sessions:
                current_id = next(iter(sessions), None)

            changes.update(
                sessions=sessions,
                current_session_id=current_id,
                selected_persona_id=self._state.selected_persona_id or restored.selected_persona_id,
            )

        self._set(**changes)
        self._rehydrated.set()
        logger.info(
            "Chat state rehydrated",
            extra={"extra_fields": {
                "sessions": len(self._state.sessions),
                "current_session_id": self._state.current_session_id,
            }}
        )

    @staticmethod
    def _fail_stale_sends(session: Session) -> Session:
        if not any(m.status == MessageStatus.SENDING for m in session.messages):
            return session
        return session.model_copy(update={
            "messages": tuple(
                m.with_status(MessageStatus.FAILED) if m.status == MessageStatus.SENDING else m
                for m in session.messages
            ),
        })

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize_app(self) -> None:
        """
        Bring the store to ``ready``.

        Only the first call does the work; concurrent callers await the same
        run. A run that ended in offline mode may be retried by calling again.
        """
        if self._state.initialized:
            return
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.ensure_future(self._run_initialize())
        await asyncio.shield(self._init_task)

    async def _run_initialize(self) -> None:
        started_at = time.monotonic()

        self._enter_phase(StartupPhase.WAITING_FOR_REHYDRATION)
        await self._wait_for_rehydration()

        self._set(is_loading=True)
        try:
            self._spawn(self.realtime.connect())
            await self._load_personas()

            self._enter_phase(StartupPhase.WAITING_FOR_AUTH)
            await self._wait_for_auth()

            self._enter_phase(StartupPhase.LOADING_REMOTE_DATA)
            if self.auth.is_authenticated():
                try:
                    summaries = await self.api.get_sessions(self.auth.get_auth_headers())
                    if summaries:
                        self._merge_summaries(summaries)
                except RECOVERABLE_ERRORS as e:
                    logger.warning(f"Could not load session list during startup: {e}")

            self.validate_session_states(self._state.personas)
            self._set(initialized=True, is_loading=False)
            self._enter_phase(StartupPhase.READY)
        except Exception as e:
            logger.error(f"Failed to initialize app: {e}", exc_info=True)
            self._set(
                personas=tuple(FALLBACK_PERSONAS),
                sessions={},
                current_session_id=None,
                is_loading=False,
                connection_status=ConnectionStatus.DEGRADED,
            )
            self._enter_phase(StartupPhase.DEGRADED)
            self.notices.error("Backend unavailable. Using offline mode.")
            return

        logger.info(
            f"App initialization complete in {(time.monotonic() - started_at) * 1000:.0f}ms",
            extra={"extra_fields": {
                "sessions": len(self._state.sessions),
                "connection_status": self._state.connection_status.value,
                "forced_rehydration": self._state.forced_rehydration,
            }}
        )
        if self._state.connection_status == ConnectionStatus.CONNECTED:
            self.notices.success("Connected to ChavrusaAI!")

    async def _wait_for_rehydration(self) -> None:
        if self._state.rehydrated:
            return
        logger.info("Waiting for persisted state rehydration...")
        try:
            await asyncio.wait_for(self._rehydrated.wait(), self.settings.rehydration_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Rehydration did not finish in time, proceeding without restored state",
                extra={"extra_fields": {"timeout": self.settings.rehydration_timeout}}
            )
            self._set(forced_rehydration=True)

    async def _load_personas(self) -> None:
        try:
            personas = await self.api.get_personas()
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Persona list unavailable, using fallback personas: {e}")
            self._set(personas=tuple(FALLBACK_PERSONAS), connection_status=ConnectionStatus.DEGRADED)
            self.notices.error("Backend unavailable. Using offline mode.")
            return

        if not personas:
            logger.warning("Backend returned no personas, using fallback personas")
            personas = FALLBACK_PERSONAS
        logger.info(f"Personas loaded: {len(personas)}")
        self._set(personas=tuple(personas))

    async def _wait_for_auth(self) -> None:
        if self.auth.initialized:
            return

        logger.info(
            "Waiting for auth initialization...",
            extra={"extra_fields": {"auth_loading": self.auth.loading}}
        )
        if not self.auth.loading:
            logger.info("Starting auth initialization")
            self._spawn(self.auth.initialize())

        started_at = time.monotonic()
        ready = await self.auth.wait_until_initialized(self.settings.auth_ready_timeout)
        elapsed_ms = (time.monotonic() - started_at) * 1000
        if ready:
            logger.info(
                f"Auth initialization complete after {elapsed_ms:.0f}ms",
                extra={"extra_fields": {"authenticated": self.auth.is_authenticated()}}
            )
        else:
            logger.warning(f"Auth not ready after {elapsed_ms:.0f}ms, continuing without it")

    def _merge_summaries(self, summaries: Sequence[SessionSummary]) -> None:
        """Add or refresh sessions from the server list, keeping loaded messages."""
        sessions = dict(self._state.sessions)
        for summary in summaries:
            sessions[summary.id] = summary.merge_into(sessions.get(summary.id))

        current_id = self._state.current_session_id
        if current_id not in sessions:
            current_id = summaries[0].id
        self._set(sessions=sessions, current_session_id=current_id)

    async def load_user_sessions(self) -> bool:
        """
        Fetch and merge the signed-in user's sessions.

        Local sessions that already hold messages are authoritative and skip
        the fetch. Returns True when sessions are available afterwards.
        """
        if not self.auth.is_authenticated():
            logger.info("No authenticated user, skipping session load")
            return False

        sessions = self._state.sessions
        if sessions and any(s.has_loaded_messages for s in sessions.values()):
            logger.info("Using persisted sessions with messages, skipping remote load")
            return True

        try:
            summaries = await self.api.get_sessions(self.auth.get_auth_headers())
        except RECOVERABLE_ERRORS as e:
            logger.error(f"Failed to load user sessions: {e}")
            return False

        if not summaries:
            return False

        self._merge_summaries(summaries)

        for summary in summaries:
            session = self._state.sessions.get(summary.id)
            if session is not None and session.needs_history:
                logger.info(f"Loading messages for session {summary.id}")
                await self._fetch_history(summary.id)
        return True

    def validate_session_states(self, personas: Sequence[Persona]) -> None:
        """Drop persona ids no longer offered and re-sync the selected persona."""
        valid_ids = {p.id for p in personas}
        sessions = dict(self._state.sessions)
        changed = False
        for session_id, session in sessions.items():
            if session.persona and session.persona not in valid_ids:
                logger.warning(f"Invalid persona id in session {session_id}: {session.persona}")
                sessions[session_id] = session.model_copy(update={"persona": None})
                changed = True
        if changed:
            self._set(sessions=sessions)

        current = self._state.current_session
        if not self._state.selected_persona_id and current is not None and current.persona:
            self._set(selected_persona_id=current.persona)

    # ------------------------------------------------------------------
    # Session CRUD
    # ------------------------------------------------------------------

    async def create_session(self, title: Optional[str] = None) -> str:
        """
        Create a session and make it current.

        Falls back to a locally generated id when the server cannot be
        reached, so a usable session id is always returned.
        """
        offline = False
        try:
            session_id = await self.api.create_session(self.auth.get_auth_headers())
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Backend unavailable while creating session, falling back to offline session: {e}")
            session_id = new_local_session_id()
            offline = True

        session = Session(id=session_id, title=title or DEFAULT_SESSION_TITLE)
        changes: Dict[str, Any] = {"current_session_id": session_id}
        if offline:
            changes["connection_status"] = ConnectionStatus.DEGRADED
        self._put_session(session, **changes)

        logger.info(
            f"Session created: {session_id}",
            extra={"extra_fields": {"session_id": session_id, "offline": offline}}
        )
        if offline:
            self.notices.info("Started offline session. Responses are simulated.")
        else:
            await self.realtime.join_session(session_id)
        return session_id

    async def switch_session(self, session_id: str) -> None:
        """Make a known session current, fetching its history when needed."""
        session = self._state.sessions.get(session_id)
        if session is None:
            logger.debug(f"Ignoring switch to unknown session {session_id}")
            return

        self._set(current_session_id=session_id)
        await self.realtime.join_session(session_id)

        loaded = True
        if session.needs_history:
            self._set(is_loading=True)
            try:
                loaded = await self._fetch_history(session_id)
            finally:
                self._set(is_loading=False)

        self._update_session(session_id, Session.touch)
        if loaded:
            self.notices.success("Switched to chat session")

    async def delete_session(self, session_id: str) -> None:
        sessions = dict(self._state.sessions)
        if sessions.pop(session_id, None) is None:
            return

        for handle in [h for h in self._in_flight.values() if h.session_id == session_id]:
            handle.abort()

        was_current = session_id == self._state.current_session_id
        current_id = self._state.current_session_id
        if was_current:
            current_id = next(iter(sessions), None)

        self._set(sessions=sessions, current_session_id=current_id)
        logger.info(f"Session deleted: {session_id}")

        if was_current:
            await self.realtime.leave_session()
            if current_id:
                await self.realtime.join_session(current_id)
        self.notices.success("Session deleted")

    def update_session_title(self, session_id: str, title: str) -> None:
        if not self._update_session(session_id, lambda s: s.model_copy(update={"title": title})):
            logger.debug(f"Ignoring rename of unknown session {session_id}")

    def get_sorted_sessions(self) -> List[Session]:
        """All sessions, most recently active first."""
        return sorted(self._state.sessions.values(), key=lambda s: s.last_activity, reverse=True)

    async def load_session_history(self, session_id: str) -> bool:
        """Load a session's full history, make it current and join it."""
        self._set(is_loading=True)
        try:
            loaded = await self._fetch_history(session_id, create_missing=True)
        finally:
            self._set(is_loading=False)

        if loaded:
            self._set(current_session_id=session_id)
            await self.realtime.join_session(session_id)
        return loaded

    async def _fetch_history(self, session_id: str, create_missing: bool = False) -> bool:
        """
        Fetch a session's history and merge it into the stored session.

        A session that is gone once the fetch returns was deleted meanwhile;
        it is only recreated from the history when ``create_missing`` is set.
        """
        try:
            history = await self.api.get_history(session_id, self.auth.get_auth_headers())
        except RECOVERABLE_ERRORS as e:
            logger.error(f"Failed to load history for session {session_id}: {e}")
            self.notices.error("Failed to load conversation history")
            return False

        loaded = history.delivered_messages()
        persona = history.rabbi.lower() if isinstance(history.rabbi, str) else history.rabbi
        existing = self._state.sessions.get(session_id)

        if existing is None:
            if not create_missing:
                logger.debug(f"Dropping history for deleted session {session_id}")
                return False
            session = Session(
                id=session_id,
                title=history.title or f"Learning with {history.rabbi}",
                persona=persona,
                created_at=history.created_at or utcnow(),
            )
        else:
            session = existing

        # Keep messages added locally while the fetch was pending
        loaded_ids = {m.id for m in loaded}
        messages = loaded + tuple(m for m in session.messages if m.id not in loaded_ids)
        session = session.model_copy(update={
            "messages": messages,
            "references": tuple(ref for m in messages for ref in m.references),
            "persona": session.persona or persona,
            "message_count": len(messages),
            "last_activity": utcnow(),
        })
        self._put_session(session)
        logger.info(f"Messages loaded for session {session_id}: {len(loaded)}")
        return True

    def clear_chat(self) -> None:
        """Empty the current session's messages and references."""
        current_id = self._state.current_session_id
        if current_id:
            self._update_session(
                current_id, lambda s: s.model_copy(update={"messages": (), "references": ()})
            )

    def clear_all_sessions(self) -> None:
        for handle in list(self._in_flight.values()):
            handle.abort()
        self._set(sessions={}, current_session_id=None)
        logger.info("All sessions cleared")

    def select_persona(self, persona_id: str) -> None:
        self._set(selected_persona_id=persona_id)
        persona = next((p for p in self._state.personas if p.id == persona_id), None)
        self.notices.success(f"Selected {persona.display_name if persona else persona_id}")

    def set_connection_status(self, status: ConnectionStatus) -> None:
        status = ConnectionStatus(status)
        if status == ConnectionStatus.CONNECTED:
            self._offline_notice_shown = False
        self._set(connection_status=status)

    # ------------------------------------------------------------------
    # Send protocol
    # ------------------------------------------------------------------

    async def _resolve_target_session(self) -> str:
        """Current session, else the first existing one, else a new one."""
        state = self._state
        if state.current_session_id:
            return state.current_session_id

        if state.sessions:
            session_id = next(iter(state.sessions))
            self._set(current_session_id=session_id)
            return session_id

        # Concurrent first sends share one new session
        if self._session_creation is None or self._session_creation.done():
            self._session_creation = asyncio.ensure_future(self.create_session())
        return await asyncio.shield(self._session_creation)

    async def send_message(self, content: str) -> Optional[str]:
        """
        Send a user message to the selected persona.

        The user message is appended in ``sending`` state before any network
        call. Network and parse failures never propagate: they end in an
        offline reply, or in ``failed`` when the send was aborted.

        Returns:
            The user message id, or None when the message was rejected
        """
        persona_id = self._state.selected_persona_id
        if not persona_id:
            self.notices.error("Please select a rabbi before sending a message")
            return None
        if not content or not content.strip():
            self.notices.error("Message cannot be empty")
            return None
        if len(content) > MAX_MESSAGE_LENGTH:
            self.notices.error(f"Message is too long (max {MAX_MESSAGE_LENGTH} characters)")
            return None

        session_id = await self._resolve_target_session()
        session = self._state.sessions.get(session_id)
        if session is None:
            logger.error(f"Target session {session_id} disappeared before sending")
            self.notices.error("Failed to start conversation")
            return None

        user_message = Message.user(content)
        if session.persona is None:
            session = session.model_copy(update={"persona": persona_id})
        self._put_session(session.append_messages(user_message), is_typing=True)

        logger.info(
            "Sending message",
            extra={"extra_fields": {
                "session_id": session_id,
                "persona_id": persona_id,
                "message_id": user_message.id,
                "length": len(content),
                "authenticated": self.auth.is_authenticated(),
            }}
        )

        handle = AbortHandle(message_id=user_message.id, session_id=session_id)
        self._in_flight[user_message.id] = handle
        handle.task = asyncio.ensure_future(asyncio.wait_for(
            self.api.send_message(
                content,
                session_id,
                persona_id,
                user_context=self.auth.get_user_context(),
                headers=self.auth.get_auth_headers(),
            ),
            timeout=self.settings.request_timeout,
        ))

        try:
            reply = await handle.task
        except asyncio.CancelledError:
            if not handle.aborted:
                # The caller was cancelled, not the request
                handle.task.cancel()
                self._finish_aborted(handle, notify=False)
                raise
            self._finish_aborted(handle)
        except Exception as e:
            self._finish_with_fallback(handle, persona_id, content, e)
        else:
            self._finish_delivered(handle, reply.content, reply.references)
        return user_message.id

    def _release(self, handle: AbortHandle) -> bool:
        """Forget a finished send; returns whether other sends are pending."""
        self._in_flight.pop(handle.message_id, None)
        return bool(self._in_flight)

    def _finish_delivered(self, handle: AbortHandle, content: str, references: List[Reference]) -> None:
        still_pending = self._release(handle)
        reply = Message.assistant(content, references)
        self._update_session(
            handle.session_id,
            lambda s: s.with_message_status(handle.message_id, MessageStatus.DELIVERED)
                       .append_messages(reply, references=reply.references),
            is_typing=still_pending,
        )
        logger.info(
            "Message delivered",
            extra={"extra_fields": {"message_id": handle.message_id, "references": len(references)}}
        )

    def _finish_aborted(self, handle: AbortHandle, notify: bool = True) -> None:
        still_pending = self._release(handle)
        self._update_session(
            handle.session_id,
            lambda s: s.with_message_status(handle.message_id, MessageStatus.FAILED),
            is_typing=still_pending,
        )
        logger.info(f"Message request aborted: {handle.message_id}")
        if notify:
            self.notices.error("Message cancelled")

    def _finish_with_fallback(
        self, handle: AbortHandle, persona_id: str, content: str, error: Exception
    ) -> None:
        still_pending = self._release(handle)

        if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
            logger.warning("Request timed out. Backend may be processing slowly.")
            self.notices.error("Request timed out. Please try again.")
        elif isinstance(error, httpx.HTTPStatusError) and error.response.status_code >= 500:
            logger.warning(f"Server error {error.response.status_code} while sending message")
            self.notices.error("Server error. Please try again in a moment.")
        else:
            logger.warning(
                f"Backend unavailable while sending message, falling back to offline response: {error!r}"
            )

        reply = Message.assistant(simulated_reply(persona_id, content))
        self._update_session(
            handle.session_id,
            lambda s: s.with_message_status(handle.message_id, MessageStatus.DELIVERED)
                       .append_messages(reply),
            is_typing=still_pending,
            connection_status=ConnectionStatus.DEGRADED,
        )

        if not self._offline_notice_shown:
            self._offline_notice_shown = True
            self.notices.info("Offline mode: showing simulated responses.")

    def abort_message(self, message_id: str) -> bool:
        """Cancel the in-flight send of one user message."""
        handle = self._in_flight.get(message_id)
        if handle is None or not handle.abort():
            return False
        logger.info(f"Aborting message request {message_id}")
        return True

    def abort_current_message(self) -> bool:
        """Cancel the most recently started send, if any."""
        if not self._in_flight:
            return False
        return self.abort_message(next(reversed(self._in_flight)))

    async def retry_message(self, message_id: str) -> Optional[str]:
        """
        Resend a failed user message of the current session.

        The failed message is removed and its content goes through
        ``send_message`` again under a new id.
        """
        session = self._state.current_session
        message = session.find_message(message_id) if session else None
        if message is None or not message.is_user or message.status != MessageStatus.FAILED:
            logger.warning(f"Message {message_id} cannot be retried")
            return None

        self._put_session(session.without_message(message_id))
        return await self.send_message(message.content)

    # ------------------------------------------------------------------
    # Realtime handlers
    # ------------------------------------------------------------------

    def _push_target(self, session_id: Optional[str]) -> Optional[str]:
        if session_id is None:
            return self._state.current_session_id
        if session_id in self._state.sessions:
            return session_id
        logger.debug(f"Dropping push event for unknown session {session_id}")
        return None

    def add_received_message(self, message: Message, session_id: Optional[str] = None) -> None:
        target = self._push_target(session_id)
        if target is None:
            return

        session = self._state.sessions[target]
        if session.find_message(message.id) is not None:
            self._set(is_typing=False)
            return
        self._put_session(
            session.append_messages(message, references=message.references), is_typing=False
        )

    def set_typing(self, is_typing: bool) -> None:
        self._set(is_typing=bool(is_typing))

    def update_message_status(
        self, message_id: str, status: MessageStatus, session_id: Optional[str] = None
    ) -> None:
        target = self._push_target(session_id)
        if target is not None:
            self._update_session(target, lambda s: s.with_message_status(message_id, status))

    def add_reference(self, reference: Reference, session_id: Optional[str] = None) -> None:
        target = self._push_target(session_id)
        if target is None:
            return
        self._update_session(
            target, lambda s: s.model_copy(update={"references": s.references + (reference,)})
        )
        self.notices.success("New reference found!")

    # ------------------------------------------------------------------
    # Translation state
    # ------------------------------------------------------------------

    def set_language(self, language: str) -> None:
        self._set(current_language=language)

    def set_translation(self, key: str, translation: str) -> None:
        self._set(translations={**self._state.translations, key: translation})

    def get_translation(self, key: str) -> Optional[str]:
        return self._state.translations.get(key)

    def clear_translations(self) -> None:
        self._set(translations={})

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Abort pending sends, stop background work and flush state."""
        for handle in list(self._in_flight.values()):
            handle.abort()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.flush()
