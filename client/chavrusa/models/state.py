"""
Store State Models - Immutable snapshots of the chat store and its persisted subset.
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .persona import Persona
from .session import Message, Reference, Session


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DEGRADED = "degraded"


class StartupPhase(str, Enum):
    NOT_STARTED = "not-started"
    WAITING_FOR_REHYDRATION = "waiting-for-rehydration"
    WAITING_FOR_AUTH = "waiting-for-auth"
    LOADING_REMOTE_DATA = "loading-remote-data"
    READY = "ready"
    DEGRADED = "degraded"


class ChatState(BaseModel):
    """
    Full store snapshot.

    Snapshots are never mutated; the store replaces the whole snapshot on
    every action, so readers always see a consistent state.
    """
    model_config = ConfigDict(frozen=True)

    sessions: Dict[str, Session] = Field(default_factory=dict)
    current_session_id: Optional[str] = None
    selected_persona_id: Optional[str] = None
    personas: Tuple[Persona, ...] = ()
    is_loading: bool = False
    is_typing: bool = False
    connection_status: ConnectionStatus = ConnectionStatus.CONNECTED
    initialized: bool = False
    rehydrated: bool = False
    forced_rehydration: bool = False
    startup_phase: StartupPhase = StartupPhase.NOT_STARTED

    # Translation state
    current_language: str = "en"
    translations: Dict[str, str] = Field(default_factory=dict)

    @property
    def current_session(self) -> Optional[Session]:
        if self.current_session_id is None:
            return None
        return self.sessions.get(self.current_session_id)

    @property
    def messages(self) -> Tuple[Message, ...]:
        session = self.current_session
        return session.messages if session else ()

    @property
    def references(self) -> Tuple[Reference, ...]:
        session = self.current_session
        return session.references if session else ()


class PersistedChatState(BaseModel):
    """The chat-owned persisted record."""
    model_config = ConfigDict(populate_by_name=True)

    initialized: bool = False
    sessions: Dict[str, Session] = Field(default_factory=dict)
    current_session_id: Optional[str] = Field(default=None, alias="currentSessionId")
    selected_persona_id: Optional[str] = Field(default=None, alias="selectedPersonaId")
    rehydrated: bool = False

    @classmethod
    def from_state(cls, state: ChatState) -> "PersistedChatState":
        return cls(
            initialized=state.initialized,
            sessions=state.sessions,
            current_session_id=state.current_session_id,
            selected_persona_id=state.selected_persona_id,
            rehydrated=state.rehydrated,
        )

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
