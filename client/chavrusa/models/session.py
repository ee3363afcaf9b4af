"""
Session Models - Conversation threads, their messages and references.

All models are frozen: updates go through ``model_copy`` so a session held by
an older state snapshot is never modified in place.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional, List, Tuple

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_SESSION_TITLE = "New Chat"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(_ensure_utc)]


def new_message_id() -> str:
    return str(uuid.uuid4())


def new_local_session_id() -> str:
    """32-char hex id, the same shape the server accepts for session ids."""
    return uuid.uuid4().hex


class MessageStatus(str, Enum):
    SENDING = "sending"
    DELIVERED = "delivered"
    FAILED = "failed"


class Reference(BaseModel):
    """A citation surfaced by the assistant."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reference: str
    url: Optional[str] = None
    text: Optional[str] = None


class Message(BaseModel):
    """One turn in a session."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_message_id)
    content: str
    is_user: bool = Field(alias="isUser")
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    status: MessageStatus = MessageStatus.DELIVERED
    references: Tuple[Reference, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _drop_null_defaults(cls, data):
        # History DTOs may carry "id": null; fall back to generated values
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if not (k in ("id", "timestamp") and v is None)}
        return data

    @field_validator("references", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return () if value is None else value

    @classmethod
    def user(cls, content: str) -> "Message":
        """A freshly authored user message, not yet acknowledged."""
        return cls(content=content, is_user=True, status=MessageStatus.SENDING)

    @classmethod
    def assistant(cls, content: str, references: Optional[List[Reference]] = None) -> "Message":
        return cls(
            content=content,
            is_user=False,
            status=MessageStatus.DELIVERED,
            references=tuple(references or ()),
        )

    def with_status(self, status: MessageStatus) -> "Message":
        return self.model_copy(update={"status": MessageStatus(status)})


class Session(BaseModel):
    """One conversation thread."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str = DEFAULT_SESSION_TITLE
    persona: Optional[str] = Field(default=None, alias="rabbi")
    messages: Tuple[Message, ...] = ()
    references: Tuple[Reference, ...] = ()
    created_at: UTCDateTime = Field(default_factory=utcnow, alias="createdAt")
    last_activity: UTCDateTime = Field(default_factory=utcnow, alias="lastActivity")
    message_count: int = Field(default=0, alias="messageCount")

    @field_validator("message_count", mode="before")
    @classmethod
    def _none_to_zero(cls, value):
        return 0 if value is None else value

    @property
    def has_loaded_messages(self) -> bool:
        return len(self.messages) > 0

    @property
    def needs_history(self) -> bool:
        """Server reports messages that have not been fetched yet."""
        return not self.messages and self.message_count > 0

    def touch(self) -> "Session":
        return self.model_copy(update={"last_activity": utcnow()})

    def append_messages(self, *messages: Message, references: Tuple[Reference, ...] = ()) -> "Session":
        return self.model_copy(update={
            "messages": self.messages + tuple(messages),
            "references": self.references + tuple(references),
            "last_activity": utcnow(),
        })

    def with_message_status(self, message_id: str, status: MessageStatus) -> "Session":
        return self.model_copy(update={
            "messages": tuple(
                m.with_status(status) if m.id == message_id else m
                for m in self.messages
            ),
        })

    def without_message(self, message_id: str) -> "Session":
        return self.model_copy(update={
            "messages": tuple(m for m in self.messages if m.id != message_id),
        })

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


class SessionSummary(BaseModel):
    """Entry of ``GET /chat/sessions``; carries only a message-count hint."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    rabbi: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    last_activity: Optional[datetime] = Field(default=None, alias="lastActivity")
    message_count: Optional[int] = Field(default=0, alias="messageCount")

    def merge_into(self, existing: Optional[Session]) -> Session:
        """
        Build the local session for this summary.

        Messages and references already loaded locally are kept; everything
        else follows the server.
        """
        now = utcnow()
        return Session(
            id=self.id,
            title=self.title or (existing.title if existing else DEFAULT_SESSION_TITLE),
            persona=self.rabbi,
            messages=existing.messages if existing else (),
            references=existing.references if existing else (),
            created_at=self.created_at or now,
            last_activity=self.last_activity or now,
            message_count=self.message_count or 0,
        )


class SessionHistory(BaseModel):
    """Payload of ``GET /chat/history/{sessionId}``."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[Message] = Field(default_factory=list)
    rabbi: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    title: Optional[str] = None

    def delivered_messages(self) -> Tuple[Message, ...]:
        """History entries are always delivered, whatever the DTO says."""
        return tuple(m.with_status(MessageStatus.DELIVERED) for m in self.messages)
