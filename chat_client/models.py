"""
Data model shared by the engine components.

Timestamps are timezone-aware UTC datetimes.  Backend records carry ISO-8601
strings; :func:`parse_timestamp` turns them into datetimes and tolerates the
trailing ``Z`` some servers emit.
"""

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def parse_timestamp(value) -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime)."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        dt = datetime.fromisoformat(text)
    else:
        return utcnow()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class Author(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Mode(str, enum.Enum):
    """Which command set the presentation layer may offer."""

    INPUT = "input"
    LOADING = "loading"
    SETTINGS = "settings"


@dataclass(frozen=True)
class Message:
    """One transcript entry.  Never mutated after creation."""

    text: str
    author: Author
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_user(self) -> bool:
        return self.author is Author.USER


@dataclass(frozen=True)
class Session:
    """A server-persisted conversation thread (cached client-side)."""

    id: str
    title: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_message_preview: str | None = None
    message_count: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """Build a session from a backend record.

        Raises ``KeyError`` / ``ValueError`` on a malformed record; the
        session manager turns those into :class:`SessionRequestError`.
        """
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "Untitled",
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(
                data.get("updated_at") or data.get("created_at"),
            ),
            last_message_preview=data.get("last_message") or None,
            message_count=data.get("message_count"),
        )

    def with_changes(self, **changes) -> "Session":
        return replace(self, **changes)


@dataclass(frozen=True)
class BackendMessage:
    """A message as stored in a session's remote log."""

    id: str
    session_id: str
    role: Author
    content: str
    created_at: datetime

    @classmethod
    def from_dict(cls, data: dict) -> "BackendMessage":
        return cls(
            id=str(data["id"]),
            session_id=str(data.get("session_id", "")),
            role=Author(str(data["role"]).lower()),
            content=data.get("content") or "",
            created_at=parse_timestamp(data.get("created_at")),
        )

    def to_message(self) -> Message:
        return Message(
            text=self.content, author=self.role,
            id=self.id, created_at=self.created_at,
        )


@dataclass(frozen=True)
class BotReply:
    """Result of a successful chat query."""

    reply_text: str
    session_id: str | None = None
    message_id: str | None = None


def has_complete_tail(messages) -> bool:
    """True when the transcript ends in a USER message answered by ASSISTANT."""
    if len(messages) < 2:
        return False
    return (messages[-2].author is Author.USER
            and messages[-1].author is Author.ASSISTANT)


@dataclass(frozen=True)
class ChatState:
    """Snapshot handed to the presentation layer on every change."""

    messages: tuple[Message, ...] = ()
    mode: Mode = Mode.INPUT
    sessions: tuple[Session, ...] = ()
    current_session: Session | None = None
    loading_sessions: bool = False
    session_error: str | None = None
    bot_error: str | None = None
    speech_enabled: bool = False
    authenticated: bool = False

    @property
    def can_regenerate(self) -> bool:
        return self.mode is not Mode.LOADING and has_complete_tail(self.messages)
