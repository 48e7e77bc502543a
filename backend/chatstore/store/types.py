"""Row shapes as they are stored in Redis, plus the inputs and results of store operations."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from chatstore.core.errors import SerializationError

Role = Literal["user", "assistant", "tool"]
ROLES: tuple[str, ...] = ("user", "assistant", "tool")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def activity_score(moment: datetime) -> int:
    """Rank used by the conversation index: microseconds since the epoch."""
    return (moment - _EPOCH) // _MICROSECOND


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO-8601 stamp. Anything else is a corrupt row."""
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Unparseable timestamp {value!r}") from e


@dataclass(frozen=True)
class MessageRecord:
    id: str
    role: Role
    # str, or a decoded JSON payload for tool calls/results. The store hands out
    # copies, so mutating it never reaches the cache.
    content: Any
    conversation_id: str
    created_at: str  # ISO-8601, UTC
    updated_at: str


@dataclass(frozen=True)
class ConversationRecord:
    id: str
    title: str
    created_at: str
    updated_at: str


@dataclass
class MessageCreate:
    content: Any
    role: Role
    conversation_id: str


@dataclass
class MessageUpdate:
    content: Any = None  # None leaves the content untouched


@dataclass
class ConversationCreate:
    title: str


@dataclass
class ConversationUpdate:
    title: str | None = None


@dataclass
class ItemResult:
    id: str
    success: bool
    error: str | None = None


@dataclass
class BatchResult:
    results: list[ItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> list[ItemResult]:
        return [r for r in self.results if not r.success]


@dataclass
class MessageStats:
    total: int = 0
    by_role: dict[str, int] = field(default_factory=dict)


@dataclass
class ConversationStats:
    total: int = 0
    recent_count: int = 0  # active within the last 24 hours
