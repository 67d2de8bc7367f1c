"""
Message, event and discussion-context model.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Tuple, Any, Dict


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    """Generate a unique message id."""
    return uuid.uuid4().hex[:12]


class MessageSender(str, Enum):
    """Who produced a transcript message."""

    USER = "User"
    LOGICAL = "Logical"
    CREATIVE = "Creative"
    SYSTEM = "System"


class MessagePurpose(str, Enum):
    """Why a transcript message was produced."""

    USER_INPUT = "user_input"
    LOGICAL_TO_CREATIVE = "logical_to_creative"
    CREATIVE_TO_LOGICAL = "creative_to_logical"
    FINAL_RESPONSE = "final_response"
    SYSTEM_NOTIFICATION = "system_notification"
    STEP_FAILURE = "step_failure"
    CREDENTIALS_WARNING = "credentials_warning"


class DiscussionPhase(str, Enum):
    """Orchestrator phase states."""

    IDLE = "idle"
    INITIAL_TURN = "initial_turn"
    DISCUSSING = "discussing"
    FINAL_SYNTHESIS = "final_synthesis"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class QueryOutcome(str, Enum):
    """How a query (or a resume) ended."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class EventType(str, Enum):
    """Events emitted on the orchestrator's output stream."""

    MESSAGE_APPENDED = "message_appended"
    MESSAGE_REMOVED = "message_removed"
    NOTEPAD_CHANGED = "notepad_changed"
    CHECKPOINT_RAISED = "checkpoint_raised"
    CHECKPOINT_CLEARED = "checkpoint_cleared"
    QUERY_FINISHED = "query_finished"


@dataclass(frozen=True)
class ImagePart:
    """An image attached to the user's query, already base64 encoded."""

    mime_type: str
    data: str
    name: Optional[str] = None


@dataclass(frozen=True)
class Message:
    """One transcript entry. Never edited once created."""

    id: str
    sender: MessageSender
    purpose: MessagePurpose
    text: str
    timestamp: datetime
    duration_ms: Optional[int] = None
    image: Optional[ImagePart] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display or logging."""
        return {
            "id": self.id,
            "sender": self.sender.value,
            "purpose": self.purpose.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "image": self.image.name if self.image else None,
        }


@dataclass(frozen=True)
class LogEntry:
    """One spoken turn in the discussion log."""

    sender: MessageSender
    text: str


@dataclass
class DiscussionEvent:
    """An entry on the orchestrator's ordered event stream."""

    type: EventType
    message: Optional[Message] = None
    notepad: Optional[Any] = None
    checkpoint: Optional[Any] = None
    outcome: Optional[QueryOutcome] = None
    elapsed_ms: Optional[int] = None


@dataclass
class DiscussionContext:
    """
    Everything a step needs about the query in flight.

    Threaded explicitly through every step so that a failure checkpoint can
    snapshot it and a resume can rebuild it.
    """

    user_input: str
    image: Optional[ImagePart] = None
    log: List[LogEntry] = field(default_factory=list)
    last_text: str = ""
    prior_signal: bool = False

    def append(self, sender: MessageSender, text: str) -> None:
        """Record a spoken turn."""
        self.log.append(LogEntry(sender=sender, text=text))
        self.last_text = text

    def snapshot(self) -> Tuple[LogEntry, ...]:
        """Immutable copy of the log as it stands now."""
        return tuple(self.log)

    def render_log(self, names: Dict[MessageSender, str]) -> str:
        """Render the log as a transcript, one turn per line."""
        return "\n".join(
            f"{names.get(entry.sender, entry.sender.value)}: {entry.text}"
            for entry in self.log
        )

    @classmethod
    def restore(
        cls,
        user_input: str,
        image: Optional[ImagePart],
        log: Tuple[LogEntry, ...],
        prior_signal: bool,
    ) -> "DiscussionContext":
        """Rebuild a context from a checkpoint snapshot."""
        return cls(
            user_input=user_input,
            image=image,
            log=list(log),
            last_text=log[-1].text if log else "",
            prior_signal=prior_signal,
        )
