"""
Discussion steps and failure checkpoints.

A query runs as a sequence of steps: the Logical persona's opening turn,
turn pairs (Creative reply, then Logical reply) and the final synthesis.
When a step exhausts its retry budget, a FailureCheckpoint captures
everything needed to re-run that one step by hand and carry on from there.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple, Any

from dual_ai_chat.completion.base import CompletionRequest
from dual_ai_chat.state import (
    ImagePart,
    LogEntry,
    MessagePurpose,
    MessageSender,
    utc_now,
)


class StepKind(str, Enum):
    """Types of discussion steps."""

    INITIAL_TURN = "initial_turn"
    TURN_A = "turn_a"
    TURN_B = "turn_b"
    FINAL_SYNTHESIS = "final_synthesis"


@dataclass(frozen=True)
class Step:
    """
    One discussion step.

    TURN_A is the Creative persona's reply in pair `turn_index`, TURN_B the
    Logical persona's answer to it.
    """

    kind: StepKind
    turn_index: Optional[int] = None

    @classmethod
    def initial(cls) -> "Step":
        return cls(StepKind.INITIAL_TURN)

    @classmethod
    def turn_a(cls, turn_index: int) -> "Step":
        return cls(StepKind.TURN_A, turn_index)

    @classmethod
    def turn_b(cls, turn_index: int) -> "Step":
        return cls(StepKind.TURN_B, turn_index)

    @classmethod
    def final(cls) -> "Step":
        return cls(StepKind.FINAL_SYNTHESIS)

    def __post_init__(self) -> None:
        in_loop = self.kind in (StepKind.TURN_A, StepKind.TURN_B)
        if in_loop and (self.turn_index is None or self.turn_index < 0):
            raise ValueError(f"{self.kind.value} needs a non-negative turn_index")
        if not in_loop and self.turn_index is not None:
            raise ValueError(f"{self.kind.value} takes no turn_index")

    @property
    def persona(self) -> MessageSender:
        """Persona that speaks in this step."""
        if self.kind == StepKind.TURN_A:
            return MessageSender.CREATIVE
        return MessageSender.LOGICAL

    @property
    def purpose(self) -> MessagePurpose:
        if self.kind == StepKind.TURN_A:
            return MessagePurpose.CREATIVE_TO_LOGICAL
        if self.kind == StepKind.FINAL_SYNTHESIS:
            return MessagePurpose.FINAL_RESPONSE
        return MessagePurpose.LOGICAL_TO_CREATIVE

    @property
    def is_final(self) -> bool:
        return self.kind == StepKind.FINAL_SYNTHESIS

    @property
    def identifier(self) -> str:
        """Stable name used in notices and logs."""
        if self.kind == StepKind.INITIAL_TURN:
            return "logical-initial"
        if self.kind == StepKind.TURN_A:
            return f"creative-reply-turn-{self.turn_index}"
        if self.kind == StepKind.TURN_B:
            return f"logical-reply-turn-{self.turn_index}"
        return "logical-final-answer"

    def resume_point(self) -> Tuple[int, bool]:
        """
        Where the loop re-enters after this step succeeds on a manual retry.

        Returns:
            (turn_index, skip_first_half)
        """
        if self.kind == StepKind.INITIAL_TURN:
            return 0, False
        if self.kind == StepKind.TURN_A:
            return self.turn_index, True
        if self.kind == StepKind.TURN_B:
            return self.turn_index + 1, False
        raise ValueError("final synthesis has no loop resume point")

    def __str__(self) -> str:
        return self.identifier


@dataclass
class FailureCheckpoint:
    """
    Resumable state captured when a step exhausts its retry budget.

    The request is stored verbatim and re-sent unchanged on resume. The log
    snapshot and prior signal are the state *before* the failed step.
    """

    step: Step
    request: CompletionRequest
    prior_log: Tuple[LogEntry, ...]
    prior_signal: bool
    user_input: str
    errored_message_id: str
    image: Optional[ImagePart] = None
    last_error: Optional[str] = None
    created_at: Any = field(default_factory=utc_now)
    failures: int = 1

    @property
    def persona(self) -> MessageSender:
        return self.step.persona

    @property
    def purpose(self) -> MessagePurpose:
        return self.step.purpose

    @property
    def resume_turn_index(self) -> Optional[int]:
        """Turn index the loop resumes at, None for the final synthesis."""
        if self.step.is_final:
            return None
        return self.step.resume_point()[0]

    def repoint(self, message_id: str, error: Optional[str]) -> "FailureCheckpoint":
        """Same stored state, attached to a newer failure notice."""
        return replace(
            self,
            errored_message_id=message_id,
            last_error=error,
            failures=self.failures + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        """Summary for display and logging. Prompt and image are omitted."""
        return {
            "step": self.step.identifier,
            "step_kind": self.step.kind.value,
            "turn_index": self.step.turn_index,
            "persona": self.persona.value,
            "purpose": self.purpose.value,
            "resume_turn_index": self.resume_turn_index,
            "prior_signal": self.prior_signal,
            "prior_turns": len(self.prior_log),
            "has_image": self.image is not None,
            "errored_message_id": self.errored_message_id,
            "last_error": self.last_error,
            "failures": self.failures,
            "created_at": self.created_at.isoformat(),
        }
