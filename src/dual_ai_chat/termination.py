"""
Termination policies for the discussion loop.

The loop runs in turn pairs: the Creative persona replies first (TurnA),
then the Logical persona answers (TurnB). A policy is consulted after every
single turn, never once per pair.
"""

from abc import ABC, abstractmethod
from enum import Enum

from dual_ai_chat.config import DiscussionMode, MIN_FIXED_TURNS, MAX_FIXED_TURNS


class TerminationDecision(str, Enum):
    """Outcome of evaluating one turn."""

    CONTINUE = "continue"
    AWAIT_PARTNER = "await_partner"
    MUTUAL_AGREEMENT = "mutual_agreement"


class TerminationPolicy(ABC):
    """Decides after each turn whether the discussion loop continues."""

    mode: DiscussionMode

    @abstractmethod
    def effective_signal(self, raw_signal: bool) -> bool:
        """Signal as seen by this policy."""

    @abstractmethod
    def evaluate(self, previous_signal: bool, signal: bool) -> TerminationDecision:
        """
        Compare a turn's signal with the signal of the turn just before it.

        Args:
            previous_signal: Effective signal of the other persona's last turn
            signal: Effective signal of the turn that just completed
        """

    @abstractmethod
    def has_pair(self, turn_index: int) -> bool:
        """Whether turn pair `turn_index` should start."""

    @abstractmethod
    def skip_reply(self, turn_index: int) -> bool:
        """Whether the second half of pair `turn_index` is skipped."""


class FixedTurnsPolicy(TerminationPolicy):
    """
    Run exactly `turns` pairs and ignore every signal.

    The reply half of the last pair is skipped: after the Creative turn of
    pair `turns - 1` the loop goes straight to the final synthesis.
    """

    mode = DiscussionMode.FIXED_TURNS

    def __init__(self, turns: int):
        if turns < 1:
            raise ValueError(f"turns must be >= 1, got {turns}")
        self.turns = turns

    def effective_signal(self, raw_signal: bool) -> bool:
        return False

    def evaluate(self, previous_signal: bool, signal: bool) -> TerminationDecision:
        return TerminationDecision.CONTINUE

    def has_pair(self, turn_index: int) -> bool:
        return turn_index < self.turns

    def skip_reply(self, turn_index: int) -> bool:
        return turn_index >= self.turns - 1

    def __repr__(self) -> str:
        return f"FixedTurnsPolicy(turns={self.turns})"


class AiDrivenPolicy(TerminationPolicy):
    """
    Stop only on mutual agreement.

    The loop ends when two consecutive turns, one from each persona, both
    carry the end signal. A lone signal only produces a notice.
    """

    mode = DiscussionMode.AI_DRIVEN

    def effective_signal(self, raw_signal: bool) -> bool:
        return bool(raw_signal)

    def evaluate(self, previous_signal: bool, signal: bool) -> TerminationDecision:
        if signal and previous_signal:
            return TerminationDecision.MUTUAL_AGREEMENT
        if signal:
            return TerminationDecision.AWAIT_PARTNER
        return TerminationDecision.CONTINUE

    def has_pair(self, turn_index: int) -> bool:
        return True

    def skip_reply(self, turn_index: int) -> bool:
        return False

    def __repr__(self) -> str:
        return "AiDrivenPolicy()"


def clamp_fixed_turns(turns: int) -> int:
    """Clamp a requested turn count into the supported range."""
    return max(MIN_FIXED_TURNS, min(MAX_FIXED_TURNS, turns))


def create_policy(mode: DiscussionMode, fixed_turns: int) -> TerminationPolicy:
    """Build the policy for a discussion mode."""
    if mode == DiscussionMode.FIXED_TURNS:
        return FixedTurnsPolicy(clamp_fixed_turns(fixed_turns))
    return AiDrivenPolicy()
