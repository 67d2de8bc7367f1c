"""
Tests for termination policies.
"""

import itertools

import pytest

from dual_ai_chat.config import DiscussionMode
from dual_ai_chat.termination import (
    AiDrivenPolicy,
    FixedTurnsPolicy,
    TerminationDecision,
    clamp_fixed_turns,
    create_policy,
)


def schedule(policy, limit: int = 50) -> list:
    """Steps the discussion loop runs for a policy when nobody signals."""
    steps = ["initial"]
    turn = 0
    while policy.has_pair(turn) and turn < limit:
        steps.append(f"A{turn}")
        if policy.skip_reply(turn):
            break
        steps.append(f"B{turn}")
        turn += 1
    steps.append("final")
    return steps


def halt_index(policy, signals) -> int:
    """Index of the turn at which the policy ends the loop, or -1."""
    previous = False
    for index, raw in enumerate(signals):
        signal = policy.effective_signal(raw)
        if policy.evaluate(previous, signal) == TerminationDecision.MUTUAL_AGREEMENT:
            return index
        previous = signal
    return -1


class TestFixedTurnsPolicy:
    """Tests for FixedTurnsPolicy."""

    def test_rejects_zero_turns(self):
        with pytest.raises(ValueError):
            FixedTurnsPolicy(0)

    def test_two_turns_schedule(self):
        """FixedTurns(2): pair-1 reply is skipped."""
        assert schedule(FixedTurnsPolicy(2)) == ["initial", "A0", "B0", "A1", "final"]

    def test_one_turn_schedule(self):
        assert schedule(FixedTurnsPolicy(1)) == ["initial", "A0", "final"]

    @pytest.mark.parametrize("turns", [1, 2, 3, 4, 5, 8])
    def test_half_counts(self, turns):
        """n first halves and n-1 second halves for every n."""
        steps = schedule(FixedTurnsPolicy(turns))

        assert sum(1 for s in steps if s.startswith("A")) == turns
        assert sum(1 for s in steps if s.startswith("B")) == turns - 1
        assert steps[-1] == "final"

    def test_signals_ignored(self):
        policy = FixedTurnsPolicy(3)

        assert policy.effective_signal(True) is False
        assert policy.evaluate(True, True) == TerminationDecision.CONTINUE


class TestAiDrivenPolicy:
    """Tests for AiDrivenPolicy."""

    def test_decisions(self):
        policy = AiDrivenPolicy()

        assert policy.evaluate(False, False) == TerminationDecision.CONTINUE
        assert policy.evaluate(True, False) == TerminationDecision.CONTINUE
        assert policy.evaluate(False, True) == TerminationDecision.AWAIT_PARTNER
        assert policy.evaluate(True, True) == TerminationDecision.MUTUAL_AGREEMENT

    def test_loop_unbounded(self):
        policy = AiDrivenPolicy()

        assert policy.has_pair(1000)
        assert not policy.skip_reply(1000)

    @pytest.mark.parametrize("length", range(1, 8))
    def test_halts_only_on_adjacent_pair(self, length):
        """For every signal sequence, halt at the first adjacent (True, True)."""
        policy = AiDrivenPolicy()

        for signals in itertools.product([False, True], repeat=length):
            expected = next(
                (i for i in range(1, length) if signals[i - 1] and signals[i]),
                -1,
            )
            assert halt_index(policy, signals) == expected, signals

    def test_lone_signals_never_halt(self):
        policy = AiDrivenPolicy()
        assert halt_index(policy, [True, False, True, False, True]) == -1


class TestPolicyFactory:
    """Tests for create_policy and clamping."""

    @pytest.mark.parametrize("requested,expected", [(0, 1), (1, 1), (3, 3), (5, 5), (9, 5), (-2, 1)])
    def test_clamp(self, requested, expected):
        assert clamp_fixed_turns(requested) == expected

    def test_fixed(self):
        policy = create_policy(DiscussionMode.FIXED_TURNS, 7)

        assert isinstance(policy, FixedTurnsPolicy)
        assert policy.turns == 5

    def test_ai_driven(self):
        policy = create_policy(DiscussionMode.AI_DRIVEN, 2)

        assert isinstance(policy, AiDrivenPolicy)
        assert policy.mode == DiscussionMode.AI_DRIVEN
