"""
Tests for steps and failure checkpoints.
"""

import pytest

from dual_ai_chat.checkpoint import FailureCheckpoint, Step, StepKind
from dual_ai_chat.completion.base import CompletionRequest
from dual_ai_chat.state import LogEntry, MessagePurpose, MessageSender


class TestStep:
    """Tests for the Step variant."""

    def test_initial(self):
        step = Step.initial()

        assert step.kind == StepKind.INITIAL_TURN
        assert step.persona == MessageSender.LOGICAL
        assert step.purpose == MessagePurpose.LOGICAL_TO_CREATIVE
        assert step.identifier == "logical-initial"
        assert not step.is_final

    def test_turn_a(self):
        step = Step.turn_a(2)

        assert step.persona == MessageSender.CREATIVE
        assert step.purpose == MessagePurpose.CREATIVE_TO_LOGICAL
        assert step.identifier == "creative-reply-turn-2"

    def test_turn_b(self):
        step = Step.turn_b(0)

        assert step.persona == MessageSender.LOGICAL
        assert step.purpose == MessagePurpose.LOGICAL_TO_CREATIVE
        assert step.identifier == "logical-reply-turn-0"

    def test_final(self):
        step = Step.final()

        assert step.persona == MessageSender.LOGICAL
        assert step.purpose == MessagePurpose.FINAL_RESPONSE
        assert step.identifier == "logical-final-answer"
        assert step.is_final

    def test_turn_index_required_in_loop(self):
        with pytest.raises(ValueError):
            Step(StepKind.TURN_A)
        with pytest.raises(ValueError):
            Step(StepKind.TURN_B, -1)

    def test_turn_index_rejected_outside_loop(self):
        with pytest.raises(ValueError):
            Step(StepKind.FINAL_SYNTHESIS, 1)

    def test_equality(self):
        assert Step.turn_a(1) == Step.turn_a(1)
        assert Step.turn_a(1) != Step.turn_b(1)


class TestResumePoint:
    """Where the loop re-enters after a retried step."""

    def test_initial(self):
        assert Step.initial().resume_point() == (0, False)

    def test_turn_a_skips_first_half(self):
        assert Step.turn_a(3).resume_point() == (3, True)

    def test_turn_b_moves_to_next_pair(self):
        assert Step.turn_b(3).resume_point() == (4, False)

    def test_final_has_none(self):
        with pytest.raises(ValueError):
            Step.final().resume_point()


def make_checkpoint(step=None, **kwargs):
    defaults = dict(
        step=step or Step.turn_b(1),
        request=CompletionRequest(prompt="prompt", model="gemini-2.5-flash", system_instruction="sys"),
        prior_log=(LogEntry(MessageSender.LOGICAL, "a"), LogEntry(MessageSender.CREATIVE, "b")),
        prior_signal=True,
        user_input="question",
        errored_message_id="msg-1",
        last_error="503",
    )
    defaults.update(kwargs)
    return FailureCheckpoint(**defaults)


class TestFailureCheckpoint:
    """Tests for FailureCheckpoint."""

    def test_derived_fields(self):
        checkpoint = make_checkpoint()

        assert checkpoint.persona == MessageSender.LOGICAL
        assert checkpoint.purpose == MessagePurpose.LOGICAL_TO_CREATIVE
        assert checkpoint.resume_turn_index == 2
        assert checkpoint.failures == 1

    def test_final_has_no_resume_index(self):
        assert make_checkpoint(step=Step.final()).resume_turn_index is None

    def test_repoint_keeps_state(self):
        """Re-pointing changes only the notice, error and failure count."""
        checkpoint = make_checkpoint()
        repointed = checkpoint.repoint("msg-2", "timeout")

        assert repointed.errored_message_id == "msg-2"
        assert repointed.last_error == "timeout"
        assert repointed.failures == 2
        assert repointed.request is checkpoint.request
        assert repointed.prior_log == checkpoint.prior_log
        assert repointed.prior_signal is True
        assert checkpoint.errored_message_id == "msg-1"

    def test_to_dict(self):
        data = make_checkpoint().to_dict()

        assert data["step"] == "logical-reply-turn-1"
        assert data["step_kind"] == "turn_b"
        assert data["persona"] == "Logical"
        assert data["resume_turn_index"] == 2
        assert data["prior_turns"] == 2
        assert data["has_image"] is False
        assert "prompt" not in data
