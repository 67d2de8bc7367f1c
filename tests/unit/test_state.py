"""
Unit tests for the message and context model.
"""

import pytest

from dual_ai_chat.state import (
    DiscussionContext,
    ImagePart,
    LogEntry,
    Message,
    MessagePurpose,
    MessageSender,
    new_message_id,
    utc_now,
)


NAMES = {MessageSender.LOGICAL: "Cognito", MessageSender.CREATIVE: "Muse"}


class TestMessage:
    """Tests for Message dataclass."""

    def test_to_dict(self):
        message = Message(
            id="abc",
            sender=MessageSender.CREATIVE,
            purpose=MessagePurpose.CREATIVE_TO_LOGICAL,
            text="What if?",
            timestamp=utc_now(),
            duration_ms=120,
            image=ImagePart(mime_type="image/png", data="aGk=", name="sky.png"),
        )

        data = message.to_dict()

        assert data["sender"] == "Creative"
        assert data["purpose"] == "creative_to_logical"
        assert data["duration_ms"] == 120
        assert data["image"] == "sky.png"

    def test_immutable(self):
        message = Message("abc", MessageSender.USER, MessagePurpose.USER_INPUT, "hi", utc_now())
        with pytest.raises(Exception):
            message.text = "changed"

    def test_ids_unique(self):
        assert len({new_message_id() for _ in range(100)}) == 100


class TestDiscussionContext:
    """Tests for DiscussionContext."""

    def test_append_tracks_last_text(self):
        context = DiscussionContext(user_input="q")
        context.append(MessageSender.LOGICAL, "first")
        context.append(MessageSender.CREATIVE, "second")

        assert context.last_text == "second"
        assert len(context.log) == 2

    def test_snapshot_is_detached(self):
        context = DiscussionContext(user_input="q")
        context.append(MessageSender.LOGICAL, "first")
        snapshot = context.snapshot()

        context.append(MessageSender.CREATIVE, "second")

        assert snapshot == (LogEntry(MessageSender.LOGICAL, "first"),)

    def test_render_log(self):
        context = DiscussionContext(user_input="q")
        context.append(MessageSender.LOGICAL, "a")
        context.append(MessageSender.CREATIVE, "b")

        assert context.render_log(NAMES) == "Cognito: a\nMuse: b"

    def test_restore(self):
        log = (LogEntry(MessageSender.LOGICAL, "a"), LogEntry(MessageSender.CREATIVE, "b"))

        context = DiscussionContext.restore("q", None, log, prior_signal=True)

        assert context.last_text == "b"
        assert context.prior_signal is True
        context.append(MessageSender.LOGICAL, "c")
        assert len(log) == 2

    def test_restore_empty(self):
        context = DiscussionContext.restore("q", None, (), prior_signal=False)
        assert context.last_text == ""
