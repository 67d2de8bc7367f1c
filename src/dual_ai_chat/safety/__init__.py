"""
Safety module - cooperative cancellation.
"""
from dual_ai_chat.safety.cancellation import (
    CancellationToken,
    DiscussionCancelled,
    async_wait_with_cancellation,
)

__all__ = [
    "CancellationToken",
    "DiscussionCancelled",
    "async_wait_with_cancellation",
]
