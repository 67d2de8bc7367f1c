"""
Cooperative cancellation for a running discussion.

A token is shared by every suspension point of one query (or resume). It is
checked at the start of each step, right after each completion call returns,
at every loop boundary and while waiting out a retry backoff. An in-flight
call is never interrupted; its result is discarded instead.
"""

import asyncio
import threading
import time
from typing import Optional

from dual_ai_chat.logging import get_logger

logger = get_logger(__name__)


class DiscussionCancelled(Exception):
    """Raised at a suspension point once the token has been cancelled."""
    pass


class CancellationToken:
    """
    Thread-safe cancellation flag.

    Backed by a threading.Event so a signal handler or another thread may
    cancel while the event loop is busy.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        """Check if the token has been cancelled."""
        return self._cancelled.is_set()

    @property
    def reason(self) -> Optional[str]:
        """Why the token was cancelled."""
        return self._reason

    def check(self) -> None:
        """
        Raise if the token has been cancelled.

        Raises:
            DiscussionCancelled: If cancel() has been called
        """
        if self._cancelled.is_set():
            raise DiscussionCancelled(f"Discussion cancelled ({self._reason or 'unknown'})")

    def cancel(self, reason: str = "user") -> None:
        """Cancel the token. Further calls are no-ops."""
        if self._cancelled.is_set():
            return
        self._reason = reason
        self._cancelled.set()
        logger.warning("Cancellation requested", reason=reason)


async def async_wait_with_cancellation(
    token: CancellationToken,
    duration: float,
    check_interval: float = 0.1,
) -> None:
    """
    Async wait for duration while checking the token.

    Use instead of asyncio.sleep() for interruptible waits.

    Raises:
        DiscussionCancelled: If the token is cancelled during the wait
    """
    end_time = time.monotonic() + duration
    token.check()
    while time.monotonic() < end_time:
        remaining = end_time - time.monotonic()
        await asyncio.sleep(min(check_interval, max(0, remaining)))
        token.check()
