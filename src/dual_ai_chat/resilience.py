"""
Retry policy and failure classification for completion calls.

Every completion call goes through a RetryExecutor. Failures are classified
at this boundary and nothing escapes it unclassified:

- authentication failures are never retried, flip the process-wide
  credentials flag and abort the whole pipeline;
- any other failure is transient and retried with a linear backoff until
  the budget is spent, then reported as RetryExhaustedError.
"""

import threading
from dataclasses import dataclass
from typing import Optional, Callable, Awaitable

from dual_ai_chat.completion.base import CompletionResult
from dual_ai_chat.safety.cancellation import (
    CancellationToken,
    async_wait_with_cancellation,
)
from dual_ai_chat.logging import get_logger

logger = get_logger(__name__)


class CompletionFailure(Exception):
    """A completion call did not produce usable text."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransientCallFailure(CompletionFailure):
    """Retryable failure (network, quota, server error, ...)."""


class AuthenticationFailure(CompletionFailure):
    """Credentials were rejected. Not retryable."""


class RetryExhaustedError(Exception):
    """Raised when all attempts of one call have failed."""

    def __init__(self, attempts: int, last_error: Optional[CompletionFailure] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error.message}" if last_error else ""
        super().__init__(f"All {attempts} attempts failed{detail}")


class CredentialsState:
    """
    Process-wide "credentials invalid" flag.

    Sticky: once an authentication failure is seen, every later query is
    refused until reset() is called (e.g. after a new key is configured).
    """

    def __init__(self) -> None:
        self._invalid = threading.Event()
        self._reason: Optional[str] = None

    @property
    def invalid(self) -> bool:
        return self._invalid.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def invalidate(self, reason: str) -> None:
        self._reason = reason
        self._invalid.set()
        logger.error("Credentials marked invalid", reason=reason)

    def reset(self) -> None:
        self._reason = None
        self._invalid.clear()


credentials = CredentialsState()


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_retries: int = 2
    initial_delay: float = 1.0

    def get_delay(self, attempt: int) -> float:
        """
        Delay before retry number `attempt` (1-based).

        Linear: the first retry waits initial_delay, the second twice that.
        """
        return max(0.0, self.initial_delay * attempt)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


RetryCallback = Callable[[int, CompletionFailure, float], None]


class RetryExecutor:
    """Wraps exactly one external call with bounded automatic retry."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        auth_error_marker: str = "API key not valid",
        credentials_state: Optional[CredentialsState] = None,
    ):
        self.policy = policy or RetryPolicy()
        self.auth_error_marker = auth_error_marker
        self.credentials = credentials_state or credentials

    def classify(self, error_text: str) -> CompletionFailure:
        """Map an opaque error message onto the failure taxonomy."""
        if self.auth_error_marker in error_text:
            return AuthenticationFailure(error_text)
        return TransientCallFailure(error_text)

    async def execute(
        self,
        call: Callable[[], Awaitable[CompletionResult]],
        token: CancellationToken,
        label: str = "",
        on_retry: Optional[RetryCallback] = None,
    ) -> CompletionResult:
        """
        Run `call` until it succeeds or the retry budget is spent.

        Args:
            call: Zero-argument coroutine factory performing the request
            token: Cancellation token for this run
            label: Step identifier used in logs
            on_retry: Called as (attempt, failure, delay) before each retry

        Returns:
            The first successful CompletionResult

        Raises:
            DiscussionCancelled: If the token is cancelled; a late result is discarded
            AuthenticationFailure: On the first authentication-class error
            RetryExhaustedError: After max_retries + 1 failed attempts
        """
        last_error: Optional[CompletionFailure] = None

        for attempt in range(self.policy.max_attempts):
            token.check()

            try:
                result = await call()
            except Exception as e:
                token.check()
                failure = self.classify(str(e) or type(e).__name__)
            else:
                token.check()
                if result.ok:
                    if attempt:
                        logger.info("Call succeeded after retry", step=label, attempt=attempt + 1)
                    return result
                failure = self.classify(result.error or result.text)

            if isinstance(failure, AuthenticationFailure):
                self.credentials.invalidate(failure.message)
                logger.error("Authentication failure, not retrying", step=label)
                raise failure

            last_error = failure

            if attempt >= self.policy.max_retries:
                break

            delay = self.policy.get_delay(attempt + 1)

            logger.warning(
                "Retry scheduled",
                step=label,
                attempt=attempt + 1,
                max_retries=self.policy.max_retries,
                delay=delay,
                error=failure.message,
            )

            if on_retry:
                on_retry(attempt + 1, failure, delay)

            if delay > 0:
                await async_wait_with_cancellation(token, delay)

        logger.error(
            "Retries exhausted",
            step=label,
            attempts=self.policy.max_attempts,
            error=last_error.message if last_error else None,
        )
        raise RetryExhaustedError(self.policy.max_attempts, last_error)
