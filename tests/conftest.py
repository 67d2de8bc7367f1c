"""
Pytest configuration and fixtures.
"""

import inspect
import pytest
import tempfile
from pathlib import Path

from dual_ai_chat.completion.base import CompletionResult
from dual_ai_chat.config import AppConfig, DiscussionMode
from dual_ai_chat.orchestrator import DiscussionOrchestrator
from dual_ai_chat.resilience import credentials


class ScriptedCompletionService:
    """
    Completion service that replays scripted replies instead of calling out.

    A reply may be a string (success), a CompletionResult (returned as is)
    or an exception (raised). Once the script runs out, `default` is used.
    `hook` is called (or awaited) with each request before replying.
    """

    def __init__(self, replies=None, default="Noted."):
        self.replies = list(replies or [])
        self.default = default
        self.requests = []
        self.hook = None

    def add(self, *replies):
        self.replies.extend(replies)

    async def complete(self, request):
        self.requests.append(request)
        if self.hook is not None:
            outcome = self.hook(request)
            if inspect.isawaitable(outcome):
                await outcome

        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, CompletionResult):
            return reply
        return CompletionResult(text=reply, duration_ms=5)


def failure(message: str = "503 Service Unavailable") -> CompletionResult:
    """A failed completion as returned by the service."""
    return CompletionResult(text="", error=message)


@pytest.fixture(autouse=True)
def reset_credentials():
    """The credentials flag is process-wide; isolate every test."""
    credentials.reset()
    yield
    credentials.reset()


@pytest.fixture
def make_config():
    """Build an AppConfig without retry delays."""
    def _create(
        mode: DiscussionMode = DiscussionMode.FIXED_TURNS,
        turns: int = 2,
        retries: int = 0,
    ) -> AppConfig:
        config = AppConfig()
        config.discussion.mode = mode
        config.discussion.fixed_turns = turns
        config.retry.max_auto_retries = retries
        config.retry.base_delay_seconds = 0.0
        return config
    return _create


@pytest.fixture
def make_orchestrator(make_config):
    """Build (orchestrator, service) pairs around a scripted service."""
    def _create(replies=None, **config_kwargs):
        service = ScriptedCompletionService(replies)
        orchestrator = DiscussionOrchestrator(make_config(**config_kwargs), service)
        return orchestrator, service
    return _create


@pytest.fixture(scope="session")
def temp_dir():
    """Session-scoped temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_file(temp_dir):
    """Create a temporary file."""
    def _create(name: str, content: str = "") -> Path:
        path = temp_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path
    return _create
