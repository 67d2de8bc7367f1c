"""
Completion service contract.

The orchestrator only knows this interface; transport, auth and model
internals live in the concrete service.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from dual_ai_chat.state import ImagePart


@dataclass(frozen=True)
class CompletionRequest:
    """Exactly what is sent for one persona turn."""

    prompt: str
    model: str
    system_instruction: Optional[str] = None
    image: Optional[ImagePart] = None
    thinking_budget: Optional[int] = None


@dataclass(frozen=True)
class CompletionResult:
    """Service reply. `error` is an opaque message when the call failed."""

    text: str
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class CompletionService(Protocol):
    """Anything that can turn a request into a completion."""

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        ...
