"""
Completion module - AI completion service contract and Gemini client.
"""

from dual_ai_chat.completion.base import (
    CompletionRequest,
    CompletionResult,
    CompletionService,
)
from dual_ai_chat.completion.gemini import GeminiCompletionService

__all__ = [
    "CompletionRequest",
    "CompletionResult",
    "CompletionService",
    "GeminiCompletionService",
]
