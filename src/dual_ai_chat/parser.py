"""
Persona response parsing.

Splits one raw completion into the spoken text shown in the transcript, an
optional wholesale notepad replacement, and the discussion-end signal.

Precedence:
- the notepad block is taken from the LAST start marker and the LAST end
  marker, and only counts when the trimmed text ends with the end marker;
- the completion marker counts anywhere in the spoken text, and every
  literal occurrence is removed;
- an empty result is replaced by a placeholder so no turn is ever blank.
"""

import re
from dataclasses import dataclass
from typing import Optional

from dual_ai_chat.logging import get_logger

logger = get_logger(__name__)


NOTEPAD_UPDATED_TEXT = "updated the notepad"
ENDING_SUGGESTED_TEXT = "suggested ending the discussion"
NO_TEXT_PLACEHOLDER = "(AI provided no additional text)"


@dataclass(frozen=True)
class ParsedResponse:
    """Result of parsing one persona completion."""

    spoken_text: str
    notepad_update: Optional[str] = None
    end_signal: bool = False


class ResponseParser:
    """Extracts spoken text, notepad update and end signal from a completion."""

    def __init__(
        self,
        notepad_start_marker: str = "<notepad_update>",
        notepad_end_marker: str = "</notepad_update>",
        completion_marker: str = "<discussion_complete />",
    ):
        self.notepad_start_marker = notepad_start_marker
        self.notepad_end_marker = notepad_end_marker
        self.completion_marker = completion_marker
        self._completion_pattern = re.compile(re.escape(completion_marker))

    def parse(self, raw_text: str) -> ParsedResponse:
        """
        Parse a raw completion.

        Args:
            raw_text: Completion text as returned by the service

        Returns:
            ParsedResponse with a non-empty spoken_text
        """
        text = (raw_text or "").strip()
        spoken_text, notepad_update = self._split_notepad_block(text)

        end_signal = False
        if self.completion_marker in spoken_text:
            end_signal = True
            spoken_text = self._completion_pattern.sub("", spoken_text).strip()

        if not spoken_text:
            spoken_text = self._placeholder(notepad_update is not None, end_signal)
            logger.debug(
                "Empty spoken text replaced",
                notepad_updated=notepad_update is not None,
                end_signal=end_signal,
            )

        return ParsedResponse(
            spoken_text=spoken_text,
            notepad_update=notepad_update,
            end_signal=end_signal,
        )

    def _split_notepad_block(self, text: str) -> tuple[str, Optional[str]]:
        """Return (spoken_text, notepad_update) for trimmed text."""
        start = text.rfind(self.notepad_start_marker)
        end = text.rfind(self.notepad_end_marker)

        if start == -1 or end == -1 or end <= start or not text.endswith(self.notepad_end_marker):
            return text, None

        inner = text[start + len(self.notepad_start_marker):end].strip()
        return text[:start].strip(), inner or None

    @staticmethod
    def _placeholder(notepad_updated: bool, end_signal: bool) -> str:
        """Describe what the persona did when it said nothing."""
        if notepad_updated and end_signal:
            return f"(AI {NOTEPAD_UPDATED_TEXT} and {ENDING_SUGGESTED_TEXT})"
        if notepad_updated:
            return f"(AI {NOTEPAD_UPDATED_TEXT})"
        if end_signal:
            return f"(AI {ENDING_SUGGESTED_TEXT})"
        return NO_TEXT_PLACEHOLDER
