"""
Shared notepad store.
"""

from dataclasses import dataclass
from typing import Optional

from dual_ai_chat.state import MessageSender
from dual_ai_chat.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotepadDocument:
    """Snapshot of the notepad."""

    content: str
    last_updated_by: Optional[MessageSender] = None


class NotepadStore:
    """
    Single shared document that either persona may replace wholesale.

    No partial edits and no history. Access is serialized by the
    orchestrator, which runs one step at a time.
    """

    def __init__(self, initial_content: str = ""):
        self.initial_content = initial_content
        self._content = initial_content
        self._last_updated_by: Optional[MessageSender] = None

    @property
    def content(self) -> str:
        """Current notepad text."""
        return self._content

    @property
    def last_updated_by(self) -> Optional[MessageSender]:
        """Persona that last replaced the notepad, if any."""
        return self._last_updated_by

    def replace(self, new_content: str, writer: MessageSender) -> NotepadDocument:
        """Replace the whole document."""
        self._content = new_content
        self._last_updated_by = writer
        logger.info("Notepad replaced", writer=writer.value, length=len(new_content))
        return self.snapshot()

    def reset(self) -> NotepadDocument:
        """Restore the initial template."""
        self._content = self.initial_content
        self._last_updated_by = None
        logger.debug("Notepad reset")
        return self.snapshot()

    def snapshot(self) -> NotepadDocument:
        """Immutable view of the current state."""
        return NotepadDocument(content=self._content, last_updated_by=self._last_updated_by)
