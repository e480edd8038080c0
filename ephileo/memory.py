"""Append-only learning journal spliced into the system prompt."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from ephileo.logging import get_logger

log = get_logger(__name__)

JOURNAL_FILENAME = "learnings.md"
JOURNAL_HEADER = "# Ephileo Learning Journal\n\nThings I've learned and discovered.\n\n---\n"


class LearningJournal:
    """Markdown journal of things the agent chose to remember."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory).expanduser()

    @property
    def path(self) -> Path:
        return self.directory / JOURNAL_FILENAME

    def load(self) -> str:
        """Return the journal text, or an empty string if there is none yet."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def append(self, topic: str, content: str, now: datetime | None = None) -> Path:
        """Append one entry, creating the journal with its header if needed."""
        self.directory.mkdir(parents=True, exist_ok=True)
        timestamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M")
        entry = f"\n## {topic}\n_Learned: {timestamp}_\n\n{content}\n\n---\n"

        if not self.path.exists():
            self.path.write_text(JOURNAL_HEADER, encoding="utf-8")
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(entry)

        log.info("Saved learning", topic=topic, path=str(self.path))
        return self.path
