from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from pathlib import Path

from prompt_toolkit.history import FileHistory


@dataclass(frozen=True, slots=True)
class InputHistoryStats:
    entries: int
    unique: int
    most_used: str | None
    most_used_count: int


class InputHistory(FileHistory):
    """
    Prompt input history backed by prompt_toolkit's history file.

    The same object is handed to the `PromptSession` (up/down recall) and to the dispatcher
    (`/input-history`). Blank lines and an immediate repeat of the previous entry are not stored.
    The file is the source of truth for listing, so entries written by earlier runs are included.
    """

    def __init__(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(str(path))
        self.path = path
        self._last: str | None = None

    def append_string(self, string: str) -> None:
        if not string.strip():
            return
        last = self._last if self._last is not None else self._newest_on_disk()
        if string == last:
            return
        self._last = string
        super().append_string(string)

    def entries(self) -> list[str]:
        """All stored entries, oldest first."""
        return list(reversed(list(self.load_history_strings())))

    def clear(self) -> int:
        """Empty the history file and the in-memory recall list; returns how many entries were dropped."""
        count = len(self.entries())
        self.path.write_text("", encoding="utf-8")
        self._loaded_strings = []
        self._last = None
        return count

    def stats(self) -> InputHistoryStats:
        entries = self.entries()
        counts = Counter(entries)
        most_used, most_used_count = counts.most_common(1)[0] if counts else (None, 0)
        return InputHistoryStats(
            entries=len(entries),
            unique=len(counts),
            most_used=most_used,
            most_used_count=most_used_count,
        )

    def _newest_on_disk(self) -> str | None:
        return next(iter(self.load_history_strings()), None)
