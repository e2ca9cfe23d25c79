"""
Undo / Redo History
Flow: Committed command + inverse → Coalesce or push → Trim → Undo ⇄ Redo

History is linear: committing a new command clears the redo stack.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Hashable, List, Optional

import structlog

from pagestudio.config.settings import get_settings

from .commands import Command

logger = structlog.get_logger()


@dataclass
class HistoryEntry:
    """A committed command paired with its inverse."""
    command: Command
    inverse: Command
    timestamp: float
    coalesce_key: Optional[Hashable] = None
    label: str = "Edit"
    merged_count: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class History:
    """
    Linear undo/redo stacks with coalescing and a size cap.

    Coalescing:
    - An entry with a coalesce key merges into the top undo entry when the key
      matches, the redo stack is empty and the previous edit on that key
      happened within the coalescing window
    - The merged entry keeps the first inverse (value before the burst) and the
      latest command (net change), so one undo reverts the whole burst
    """

    def __init__(
        self,
        limit: Optional[int] = None,
        coalesce_window_ms: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        settings = get_settings()
        self.limit = limit if limit is not None else settings.HISTORY_LIMIT
        self.coalesce_window_ms = (
            coalesce_window_ms if coalesce_window_ms is not None else settings.HISTORY_COALESCE_WINDOW_MS
        )
        if self.limit < 1:
            raise ValueError("History limit must be at least 1")

        self._clock = clock or time.monotonic
        self._undo: List[HistoryEntry] = []
        self._redo: List[HistoryEntry] = []
        self._coalescing_open = True
        self.logger = logger.bind(component="history")

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record(self, command: Command, inverse: Command, coalesce_key: Optional[Hashable] = None) -> HistoryEntry:
        """
        Record a committed command.

        Args:
            command: Command that was applied
            inverse: Command that reverts it
            coalesce_key: Override for ``command.coalesce_key``

        Returns:
            HistoryEntry: New or merged entry
        """
        now = self._clock()
        key = coalesce_key if coalesce_key is not None else command.coalesce_key
        had_redo = bool(self._redo)
        self._redo.clear()

        top = self._undo[-1] if self._undo else None
        if (
            key is not None
            and top is not None
            and self._coalescing_open
            and not had_redo
            and top.coalesce_key == key
            and (now - top.timestamp) * 1000.0 <= self.coalesce_window_ms
        ):
            top.command = command
            top.timestamp = now
            top.merged_count += 1
            self.logger.debug("History entry coalesced", label=top.label, merged_count=top.merged_count)
            return top

        entry = HistoryEntry(
            command=command,
            inverse=inverse,
            timestamp=now,
            coalesce_key=key,
            label=command.label,
        )
        self._undo.append(entry)
        self._coalescing_open = True
        self._trim()
        return entry

    def break_coalescing(self) -> None:
        """Force the next recorded command into its own entry (e.g. on blur)."""
        self._coalescing_open = False

    def _trim(self) -> None:
        overflow = len(self._undo) - self.limit
        if overflow > 0:
            del self._undo[:overflow]
            self.logger.debug("History trimmed", dropped=overflow, limit=self.limit)

    # -------------------------------------------------------------------------
    # Undo / redo bookkeeping
    # -------------------------------------------------------------------------

    def peek_undo(self) -> Optional[HistoryEntry]:
        return self._undo[-1] if self._undo else None

    def peek_redo(self) -> Optional[HistoryEntry]:
        return self._redo[-1] if self._redo else None

    def mark_undone(self, entry: HistoryEntry, command: Command) -> None:
        """Move the top undo entry to the redo stack after its inverse was applied."""
        if not self._undo or self._undo[-1] is not entry:
            raise RuntimeError("Only the most recent entry can be undone")
        self._undo.pop()
        entry.command = command
        self._redo.append(entry)
        self._coalescing_open = False

    def mark_redone(self, entry: HistoryEntry, inverse: Command) -> None:
        """Move the top redo entry back to the undo stack after re-applying it."""
        if not self._redo or self._redo[-1] is not entry:
            raise RuntimeError("Only the most recently undone entry can be redone")
        self._redo.pop()
        entry.inverse = inverse
        self._undo.append(entry)
        self._coalescing_open = False
        self._trim()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def undo_labels(self) -> List[str]:
        """Labels of undoable entries, most recent first."""
        return [entry.label for entry in reversed(self._undo)]

    def redo_labels(self) -> List[str]:
        return [entry.label for entry in reversed(self._redo)]

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
        self._coalescing_open = True
        self.logger.info("History cleared")
