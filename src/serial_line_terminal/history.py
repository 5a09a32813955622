"""Bounded output history rendered by the front-end."""

from __future__ import annotations

import collections
import logging

from typeguard import typechecked

from . import HISTORY_CAPACITY
from .exceptions import InvalidSettingError
from .types import HistoryLines

logger = logging.getLogger("serial_line_terminal.history")


@typechecked
class OutputHistory:
    """Append-only list of display lines with FIFO eviction.

    Holds at most ``capacity`` lines.  When a new line would exceed the
    capacity the oldest lines are dropped; the newest line is never evicted.

    Example::

        history = OutputHistory(capacity=3)
        for line in ("a", "b", "c", "d"):
            history.append(line)
        history.snapshot()   # ("b", "c", "d")
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        """Initialize an empty history.

        Args:
            capacity: Maximum number of retained lines.  Must be > 0.

        Raises:
            InvalidSettingError: If *capacity* is not positive.
        """
        if capacity <= 0:
            raise InvalidSettingError(
                f"Invalid history capacity {capacity!r}. "
                f"Capacity must be a positive integer (default: {HISTORY_CAPACITY})."
            )
        self._capacity = capacity
        self._lines: collections.deque = collections.deque()
        self._appended = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def appended_count(self) -> int:
        """Total number of lines ever appended, including evicted ones."""
        return self._appended

    def append(self, line: str) -> None:
        """Append *line*, evicting from the front while over capacity."""
        self._lines.append(line)
        self._appended += 1
        while len(self._lines) > self._capacity:
            dropped = self._lines.popleft()
            logger.debug("[HISTORY] Evicted oldest line %r", dropped)

    def snapshot(self) -> HistoryLines:
        """Return the retained lines, oldest first."""
        return tuple(self._lines)

    def __len__(self) -> int:
        return len(self._lines)
