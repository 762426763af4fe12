"""
state.py - Shared Progress and Error Bookkeeping for One Cycle

RefreshState is the only object mutated by several fetch tasks at once.
Every public method performs its whole read-modify-write under one lock.
Progress is copied under that lock and handed to the sink after it is
released, so a sink may call back into the state. A second, reentrant lock
around each change-and-publish step keeps updates reaching the sink in the
order the state changed.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from rulesync.models import ErrorEntry

logger = logging.getLogger(__name__)

# (total, remaining, remaining_titles)
ProgressSink = Callable[[int, int, list[str]], None]


class RefreshState:
    """Pending/done/error lists for the items of one refresh cycle."""

    def __init__(self, titles: Iterable[str], progress: ProgressSink | None = None) -> None:
        self._lock = threading.Lock()
        self._publish_lock = threading.RLock()
        self._progress = progress
        self.pending: list[str] = list(titles)
        self.total = len(self.pending)
        self.done: list[str] = []
        self.errors: list[ErrorEntry] = []
        self.withdrawn: list[str] = []

    def finish(self, title: str) -> None:
        """Move one title from pending to done and publish progress."""
        with self._publish_lock:
            with self._lock:
                try:
                    self.pending.remove(title)
                except ValueError:
                    logger.warning("Finished item %r was not pending", title)
                self.done.append(title)
                remaining = list(self.pending)
            self._publish(remaining)

    def add_error(self, title: str, message: str) -> None:
        with self._lock:
            self.errors.append(ErrorEntry(title, message))

    def withdraw(self, title: str) -> None:
        """Drop a title that will never be dispatched (cycle cancelled)."""
        with self._publish_lock:
            with self._lock:
                self.pending.remove(title)
                self.withdrawn.append(title)
                remaining = list(self.pending)
            self._publish(remaining)

    def snapshot(self) -> tuple[list[str], list[str], list[ErrorEntry]]:
        with self._lock:
            return list(self.pending), list(self.done), list(self.errors)

    def _publish(self, remaining: list[str]) -> None:
        if self._progress is None:
            return
        try:
            self._progress(self.total, len(remaining), remaining)
        except Exception:
            logger.exception("Progress sink failed")
