"""Cooperative cancellation for the index rebuild.

The rebuild checks its token before each page, so a cancel takes effect
once the page in flight has been written and its transaction finished.
Nothing is interrupted mid-page.
"""

from __future__ import annotations

import threading

from catalog_index.errors import RebuildCancelledError


class CancellationToken:
    """Thread-safe flag set by one thread and polled by the rebuild."""

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self.reason = reason
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        return self._is_cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled():
            raise RebuildCancelledError(self.reason or "Index rebuild was cancelled")
