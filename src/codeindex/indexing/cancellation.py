"""
Cooperative cancellation.

A token is handed down from the indexing engine to the scanner and to each
file task. It is polled between scan entries, file waves and sub-batches; it
never interrupts an in-flight call. Backed by ``threading.Event`` so the
scanner can poll it from a worker thread.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe, one-shot cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
