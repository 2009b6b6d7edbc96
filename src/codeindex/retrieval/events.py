"""
Search progress events.

Lets a UI follow a search as it widens its candidate pool between attempts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal

import structlog

logger = structlog.get_logger(__name__)


SearchEventType = Literal["search-start", "search-retry", "search-complete"]


@dataclass
class SearchEvent:
    """One step of a search."""

    type: SearchEventType
    attempt: int
    max_attempts: int
    current_top_n: int
    message: str
    query: str | None = None


SearchListener = Callable[[SearchEvent], None]


class SearchEventEmitter:
    """Synchronous fan-out of search events to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[SearchListener] = []

    def subscribe(self, listener: SearchListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: SearchListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: SearchEvent) -> None:
        """Deliver an event. A failing listener does not stop the others."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "Search event listener failed",
                    event_type=event.type,
                    error=str(e),
                )
