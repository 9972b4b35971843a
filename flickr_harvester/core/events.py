from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple

from flickr_harvester.core.models import DispatchResult, PhotoEvent

logger = logging.getLogger(__name__)

STOP = "stop"

Subscriber = Callable[[PhotoEvent], Any]


class EventSink:
    """
    Ordered, synchronous subscribers for photo events.

    A subscriber requests a stop by returning a truthy value such as STOP. Every subscriber
    still sees the event; the stop takes effect once dispatch returns.
    """

    def __init__(self, subscribers: Optional[List[Subscriber]] = None) -> None:
        self._subscribers: List[Tuple[str, Subscriber]] = []
        for fn in subscribers or []:
            self.subscribe(fn)

    def subscribe(self, fn: Subscriber, name: Optional[str] = None) -> None:
        label = name or getattr(fn, "__name__", None) or type(fn).__name__
        self._subscribers.append((label, fn))

    def __len__(self) -> int:
        return len(self._subscribers)

    def dispatch(self, event: PhotoEvent) -> DispatchResult:
        stopped_by = None
        for label, fn in self._subscribers:
            outcome = fn(event)
            if stopped_by is None and outcome:
                stopped_by = label
                logger.debug("stop requested | subscriber=%s | photo=%s", label, event.photo_id)
        return DispatchResult(stop_requested=stopped_by is not None, stopped_by=stopped_by)
