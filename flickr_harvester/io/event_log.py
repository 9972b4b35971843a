from __future__ import annotations

import json
import os
import threading
import time
from typing import Optional

from flickr_harvester.core.events import STOP
from flickr_harvester.core.models import PhotoEvent


def _plain(value):
    if isinstance(value, dict) or hasattr(value, "items"):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def event_to_dict(event: PhotoEvent) -> dict:
    return {
        "type": "photo_event",
        "collection_id": event.collection_id,
        "owner_id": event.owner_id,
        "photo_id": event.photo_id,
        "page": event.context.page,
        "photo_number": event.context.photo_number,
        "total_photos": event.context.total_photos,
        "detail_level": event.context.detail_level,
        "context": _plain(event.context.tags),
        "photo": _plain(event.photo),
        "ts": time.time(),
    }


class JsonlEventLog:
    """Subscriber that appends one JSON line per photo event."""

    def __init__(self, path: Optional[str]) -> None:
        self.path = path
        self._lock = threading.Lock()
        if path:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._fh = open(path, "a", encoding="utf-8") if path else None
        self.written = 0

    def __call__(self, event: PhotoEvent) -> None:
        if not self._fh:
            return None
        with self._lock:
            self._fh.write(json.dumps(event_to_dict(event), ensure_ascii=False) + "\n")
            self._fh.flush()
            self.written += 1
        return None

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


class StopAfter:
    """Requests a stop once it has seen ``n`` events."""

    def __init__(self, n: int) -> None:
        self.n = max(1, int(n))
        self.seen = 0

    def __call__(self, event: PhotoEvent):
        self.seen += 1
        if self.seen >= self.n:
            return STOP
        return None
