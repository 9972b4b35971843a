from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from flickr_harvester.core.errors import CacheError
from flickr_harvester.io.utils import atomic_write_json

logger = logging.getLogger(__name__)

_MISSING = object()


class _SupplierFailed(Exception):
    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause))
        self.cause = cause


class MemoryCacheBackend:
    """In-process TTL cache. All access is done under one lock."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[float, Any]] = {}
        self._clock = clock

    def _lookup(self, key: str) -> Any:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return _MISSING
            expires_at, value = item
            if expires_at <= self._clock():
                del self._items[key]
                return _MISSING
            return value

    def exists(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def get_or_compute(self, key: str, ttl: int, supplier: Callable[[], Any]) -> Any:
        value = self._lookup(key)
        if value is not _MISSING:
            return value
        # Supplier runs outside the lock; concurrent misses may both compute.
        value = supplier()
        with self._lock:
            self._items[key] = (self._clock() + ttl, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class JsonFileCacheBackend:
    """
    One JSON document per key under ``directory``:
      {"key": ..., "expires_at": <epoch seconds>, "value": ...}

    Values must be JSON-serializable (API payloads are).
    Unreadable or corrupt entries are treated as misses.
    """

    def __init__(self, directory: str, clock: Callable[[], float] = time.time) -> None:
        self.directory = directory
        self._clock = clock
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def _lookup(self, key: str) -> Any:
        path = self._path(key)
        if not os.path.exists(path):
            return _MISSING
        try:
            with open(path, "r", encoding="utf-8") as f:
                rec = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug("cache entry unreadable | key=%s | err=%r", key, e)
            return _MISSING
        if not isinstance(rec, dict) or float(rec.get("expires_at") or 0) <= self._clock():
            return _MISSING
        return rec.get("value")

    def exists(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def get_or_compute(self, key: str, ttl: int, supplier: Callable[[], Any]) -> Any:
        value = self._lookup(key)
        if value is not _MISSING:
            return value
        value = supplier()
        atomic_write_json({"key": key, "expires_at": self._clock() + ttl, "value": value}, self._path(key))
        return value

    def clear(self) -> None:
        for name in os.listdir(self.directory):
            if name.endswith(".json"):
                os.remove(os.path.join(self.directory, name))


class CacheFacade:
    """
    Best-effort get-or-compute in front of an optional backend.

    ttl <= 0 or no backend: the supplier is called directly.
    Backend failures are logged and treated as a miss; supplier failures propagate.
    """

    def __init__(self, backend=None) -> None:
        self.backend = backend
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "errors": 0, "bypassed": 0}

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    def _inc(self, name: str) -> None:
        with self._lock:
            self._stats[name] += 1

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def exists(self, key: str) -> bool:
        if self.backend is None:
            return False
        try:
            return bool(self.backend.exists(key))
        except Exception as e:
            logger.warning("cache exists failed | key=%s | err=%r", key, e)
            return False

    def get_or_compute(self, key: str, ttl: int, supplier: Callable[[], Any]) -> Any:
        if self.backend is None or ttl is None or ttl <= 0:
            self._inc("bypassed")
            return supplier()

        computed: Dict[str, Any] = {}

        def _tracked():
            try:
                value = supplier()
            except Exception as e:
                raise _SupplierFailed(e) from e
            computed["value"] = value
            return value

        cause: Optional[Exception] = None
        try:
            value = self.backend.get_or_compute(key, ttl, _tracked)
        except _SupplierFailed as sf:
            cause = sf.cause
        except Exception as e:
            err = CacheError(f"cache backend failed for {key}: {e!r}")
            self._inc("errors")
            self._inc("misses")
            logger.warning("%s (continuing without cache)", err)
            if "value" in computed:
                return computed["value"]
            return supplier()

        if cause is not None:
            self._inc("misses")
            raise cause

        self._inc("misses" if "value" in computed else "hits")
        return value

    def clear(self) -> bool:
        if self.backend is None:
            return False
        try:
            self.backend.clear()
        except Exception as e:
            logger.warning("cache clear failed | err=%r", e)
            return False
        return True
