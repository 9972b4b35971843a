from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from flickr_harvester.core.errors import InputError, RunAborted

BASIC = "basic"
DETAILED = "detailed"
FULL = "full"
DETAIL_LEVELS = (BASIC, DETAILED, FULL)

EXHAUSTED = "exhausted"
STOPPED = "stopped"
LIMIT_REACHED = "limit_reached"
FAILED = "failed"

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def normalize_detail_level(level: str) -> str:
    lvl = (level or "").strip().lower()
    if lvl not in DETAIL_LEVELS:
        raise InputError(f"Info level must be one of: {', '.join(DETAIL_LEVELS)} (got {level!r})")
    return lvl


def _freeze_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return freeze(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_value(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(value)
    return value


def freeze(data: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Read-only deep copy: nested mappings become proxies, lists become tuples."""
    if not data:
        return _EMPTY
    if isinstance(data, MappingProxyType):
        # Proxies built here are already frozen all the way down.
        return data
    return MappingProxyType({k: _freeze_value(v) for k, v in data.items()})


@dataclass(frozen=True)
class CollectionRef:
    collection_id: str
    owner_id: str


@dataclass(frozen=True)
class CollectionInfo:
    title: str
    description: str
    total_count: int
    owner: str


@dataclass(frozen=True)
class PageRequest:
    collection_id: Optional[str]
    owner_id: Optional[str]
    page: int
    page_size: int
    extras: Tuple[str, ...]
    params: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def extras_param(self) -> str:
        return ",".join(self.extras)


@dataclass(frozen=True)
class Page:
    records: Tuple[Mapping[str, Any], ...]
    page: int
    total_pages: int
    total_records: int
    collection_metadata: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)


@dataclass(frozen=True)
class ProcessingContext:
    page: int
    photo_number: int
    total_photos: int
    detail_level: str
    tags: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)


@dataclass(frozen=True)
class PhotoEvent:
    collection_id: Optional[str]
    owner_id: str
    photo: Mapping[str, Any]
    collection_metadata: Mapping[str, Any]
    context: ProcessingContext

    @property
    def photo_id(self) -> str:
        return str(self.photo.get("id") or "")

    @property
    def title(self) -> str:
        return str(self.photo.get("title") or "")

    @property
    def description(self) -> str:
        return str(self.photo.get("description") or "")

    @property
    def direct_urls(self) -> Mapping[str, str]:
        return self.photo.get("direct_urls") or _EMPTY


@dataclass(frozen=True)
class DispatchResult:
    stop_requested: bool = False
    stopped_by: Optional[str] = None


@dataclass(frozen=True)
class RunStats:
    processed: int
    events_dispatched: int
    pages_visited: int
    skipped: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "events_dispatched": self.events_dispatched,
            "pages_visited": self.pages_visited,
            "skipped": self.skipped,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
        }


@dataclass(frozen=True)
class RunResult:
    status: str
    stats: RunStats
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    def raise_for_status(self) -> None:
        if self.status == FAILED and self.error is not None:
            raise RunAborted(self.error, self.stats) from self.error


@dataclass(frozen=True)
class JobSpec:
    kind: str  # "album" | "search"
    target: str = ""  # album id or URL
    owner_id: str = ""
    pixie_code: str = ""
    tags: str = ""
    text: str = ""
    safety: int = 0
