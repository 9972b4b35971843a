from __future__ import annotations

import logging
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional

from flickr_harvester.core.cache import CacheFacade
from flickr_harvester.core.errors import EnrichmentError
from flickr_harvester.core.keys import build_key
from flickr_harvester.core.models import BASIC, DETAILED, FULL, freeze, normalize_detail_level

logger = logging.getLogger(__name__)

_BASIC_EXTRAS = ("description", "tags")
_DETAILED_EXTRAS = _BASIC_EXTRAS + ("url_m", "url_l", "url_o", "machine_tags", "date_taken", "owner_name")
_FULL_EXTRAS = _DETAILED_EXTRAS + ("url_h", "url_k", "geo", "path_alias", "views")

EXTRAS_BY_LEVEL: Dict[str, FrozenSet[str]] = {
    BASIC: frozenset(_BASIC_EXTRAS),
    DETAILED: frozenset(_DETAILED_EXTRAS),
    FULL: frozenset(_FULL_EXTRAS),
}

SEARCH_EXTRAS: FrozenSet[str] = frozenset(
    ("description", "machine_tags", "safety_level", "owner_name", "date_taken")
)

# size name -> Flickr static URL suffix
DIRECT_URL_SIZES = (
    ("thumbnail", "t"),  # 100px
    ("small", "m"),  # 240px
    ("medium", "z"),  # 640px
    ("large", "b"),  # 1024px
    ("original", "o"),
)
DIRECT_URL_TEMPLATE = "https://farm{farm}.staticflickr.com/{server}/{id}_{secret}_{suffix}.jpg"


def extras_for(level: str) -> FrozenSet[str]:
    return EXTRAS_BY_LEVEL[normalize_detail_level(level)]


def _present(value: Any) -> bool:
    return value is not None and str(value) != ""


def build_direct_urls(record: Mapping[str, Any]) -> Dict[str, str]:
    parts = {k: record.get(k) for k in ("farm", "server", "id", "secret")}
    if not all(_present(v) for v in parts.values()):
        return {}
    return {name: DIRECT_URL_TEMPLATE.format(suffix=suffix, **parts) for name, suffix in DIRECT_URL_SIZES}


class EnrichmentPolicy:
    """
    Decides how much per-photo detail to add on top of a list record.

      basic    -> list record as-is
      detailed -> list record + one photo detail call (detail fields win)
      full     -> detailed + derived static URLs (``direct_urls``)
    """

    def __init__(
        self,
        detail_fetcher: Callable[..., Mapping[str, Any]],
        cache: Optional[CacheFacade] = None,
        ttl: int = 0,
    ) -> None:
        self.detail_fetcher = detail_fetcher
        self.cache = cache or CacheFacade()
        self.ttl = ttl

    def extras_for(self, level: str) -> FrozenSet[str]:
        return extras_for(level)

    def _detail(self, photo_id: str, owner_id: str, secret: Optional[str]) -> Mapping[str, Any]:
        key = build_key("photo_info", photo_id=photo_id, owner_id=owner_id)
        return self.cache.get_or_compute(
            key,
            self.ttl,
            lambda: dict(self.detail_fetcher(photo_id, owner_id, secret) or {}),
        )

    def enrich(self, level: str, record: Mapping[str, Any], owner_id: str) -> Mapping[str, Any]:
        level = normalize_detail_level(level)
        if level == BASIC:
            return freeze(record)

        photo_id = str(record.get("id") or "")
        if not photo_id:
            raise EnrichmentError("?", "list record has no id")

        try:
            detail = self._detail(photo_id, owner_id, record.get("secret") or None)
        except Exception as e:
            raise EnrichmentError(photo_id, f"detail fetch failed: {e}") from e

        merged = dict(record)
        merged.update(detail)
        if level == FULL:
            merged["direct_urls"] = freeze(build_direct_urls(merged))
        logger.debug("enriched | photo=%s | level=%s | fields=%s", photo_id, level, len(merged))
        return freeze(merged)
