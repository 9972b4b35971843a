from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from flickr_harvester.core.cache import CacheFacade
from flickr_harvester.core.errors import SourceFetchError
from flickr_harvester.core.keys import build_key
from flickr_harvester.core.models import CollectionInfo, CollectionRef, Page, PageRequest, freeze

logger = logging.getLogger(__name__)


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _sorted_extras(extras: Iterable[str]) -> tuple:
    return tuple(sorted({str(e).strip() for e in extras if str(e).strip()}))


# -----------------------------
# Page request providers
# -----------------------------
class AlbumPageProvider:
    """Pages flickr.photosets.getPhotos for one album."""

    cache_kind = "flickr_photos"

    def __init__(self, client, ref: CollectionRef, extras: Iterable[str]) -> None:
        self.client = client
        self.ref = ref
        self.extras = _sorted_extras(extras)

    @property
    def collection_id(self) -> Optional[str]:
        return self.ref.collection_id

    @property
    def owner_id(self) -> str:
        return self.ref.owner_id

    def context_tags(self) -> Dict[str, Any]:
        return {}

    def owner_for(self, record: Mapping[str, Any]) -> str:
        return self.ref.owner_id

    def build_request(self, page: int, page_size: int) -> PageRequest:
        return PageRequest(
            collection_id=self.ref.collection_id,
            owner_id=self.ref.owner_id,
            page=page,
            page_size=page_size,
            extras=self.extras,
        )

    def load(self, request: PageRequest) -> dict:
        return self.client.get_page(
            request.collection_id,
            request.owner_id,
            {"page": request.page, "per_page": request.page_size, "extras": request.extras_param()},
        )


class SearchPageProvider:
    """Pages flickr.photos.search, optionally scoped to a pixie code machine tag."""

    cache_kind = "flickr_search"

    def __init__(
        self,
        client,
        extras: Iterable[str],
        *,
        pixie_code: Optional[str] = None,
        tags: Optional[str] = None,
        text: Optional[str] = None,
        safety: int = 0,
    ) -> None:
        self.client = client
        self.extras = _sorted_extras(extras)
        self.pixie_code = pixie_code or None
        self.safety = int(safety)
        params: Dict[str, Any] = {}
        if self.safety:
            params["safe_search"] = self.safety
        tag_list = [t.strip() for t in (tags or "").split(",") if t.strip()]
        if self.pixie_code:
            tag_list.append(f"museado:pixie={self.pixie_code}")
        if tag_list:
            params["tags"] = sorted(set(tag_list))
        if text:
            params["text"] = text
        self.params = params

    @property
    def collection_id(self) -> Optional[str]:
        return None

    @property
    def owner_id(self) -> str:
        return ""

    def context_tags(self) -> Dict[str, Any]:
        return {"pixie_code": self.pixie_code, "safety_level": self.safety, "search_context": True}

    def owner_for(self, record: Mapping[str, Any]) -> str:
        return str(record.get("owner") or "")

    def build_request(self, page: int, page_size: int) -> PageRequest:
        return PageRequest(
            collection_id=None,
            owner_id=None,
            page=page,
            page_size=page_size,
            extras=self.extras,
            params=freeze(self.params),
        )

    def load(self, request: PageRequest) -> dict:
        query: Dict[str, Any] = {
            "page": request.page,
            "per_page": request.page_size,
            "extras": request.extras_param(),
        }
        for k, v in request.params.items():
            query[k] = ",".join(v) if isinstance(v, (list, tuple)) else v
        return self.client.search(query)


# -----------------------------
# Page fetcher
# -----------------------------
class PageFetcher:
    def __init__(self, provider, cache: Optional[CacheFacade] = None, ttl: int = 0) -> None:
        self.provider = provider
        self.cache = cache or CacheFacade()
        self.ttl = ttl

    def cache_key(self, request: PageRequest) -> str:
        params: Dict[str, Any] = {
            "page": request.page,
            "per_page": request.page_size,
            "extras": list(request.extras),
        }
        params.update(request.params)
        return build_key(
            self.provider.cache_kind,
            collection_id=request.collection_id,
            owner_id=request.owner_id,
            params=params,
        )

    def fetch(self, page: int, page_size: int) -> Page:
        request = self.provider.build_request(page, page_size)
        return self.fetch_request(request)

    def fetch_request(self, request: PageRequest) -> Page:
        key = self.cache_key(request)
        try:
            data = self.cache.get_or_compute(key, self.ttl, lambda: self.provider.load(request))
        except Exception as e:
            raise SourceFetchError(f"page {request.page} fetch failed: {e}", page=request.page) from e
        return parse_page(data, request.page)


def parse_page(data: Optional[Mapping[str, Any]], page: int) -> Page:
    data = data or {}
    records = tuple(freeze(r) for r in (data.get("photo") or []) if isinstance(r, Mapping))
    total_pages = _to_int(data.get("pages"), 1)
    total_records = _to_int(data.get("total"), 0)
    if "pages" not in data or "total" not in data:
        logger.debug("page %s missing pagination metadata; defaulting pages=%s total=%s", page, total_pages, total_records)
    return Page(
        records=records,
        page=page,
        total_pages=total_pages,
        total_records=total_records,
        collection_metadata=freeze(data.get("photoset") or {}),
    )


def fetch_collection_info(client, ref: CollectionRef, cache: Optional[CacheFacade] = None, ttl: int = 0) -> CollectionInfo:
    cache = cache or CacheFacade()
    key = build_key("getInfo", collection_id=ref.collection_id, owner_id=ref.owner_id)
    try:
        info = cache.get_or_compute(
            key,
            ttl,
            lambda: dict(client.get_collection_info(ref.collection_id, ref.owner_id) or {}),
        )
    except Exception as e:
        raise SourceFetchError(f"album info fetch failed for {ref.collection_id}: {e}") from e
    return CollectionInfo(
        title=str(info.get("title") or ""),
        description=str(info.get("description") or ""),
        total_count=_to_int(info.get("photos", info.get("total_count")), 0),
        owner=str(info.get("owner") or ref.owner_id),
    )
