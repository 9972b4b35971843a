from __future__ import annotations

import logging
from typing import Callable, Optional

from flickr_harvester.core.cache import CacheFacade
from flickr_harvester.core.enrichment import SEARCH_EXTRAS, EnrichmentPolicy, extras_for
from flickr_harvester.core.errors import EnrichmentError, InputError, SourceFetchError, SubscriberError
from flickr_harvester.core.events import EventSink
from flickr_harvester.core.fetcher import AlbumPageProvider, PageFetcher, SearchPageProvider
from flickr_harvester.core.models import (
    DETAILED,
    EXHAUSTED,
    FAILED,
    LIMIT_REACHED,
    STOPPED,
    CollectionRef,
    PhotoEvent,
    ProcessingContext,
    RunResult,
    RunStats,
    freeze,
    normalize_detail_level,
)
from flickr_harvester.core.stats_tracker import StatsTracker

logger = logging.getLogger(__name__)

# What happens when one photo fails to enrich (or a subscriber raises).
FAIL_FAST = "fail_fast"
SKIP = "skip"
FAILURE_POLICIES = (FAIL_FAST, SKIP)

ProgressFn = Callable[[Optional[PhotoEvent], RunStats], None]


class PipelineDriver:
    """
    Sequential page -> enrich -> dispatch loop.

    Pages are fetched one at a time in ascending order starting at
    ``start_page``; records are handled in source order. ``photo_number`` is
    run-scoped and never resets per page.

    The run ends when:
      - a page comes back empty (exhausted, even if the source claims more pages)
      - the page counter passes the reported total (exhausted)
      - a subscriber requests a stop (stopped)
      - ``limit`` photos have been processed (limit_reached)
      - a page fetch fails, or a photo fails to enrich or dispatch under FAIL_FAST (failed)
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        enricher: EnrichmentPolicy,
        sink: EventSink,
        *,
        detail_level: str = DETAILED,
        page_size: int = 100,
        start_page: int = 1,
        limit: int = 0,
        dry_run: bool = False,
        failure_policy: str = FAIL_FAST,
        progress: Optional[ProgressFn] = None,
    ) -> None:
        if failure_policy not in FAILURE_POLICIES:
            raise InputError(f"Unknown failure policy: {failure_policy!r}")
        if page_size < 1:
            raise InputError(f"Page size must be positive (got {page_size})")
        if start_page < 1:
            raise InputError(f"Start page must be >= 1 (got {start_page})")
        self.fetcher = fetcher
        self.enricher = enricher
        self.sink = sink
        self.detail_level = normalize_detail_level(detail_level)
        self.page_size = page_size
        self.start_page = start_page
        self.limit = max(0, int(limit or 0))
        self.dry_run = dry_run
        self.failure_policy = failure_policy
        self.progress = progress
        self.stats = StatsTracker()

    @property
    def provider(self):
        return self.fetcher.provider

    def _snapshot(self) -> RunStats:
        return self.stats.snapshot(self.fetcher.cache.stats())

    def _finish(self, status: str, error: Optional[BaseException] = None) -> RunResult:
        stats = self._snapshot()
        if status == FAILED:
            logger.error("run failed | %s | stats=%s", error, stats.as_dict())
        else:
            logger.info("run %s | stats=%s", status, stats.as_dict())
        return RunResult(status=status, stats=stats, error=error)

    def _tick(self, event: Optional[PhotoEvent]) -> None:
        if self.progress:
            self.progress(event, self._snapshot())

    def run(self) -> RunResult:
        tags = freeze(self.provider.context_tags())
        page = self.start_page

        logger.info(
            "run start | collection=%s | page=%s | per_page=%s | level=%s | dry_run=%s | limit=%s",
            self.provider.collection_id or "(search)",
            page,
            self.page_size,
            self.detail_level,
            self.dry_run,
            self.limit or "none",
        )

        while True:
            try:
                result = self.fetcher.fetch(page, self.page_size)
            except SourceFetchError as e:
                return self._finish(FAILED, e)
            self.stats.inc_pages()

            if not result.records:
                logger.info("no more photos to process | page=%s of %s", page, result.total_pages)
                return self._finish(EXHAUSTED)

            for record in result.records:
                number = self.stats.inc_processed()
                owner_id = self.provider.owner_for(record)
                logger.debug(
                    "processing photo %s/%s (page %s): %s",
                    number,
                    result.total_records,
                    page,
                    record.get("title") or "Untitled",
                )

                event = None
                try:
                    photo = self.enricher.enrich(self.detail_level, record, owner_id)
                    event = PhotoEvent(
                        collection_id=self.provider.collection_id,
                        owner_id=owner_id,
                        photo=photo,
                        collection_metadata=result.collection_metadata,
                        context=ProcessingContext(
                            page=page,
                            photo_number=number,
                            total_photos=result.total_records,
                            detail_level=self.detail_level,
                            tags=tags,
                        ),
                    )
                    if self.dry_run:
                        logger.debug("[dry run] would dispatch photo %s", event.photo_id)
                    else:
                        try:
                            outcome = self.sink.dispatch(event)
                        except Exception as e:
                            raise SubscriberError(event.photo_id, f"subscriber failed: {e!r}") from e
                        self.stats.inc_dispatched()
                        if outcome.stop_requested:
                            logger.info("processing stopped by subscriber %s", outcome.stopped_by)
                            self._tick(event)
                            return self._finish(STOPPED)
                except (EnrichmentError, SubscriberError) as e:
                    if self.failure_policy == FAIL_FAST:
                        return self._finish(FAILED, e)
                    self.stats.inc_skipped()
                    logger.error("photo processing failed | photo=%s | err=%s", e.photo_id, e)

                self._tick(event)

                if self.limit and number >= self.limit:
                    logger.info("reached limit of %s photos", self.limit)
                    return self._finish(LIMIT_REACHED)

            logger.debug("page %s/%s complete (%s photos)", page, result.total_pages, len(result.records))
            page += 1
            if page > result.total_pages:
                return self._finish(EXHAUSTED)


# -----------------------------
# Mode factories
# -----------------------------
def build_album_driver(
    client,
    ref: CollectionRef,
    sink: EventSink,
    *,
    cache: Optional[CacheFacade] = None,
    cache_ttl: int = 0,
    detail_level: str = DETAILED,
    page_size: int = 100,
    start_page: int = 1,
    limit: int = 0,
    dry_run: bool = False,
    progress: Optional[ProgressFn] = None,
) -> PipelineDriver:
    """Album import: enrichment failures abort the run."""
    cache = cache or CacheFacade()
    provider = AlbumPageProvider(client, ref, extras_for(detail_level))
    return PipelineDriver(
        PageFetcher(provider, cache, cache_ttl),
        EnrichmentPolicy(client.get_photo_detail, cache, cache_ttl),
        sink,
        detail_level=detail_level,
        page_size=page_size,
        start_page=start_page,
        limit=limit,
        dry_run=dry_run,
        failure_policy=FAIL_FAST,
        progress=progress,
    )


def build_search_driver(
    client,
    sink: EventSink,
    *,
    pixie_code: Optional[str] = None,
    tags: Optional[str] = None,
    text: Optional[str] = None,
    safety: int = 0,
    cache: Optional[CacheFacade] = None,
    cache_ttl: int = 0,
    detail_level: str = DETAILED,
    page_size: int = 500,
    start_page: int = 1,
    limit: int = 0,
    dry_run: bool = False,
    progress: Optional[ProgressFn] = None,
) -> PipelineDriver:
    """Search/upload: a photo that fails to enrich is logged and skipped."""
    cache = cache or CacheFacade()
    provider = SearchPageProvider(
        client,
        SEARCH_EXTRAS,
        pixie_code=pixie_code,
        tags=tags,
        text=text,
        safety=safety,
    )
    return PipelineDriver(
        PageFetcher(provider, cache, cache_ttl),
        EnrichmentPolicy(client.get_photo_detail, cache, cache_ttl),
        sink,
        detail_level=detail_level,
        page_size=page_size,
        start_page=start_page,
        limit=limit,
        dry_run=dry_run,
        failure_policy=SKIP,
        progress=progress,
    )
