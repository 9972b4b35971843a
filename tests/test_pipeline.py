import pytest

from flickr_harvester.core.cache import CacheFacade, MemoryCacheBackend
from flickr_harvester.core.errors import EnrichmentError, RunAborted, SourceFetchError, SubscriberError
from flickr_harvester.core.events import STOP, EventSink
from flickr_harvester.core.models import EXHAUSTED, FAILED, LIMIT_REACHED, STOPPED, CollectionRef
from flickr_harvester.core.pipeline import build_album_driver, build_search_driver
from flickr_harvester.core.stats_tracker import StatsTracker

REF = CollectionRef(collection_id="72177720328661598", owner_id="202304062@N02")


def _photos(page: int, n: int):
    return [{"id": f"p{page}-{i}", "title": f"Photo {page}.{i}", "owner": "o"} for i in range(1, n + 1)]


class FakeFlickr:
    """Pages keyed by page number; ``pages`` is what the source reports."""

    def __init__(self, pages, *, reported_pages=None, fail_details=(), fail_page=None) -> None:
        self.pages = pages
        self.reported_pages = reported_pages if reported_pages is not None else len(pages)
        self.fail_details = set(fail_details)
        self.fail_page = fail_page
        self.page_calls = []
        self.detail_calls = []

    def _listing(self, page):
        if page == self.fail_page:
            raise ConnectionError("503 from upstream")
        photos = self.pages.get(page, [])
        total = sum(len(v) for v in self.pages.values())
        return {"photo": photos, "page": page, "pages": self.reported_pages, "total": total}

    def get_page(self, collection_id, owner_id, params):
        self.page_calls.append(params["page"])
        return self._listing(params["page"])

    def search(self, params):
        self.page_calls.append(params["page"])
        return self._listing(params["page"])

    def get_photo_detail(self, photo_id, owner_id, secret=None):
        self.detail_calls.append(photo_id)
        if photo_id in self.fail_details:
            raise ConnectionError(f"detail {photo_id} failed")
        return {"views": "7"}


class Recorder:
    def __init__(self, stop_at=None) -> None:
        self.events = []
        self.stop_at = stop_at

    def __call__(self, event):
        self.events.append(event)
        if self.stop_at is not None and event.context.photo_number == self.stop_at:
            return STOP
        return None


def test_photo_numbers_run_across_pages_in_order() -> None:
    client = FakeFlickr({1: _photos(1, 3), 2: _photos(2, 2)})
    rec = Recorder()
    result = build_album_driver(client, REF, EventSink([rec])).run()

    assert result.status == EXHAUSTED
    assert [e.context.photo_number for e in rec.events] == [1, 2, 3, 4, 5]
    assert [e.photo_id for e in rec.events] == ["p1-1", "p1-2", "p1-3", "p2-1", "p2-2"]
    assert [e.context.page for e in rec.events] == [1, 1, 1, 2, 2]
    assert client.page_calls == [1, 2]
    assert result.stats.processed == 5
    assert result.stats.events_dispatched == 5
    assert result.stats.pages_visited == 2


def test_empty_page_ends_run_even_if_more_pages_reported() -> None:
    client = FakeFlickr({1: _photos(1, 3), 2: []}, reported_pages=10)
    result = build_album_driver(client, REF, EventSink([Recorder()])).run()

    assert result.status == EXHAUSTED
    assert result.stats.processed == 3
    assert result.stats.pages_visited == 2
    assert client.page_calls == [1, 2]


def test_missing_pagination_metadata_stops_after_one_page() -> None:
    class NoMeta(FakeFlickr):
        def _listing(self, page):
            return {"photo": self.pages.get(page, [])}

    client = NoMeta({1: _photos(1, 2), 2: _photos(2, 2)})
    result = build_album_driver(client, REF, EventSink()).run()
    assert result.status == EXHAUSTED
    assert client.page_calls == [1]
    assert result.stats.processed == 2


def test_subscriber_stop_halts_after_all_subscribers_ran() -> None:
    client = FakeFlickr({1: _photos(1, 4), 2: _photos(2, 4)})
    first, second, third = Recorder(), Recorder(stop_at=2), Recorder()
    result = build_album_driver(client, REF, EventSink([first, second, third])).run()

    assert result.status == STOPPED
    assert result.stats.events_dispatched == 2
    assert result.stats.processed == 2
    assert len(first.events) == len(second.events) == len(third.events) == 2
    assert client.detail_calls == ["p1-1", "p1-2"]
    assert client.page_calls == [1]


def test_limit_stops_at_exactly_n_processed() -> None:
    client = FakeFlickr({1: _photos(1, 5), 2: _photos(2, 5)})
    rec = Recorder()
    result = build_album_driver(client, REF, EventSink([rec]), limit=3).run()

    assert result.status == LIMIT_REACHED
    assert result.stats.processed == 3
    assert result.stats.events_dispatched == 3
    assert [e.photo_id for e in rec.events] == ["p1-1", "p1-2", "p1-3"]


def test_dry_run_counts_processed_but_dispatches_nothing() -> None:
    client = FakeFlickr({1: _photos(1, 3), 2: _photos(2, 1)})
    rec = Recorder()
    result = build_album_driver(client, REF, EventSink([rec]), dry_run=True).run()

    assert result.status == EXHAUSTED
    assert result.stats.processed == 4
    assert result.stats.events_dispatched == 0
    assert rec.events == []


def test_album_enrichment_failure_aborts_with_partial_stats() -> None:
    client = FakeFlickr({1: _photos(1, 3), 2: _photos(2, 3)}, fail_details={"p1-2"})
    rec = Recorder()
    result = build_album_driver(client, REF, EventSink([rec])).run()

    assert result.status == FAILED
    assert not result.ok
    assert isinstance(result.error, EnrichmentError)
    assert result.error.photo_id == "p1-2"
    assert result.stats.processed == 2
    assert result.stats.events_dispatched == 1
    assert client.page_calls == [1]

    try:
        result.raise_for_status()
    except RunAborted as e:
        assert e.stats.processed == 2
    else:
        raise AssertionError("expected RunAborted")


def test_search_enrichment_failure_skips_photo() -> None:
    client = FakeFlickr({1: _photos(1, 3), 2: _photos(2, 2)}, fail_details={"p1-2"})
    rec = Recorder()
    result = build_search_driver(client, EventSink([rec]), pixie_code="abc").run()

    assert result.status == EXHAUSTED
    assert result.stats.processed == 5
    assert result.stats.skipped == 1
    assert result.stats.events_dispatched == 4
    assert [e.context.photo_number for e in rec.events] == [1, 3, 4, 5]
    assert rec.events[0].collection_id is None
    assert rec.events[0].context.tags["pixie_code"] == "abc"


def test_page_fetch_failure_returns_partial_stats() -> None:
    client = FakeFlickr({1: _photos(1, 3), 2: _photos(2, 3)}, fail_page=2)
    result = build_album_driver(client, REF, EventSink([Recorder()])).run()

    assert result.status == FAILED
    assert isinstance(result.error, SourceFetchError)
    assert result.error.page == 2
    assert result.stats.processed == 3
    assert result.stats.pages_visited == 1


def test_start_page_and_context() -> None:
    client = FakeFlickr({1: _photos(1, 2), 2: _photos(2, 2), 3: _photos(3, 1)})
    rec = Recorder()
    result = build_album_driver(client, REF, EventSink([rec]), start_page=2, detail_level="full").run()

    assert client.page_calls == [2, 3]
    assert result.stats.processed == 3
    ctx = rec.events[0].context
    assert (ctx.page, ctx.photo_number, ctx.total_photos, ctx.detail_level) == (2, 1, 5, "full")
    assert rec.events[0].owner_id == REF.owner_id
    assert rec.events[0].photo["views"] == "7"
    assert "direct_urls" in rec.events[0].photo


def test_basic_level_skips_detail_calls_and_cache_is_reused() -> None:
    client = FakeFlickr({1: _photos(1, 2)})
    cache = CacheFacade(MemoryCacheBackend())
    build_album_driver(client, REF, EventSink(), detail_level="basic", cache=cache, cache_ttl=60).run()
    result = build_album_driver(client, REF, EventSink(), detail_level="basic", cache=cache, cache_ttl=60).run()

    assert client.detail_calls == []
    assert client.page_calls == [1]
    assert result.stats.cache_hits >= 1


def test_progress_callback_sees_every_photo() -> None:
    seen = []
    client = FakeFlickr({1: _photos(1, 2)})
    build_album_driver(client, REF, EventSink(), progress=lambda ev, stats: seen.append(stats.processed)).run()
    assert seen == [1, 2]


def test_album_subscriber_error_fails_run_as_subscriber_error() -> None:
    client = FakeFlickr({1: _photos(1, 3)})

    def broken(event):
        if event.photo_id == "p1-2":
            raise ValueError("consumer crashed")

    result = build_album_driver(client, REF, EventSink([broken])).run()

    assert result.status == FAILED
    assert isinstance(result.error, SubscriberError)
    assert not isinstance(result.error, EnrichmentError)
    assert isinstance(result.error.__cause__, ValueError)
    assert result.error.photo_id == "p1-2"
    assert result.stats.processed == 2
    assert result.stats.events_dispatched == 1


def test_search_subscriber_error_skips_photo() -> None:
    client = FakeFlickr({1: _photos(1, 3)})
    seen = []

    def flaky(event):
        if event.photo_id == "p1-1":
            raise ValueError("consumer crashed")
        seen.append(event.photo_id)

    result = build_search_driver(client, EventSink([flaky])).run()

    assert result.status == EXHAUSTED
    assert result.stats.skipped == 1
    assert result.stats.events_dispatched == 2
    assert seen == ["p1-2", "p1-3"]


def test_nested_photo_fields_are_read_only_and_cache_stays_clean() -> None:
    class NestedDetail(FakeFlickr):
        def get_photo_detail(self, photo_id, owner_id, secret=None):
            self.detail_calls.append(photo_id)
            return {"owner": {"nsid": "real"}, "tags": {"tag": [{"raw": "a"}, {"raw": "b"}]}}

    client = NestedDetail({1: _photos(1, 1)})
    cache = CacheFacade(MemoryCacheBackend())

    def tamper(event):
        with pytest.raises(TypeError):
            event.photo["owner"]["nsid"] = "HACKED"
        assert isinstance(event.photo["tags"]["tag"], tuple)
        with pytest.raises(TypeError):
            event.photo["tags"]["tag"][0]["raw"] = "z"

    first = build_album_driver(client, REF, EventSink([tamper]), cache=cache, cache_ttl=60).run()
    assert first.status == EXHAUSTED

    rec = Recorder()
    build_album_driver(client, REF, EventSink([rec]), cache=cache, cache_ttl=60).run()

    assert client.detail_calls == ["p1-1"]
    assert rec.events[0].photo["owner"]["nsid"] == "real"
    assert [t["raw"] for t in rec.events[0].photo["tags"]["tag"]] == ["a", "b"]


def test_stats_tracker_snapshot_merges_cache_counts() -> None:
    tracker = StatsTracker()
    tracker.inc_pages()
    assert tracker.inc_processed() == 1
    tracker.inc_processed()
    tracker.inc_dispatched()
    tracker.inc_skipped()

    stats = tracker.snapshot({"hits": 4, "misses": 1, "errors": 2})
    assert stats.as_dict() == {
        "processed": 2,
        "events_dispatched": 1,
        "pages_visited": 1,
        "skipped": 1,
        "cache_hits": 4,
        "cache_misses": 1,
    }
    assert not hasattr(tracker, "snapshot_rates")
