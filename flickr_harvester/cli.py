# flickr_harvester/cli.py
from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from rich.logging import RichHandler

from .config import AppConfig, config_from_args, load_dotenv
from .core.cache import CacheFacade, JsonFileCacheBackend
from .core.errors import HarvestError, InputError
from .core.events import EventSink
from .core.fetcher import fetch_collection_info
from .core.models import EXHAUSTED, FAILED, JobSpec, PhotoEvent, RunResult, RunStats
from .core.pipeline import build_album_driver, build_search_driver
from .core.refs import parse_collection_ref
from .integrations.http_client import FlickrClient, TokenBucket, make_flickr_session
from .io.event_log import JsonlEventLog
from .jobs import load_jobs

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INPUT = 2

logger = logging.getLogger(__name__)


def _add_common(ap: argparse.ArgumentParser, *, per_page: int) -> None:
    ap.add_argument("--per-page", type=int, default=per_page, help="Photos per page for pagination")
    ap.add_argument("--info-level", default="detailed", help="Photo detail to fetch: basic, detailed, full")
    ap.add_argument("--dry-run", action="store_true", help="Show what would be processed without dispatching events")
    ap.add_argument("--limit", type=int, default=0, help="Stop after processing this many photos (0 = no limit)")
    ap.add_argument("--cache-ttl", type=int, default=3600, help="Cache TTL in seconds (0 disables the cache)")
    ap.add_argument("--clear-cache", action="store_true", help="Clear the response cache before processing")
    ap.add_argument("--page", type=int, default=1, help="Starting page number")
    ap.add_argument("--events-jsonl", default=None, help="Append every dispatched photo event to this JSONL file")
    ap.add_argument("--timeout", type=int, default=25, help="HTTP timeout seconds")
    ap.add_argument("--retries", type=int, default=3, help="Retry count for 429/5xx/network")
    ap.add_argument("--rate-per-sec", type=float, default=1.0, help="Request rate (token bucket refill)")
    ap.add_argument("--burst", type=int, default=3, help="Token bucket burst capacity")
    ap.add_argument("--log-level", default="info", help="Log level: debug, info, warning, error")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="flickr_harvester",
        description="Page Flickr albums or searches, enrich each photo and publish it to subscribers",
    )
    sub = ap.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Import photos from a Flickr album")
    imp.add_argument("album", help="Flickr album ID or URL (https://www.flickr.com/photos/<owner>/albums/<id>/)")
    imp.add_argument("--owner", default=None, help="Owner (user) id when ALBUM is a bare id")
    _add_common(imp, per_page=100)

    srch = sub.add_parser("search", help="Process photos from a Flickr search")
    srch.add_argument("pixie", nargs="?", default=None, help="Pixie code (searched as machine tag museado:pixie=<code>)")
    srch.add_argument("--tags", default=None, help="Comma list of tags to search")
    srch.add_argument("--text", default=None, help="Free-text search")
    srch.add_argument("--safety", type=int, default=0, help="Safe search level (0 = unset, 1 safe, 2 moderate, 3 restricted)")
    _add_common(srch, per_page=500)

    jobs = sub.add_parser("jobs", help="Run every album/search listed in a YAML jobs file")
    jobs.add_argument("jobs_file", help="YAML file with albums: and searches: lists")
    _add_common(jobs, per_page=100)
    jobs.add_argument("--safety", type=int, default=0, help="Default safe search level for searches")

    return ap


def _setup_logging(level_name: str) -> None:
    level = LOG_LEVELS.get((level_name or "").lower(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _make_cache(cfg: AppConfig) -> CacheFacade:
    # Built even at TTL 0 so --clear-cache still works; the facade bypasses lookups.
    try:
        return CacheFacade(JsonFileCacheBackend(cfg.cache_dir))
    except OSError as e:
        logger.warning("cache dir unavailable (%s): %r; running without cache", cfg.cache_dir, e)
        return CacheFacade()


def _progress(event: Optional[PhotoEvent], stats: RunStats) -> None:
    if event is None:
        return
    ctx = event.context
    print(
        f"\rPhoto {ctx.photo_number}/{ctx.total_photos} | Page {ctx.page} | "
        f"Dispatched {stats.events_dispatched} | Skipped {stats.skipped} | "
        f"Cache {stats.cache_hits}h/{stats.cache_misses}m",
        end="",
        flush=True,
    )


def _run_album(client: FlickrClient, cfg: AppConfig, cache: CacheFacade, sink: EventSink, target: str, owner: Optional[str]) -> RunResult:
    ref = parse_collection_ref(target, owner_id=owner)
    logger.info("Importing Flickr album %s | owner=%s | level=%s", ref.collection_id, ref.owner_id, cfg.info_level)

    info = fetch_collection_info(client, ref, cache, cfg.cache_ttl)
    logger.info("Album: %s | photos=%s | owner=%s", info.title or "(untitled)", info.total_count, info.owner)
    if info.description:
        logger.info("Description: %s", info.description[:200])

    driver = build_album_driver(
        client,
        ref,
        sink,
        cache=cache,
        cache_ttl=cfg.cache_ttl,
        detail_level=cfg.info_level,
        page_size=cfg.per_page,
        start_page=cfg.start_page,
        limit=cfg.limit,
        dry_run=cfg.dry_run,
        progress=_progress,
    )
    return driver.run()


def _run_search(client: FlickrClient, cfg: AppConfig, cache: CacheFacade, sink: EventSink, job: JobSpec) -> RunResult:
    logger.info(
        "Flickr search | pixie=%s | tags=%s | text=%s | safety=%s",
        job.pixie_code or "-",
        job.tags or "-",
        job.text or "-",
        job.safety,
    )
    driver = build_search_driver(
        client,
        sink,
        pixie_code=job.pixie_code or None,
        tags=job.tags or None,
        text=job.text or None,
        safety=job.safety,
        cache=cache,
        cache_ttl=cfg.cache_ttl,
        detail_level=cfg.info_level,
        page_size=cfg.per_page,
        start_page=cfg.start_page,
        limit=cfg.limit,
        dry_run=cfg.dry_run,
        progress=_progress,
    )
    return driver.run()


def _report(result: RunResult) -> int:
    print()
    s = result.stats
    if result.status == FAILED:
        logger.error(
            "Run failed: %s | processed=%s dispatched=%s pages=%s",
            result.error,
            s.processed,
            s.events_dispatched,
            s.pages_visited,
        )
        return EXIT_FAILED
    note = "" if result.status == EXHAUSTED else f" ({result.status})"
    logger.info(
        "Successfully processed %s photos across %s pages%s. Events dispatched: %s | skipped: %s",
        s.processed,
        s.pages_visited,
        note,
        s.events_dispatched,
        s.skipped,
    )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    _setup_logging(args.log_level)

    used = load_dotenv(".env")
    if used:
        logger.info("loaded .env: %s", used)

    cfg = config_from_args(args)
    cfg.validate()

    cache = _make_cache(cfg)
    logger.info("Cache TTL: %s", f"{cfg.cache_ttl}s ({cfg.cache_dir})" if cache.enabled and cfg.cache_ttl > 0 else "disabled")
    if cfg.clear_cache and cache.enabled:
        logger.info("Clearing Flickr cache...")
        cache.clear()
    if cfg.dry_run:
        logger.info("dry-run enabled: events are not dispatched")

    client = FlickrClient(
        cfg.flickr_api_key,
        session=make_flickr_session(),
        limiter=TokenBucket(cfg.rate_per_sec, cfg.burst),
        timeout_s=cfg.timeout_s,
        retries=cfg.retries,
    )

    event_log = JsonlEventLog(cfg.events_jsonl)
    sink = EventSink()
    if cfg.events_jsonl:
        sink.subscribe(event_log, name="events_jsonl")
        logger.info("Event log: %s", cfg.events_jsonl)

    code = EXIT_OK
    try:
        if args.command == "import":
            code = _report(_run_album(client, cfg, cache, sink, args.album, args.owner))
        elif args.command == "search":
            if not (args.pixie or args.tags or args.text):
                raise InputError("search needs a pixie code, --tags or --text")
            job = JobSpec(
                kind="search",
                pixie_code=args.pixie or "",
                tags=args.tags or "",
                text=args.text or "",
                safety=cfg.safety,
            )
            code = _report(_run_search(client, cfg, cache, sink, job))
        else:
            for job in load_jobs(args.jobs_file):
                if job.kind == "album":
                    result = _run_album(client, cfg, cache, sink, job.target, job.owner_id or None)
                else:
                    if not job.safety and cfg.safety:
                        job = JobSpec(job.kind, job.target, job.owner_id, job.pixie_code, job.tags, job.text, cfg.safety)
                    result = _run_search(client, cfg, cache, sink, job)
                code = max(code, _report(result))
    except InputError as e:
        logger.error("%s", e)
        return EXIT_INPUT
    except HarvestError as e:
        logger.error("Error importing: %s", e)
        return EXIT_FAILED
    finally:
        event_log.close()

    stats = cache.stats()
    if cache.enabled and cfg.cache_ttl > 0:
        logger.info("Cache: %s hits, %s misses, %s errors", stats["hits"], stats["misses"], stats["errors"])
    return code


if __name__ == "__main__":
    raise SystemExit(main())
