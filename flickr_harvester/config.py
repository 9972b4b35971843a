from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from flickr_harvester.core.models import DETAIL_LEVELS

DEFAULT_CACHE_DIR = ".cache/flickr"


def _strip_inline_comment(val: str) -> str:
    quote = ""
    for i, ch in enumerate(val):
        if ch in ("'", '"'):
            if not quote:
                quote = ch
            elif quote == ch:
                quote = ""
            continue
        if ch == "#" and not quote:
            return val[:i].rstrip()
    return val.rstrip()


def _parse_env_file(path: Path) -> int:
    loaded = 0
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        k, v = line.split("=", 1)
        k = k.strip()
        v = _strip_inline_comment(v.strip())
        if len(v) >= 2 and v[0] == v[-1] and v[0] in ("'", '"'):
            v = v[1:-1]
        if k and k not in os.environ:
            os.environ[k] = v
            loaded += 1
    return loaded


def load_dotenv(path: str = ".env") -> Optional[str]:
    """
    Loads variables from a .env file without overriding the environment.

    Search order:
    1) FLICKR_ENV_PATH (if set)
    2) explicit `path` (relative to CWD or absolute)
    3) project root (parent of the flickr_harvester package directory)

    Returns the .env path used, or None if none was found.
    """
    candidates: List[Path] = []
    override = os.getenv("FLICKR_ENV_PATH")
    if override:
        candidates.append(Path(override).expanduser())
    p = Path(path).expanduser()
    candidates.append(p if p.is_absolute() else (Path.cwd() / p))
    candidates.append(Path(__file__).resolve().parent.parent / ".env")

    seen = set()
    for c in candidates:
        c = c.resolve()
        if c in seen:
            continue
        seen.add(c)
        if c.is_file():
            try:
                _parse_env_file(c)
            except (OSError, UnicodeDecodeError):
                continue
            return str(c)
    return None


@dataclass
class AppConfig:
    flickr_api_key: str
    cache_dir: str

    per_page: int
    info_level: str
    dry_run: bool
    limit: int
    cache_ttl: int
    clear_cache: bool
    start_page: int
    safety: int

    timeout_s: int
    retries: int
    rate_per_sec: float
    burst: int

    events_jsonl: Optional[str]

    def validate(self) -> None:
        if not self.flickr_api_key.strip():
            raise SystemExit("Missing FLICKR_API_KEY (set in .env or environment).")
        if self.info_level not in DETAIL_LEVELS:
            raise SystemExit(f"Info level must be one of: {', '.join(DETAIL_LEVELS)}")
        if self.per_page < 1 or self.per_page > 500:
            raise SystemExit("--per-page must be between 1 and 500 (Flickr maximum).")
        if self.start_page < 1:
            raise SystemExit("--page must be >= 1.")
        if self.safety not in (0, 1, 2, 3):
            raise SystemExit("--safety must be 0 (any), 1 (safe), 2 (moderate) or 3 (restricted).")
        if self.limit < 0:
            raise SystemExit("--limit must be >= 0.")


def config_from_args(args) -> AppConfig:
    return AppConfig(
        flickr_api_key=(os.getenv("FLICKR_API_KEY") or "").strip(),
        cache_dir=(os.getenv("FLICKR_CACHE_DIR") or DEFAULT_CACHE_DIR).strip(),
        per_page=args.per_page,
        info_level=(args.info_level or "").strip().lower(),
        dry_run=args.dry_run,
        limit=args.limit or 0,
        cache_ttl=args.cache_ttl,
        clear_cache=args.clear_cache,
        start_page=args.page,
        safety=getattr(args, "safety", 0) or 0,
        timeout_s=args.timeout,
        retries=args.retries,
        rate_per_sec=args.rate_per_sec,
        burst=args.burst,
        events_jsonl=args.events_jsonl,
    )
