from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from flickr_harvester.core.errors import InputError
from flickr_harvester.core.models import JobSpec

logger = logging.getLogger(__name__)


def _read_jobs_file(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except FileNotFoundError as e:
        raise InputError(f"Jobs file not found: {path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise InputError(f"Failed to read jobs file: {path} ({e})") from e
    if not isinstance(data, dict):
        raise InputError(f"Jobs file must be a mapping with albums/searches: {path}")
    logger.info("Loaded jobs file: %s", path)
    return data


def _album_job(item: Any) -> JobSpec:
    if isinstance(item, dict):
        target = str(item.get("album") or item.get("url") or item.get("id") or "").strip()
        owner = str(item.get("owner") or "").strip()
    else:
        target = str(item or "").strip()
        owner = ""
    if not target:
        raise InputError(f"Album entry has no album/url/id: {item!r}")
    return JobSpec(kind="album", target=target, owner_id=owner)


def _search_job(item: Any) -> JobSpec:
    if not isinstance(item, dict):
        item = {"pixie": item}
    try:
        safety = int(item.get("safety") or 0)
    except (TypeError, ValueError) as e:
        raise InputError(f"Search entry has a non-numeric safety level: {item!r}") from e
    job = JobSpec(
        kind="search",
        pixie_code=str(item.get("pixie") or "").strip(),
        tags=str(item.get("tags") or "").strip(),
        text=str(item.get("text") or "").strip(),
        safety=safety,
    )
    if not (job.pixie_code or job.tags or job.text):
        raise InputError(f"Search entry needs pixie, tags or text: {item!r}")
    return job


def _dedupe_jobs(jobs: List[JobSpec]) -> List[JobSpec]:
    seen = set()
    ded = []
    for j in jobs:
        if j in seen:
            continue
        seen.add(j)
        ded.append(j)
    return ded


def load_jobs(path: str) -> List[JobSpec]:
    """
    Jobs file layout:

      albums:
        - https://www.flickr.com/photos/<owner>/albums/<id>/
        - {album: "<id>", owner: "<owner>"}
      searches:
        - {pixie: "abc", safety: 1}
        - {tags: "cats,dogs", text: "sunset"}
    """
    data = _read_jobs_file(Path(path))
    out: List[JobSpec] = []
    for item in data.get("albums") or []:
        out.append(_album_job(item))
    for item in data.get("searches") or []:
        out.append(_search_job(item))
    ded = _dedupe_jobs(out)
    logger.info("Built jobs: %s", len(ded))
    return ded
