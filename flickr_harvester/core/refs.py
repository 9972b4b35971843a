from __future__ import annotations

import re
from typing import Optional

from flickr_harvester.core.errors import InputError
from flickr_harvester.core.models import CollectionRef

_ALBUM_ID_RE = re.compile(r"^\d+$")
_ALBUM_URL_RE = re.compile(r"albums/(\d+)")
_OWNER_RE = re.compile(r"/photos/([^/]+)/")


def extract_album_id(value: str) -> Optional[str]:
    value = (value or "").strip()
    if _ALBUM_ID_RE.match(value):
        return value
    m = _ALBUM_URL_RE.search(value)
    return m.group(1) if m else None


def extract_owner_id(value: str) -> Optional[str]:
    m = _OWNER_RE.search((value or "").strip())
    return m.group(1) if m else None


def parse_collection_ref(value: str, owner_id: Optional[str] = None) -> CollectionRef:
    """
    Accepts a bare album id (owner must then be given) or an album URL such as
    https://www.flickr.com/photos/<owner>/albums/<id>/
    """
    album_id = extract_album_id(value)
    if not album_id:
        raise InputError(f"Invalid album ID or URL provided: {value!r}")
    owner = (owner_id or "").strip() or extract_owner_id(value)
    if not owner:
        raise InputError(f"Could not extract user ID from URL: {value!r}")
    return CollectionRef(collection_id=album_id, owner_id=owner)
