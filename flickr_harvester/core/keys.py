from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Optional

# Params whose string values are comma-joined field lists.
_LIST_PARAMS = {"extras", "tags", "machine_tags"}


def _normalize_value(name: str, value: Any) -> Any:
    if isinstance(value, Mapping):
        return normalize_params(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return sorted(str(v).strip() for v in value if str(v).strip())
    if isinstance(value, str) and name in _LIST_PARAMS:
        return sorted(p.strip() for p in value.split(",") if p.strip())
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def normalize_params(params: Optional[Mapping[str, Any]]) -> dict:
    """
    Canonical form of a request parameter map.

    Keys are sorted, list-valued params (and comma-joined field lists like
    ``extras``) become sorted lists, scalars become strings so ``2`` and
    ``"2"`` describe the same request.
    """
    if not params:
        return {}
    return {str(k): _normalize_value(str(k), params[k]) for k in sorted(params, key=str)}


def build_key(
    kind: str,
    *,
    collection_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    photo_id: Optional[str] = None,
    params: Optional[Mapping[str, Any]] = None,
) -> str:
    doc = {
        "kind": kind,
        "collection_id": None if collection_id is None else str(collection_id),
        "owner_id": None if owner_id is None else str(owner_id),
        "photo_id": None if photo_id is None else str(photo_id),
        "params": normalize_params(params),
    }
    blob = json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return f"{kind}_{hashlib.sha256(blob.encode('utf-8')).hexdigest()}"
