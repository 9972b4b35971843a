from __future__ import annotations

import json
import logging
import random
import threading
import time
from typing import Any, Dict, Optional

import requests

FLICKR_REST_URL = "https://api.flickr.com/services/rest/"
logger = logging.getLogger(__name__)


def _safe_body_preview(resp: requests.Response, limit: int = 800) -> str:
    try:
        text = resp.text or ""
    except Exception:
        return "<unavailable>"
    text = text.replace("\r", " ").strip()
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


class FlickrError(RuntimeError):
    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class TokenBucket:
    def __init__(self, rate_per_sec: float, burst: int) -> None:
        self.rate = max(0.01, float(rate_per_sec))
        self.capacity = max(1, int(burst))
        self.tokens = float(self.capacity)
        self.lock = threading.Lock()
        self.last = time.monotonic()

    def take(self, n: float = 1.0) -> None:
        while True:
            with self.lock:
                now = time.monotonic()
                elapsed = now - self.last
                self.last = now
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                if self.tokens >= n:
                    self.tokens -= n
                    return
                need = (n - self.tokens) / self.rate
            time.sleep(min(0.25, max(0.01, need)))


def make_flickr_session() -> requests.Session:
    s = requests.Session()
    s.headers.update({
        "Accept": "application/json",
        "User-Agent": "flickr-harvester/1.0",
    })
    return s


def _sleep_jitter(base: float, jitter: float = 0.25) -> None:
    time.sleep(max(0.0, base + random.random() * jitter))


def flickr_get(
    session: requests.Session,
    method: str,
    *,
    api_key: str,
    params: Optional[dict] = None,
    timeout_s: int = 25,
    retries: int = 3,
) -> dict:
    """
    GET one Flickr REST method and return the decoded JSON payload.

      - exponential backoff + jitter for 429/5xx/network
      - explicit 401/403 messages
      - Flickr "stat": "fail" payloads raise FlickrError(code) without retrying
    """
    query: Dict[str, Any] = dict(params or {})
    query.update({"method": method, "api_key": api_key, "format": "json", "nojsoncallback": "1"})
    safe_params = {k: v for k, v in query.items() if k != "api_key"}

    backoff = 1.0
    for attempt in range(1, retries + 2):
        try:
            logger.debug(
                "request | method=%s | params=%s | attempt=%s/%s",
                method,
                safe_params,
                attempt,
                retries + 1,
            )
            r = session.get(FLICKR_REST_URL, params=query, timeout=timeout_s)

            if r.status_code in (429, 500, 502, 503, 504):
                if attempt <= retries:
                    ra = r.headers.get("Retry-After")
                    wait = float(ra) if ra and ra.isdigit() else backoff
                    logger.warning(
                        "retrying | status=%s | wait=%s | method=%s | params=%s",
                        r.status_code,
                        wait,
                        method,
                        safe_params,
                    )
                    _sleep_jitter(wait, 0.5)
                    backoff = min(30.0, backoff * 2)
                    continue

            if r.status_code in (401, 403):
                logger.error("auth error | status=%s | method=%s | body=%s", r.status_code, method, _safe_body_preview(r))
                raise FlickrError(f"{r.status_code} from Flickr (check FLICKR_API_KEY)", code=r.status_code)

            if r.status_code >= 400:
                logger.error(
                    "http error | status=%s | method=%s | params=%s | body=%s",
                    r.status_code,
                    method,
                    safe_params,
                    _safe_body_preview(r),
                )
            r.raise_for_status()

            data = r.json() if r.content else {}
            if not isinstance(data, dict):
                raise FlickrError(f"Unexpected payload from {method}: {type(data).__name__}")
            if data.get("stat") == "fail":
                code = data.get("code")
                msg = data.get("message") or "unknown error"
                logger.error("api error | method=%s | code=%s | msg=%s", method, code, msg)
                raise FlickrError(f"{method} failed: {msg}", code=code)
            return data

        except FlickrError:
            raise

        except (requests.RequestException, ValueError) as e:
            if attempt <= retries:
                logger.warning("request error | method=%s | params=%s | err=%r (retrying)", method, safe_params, e)
                _sleep_jitter(backoff, 0.5)
                backoff = min(30.0, backoff * 2)
                continue
            raise FlickrError(f"Request failed: {method} params={json.dumps(safe_params)} error={e}") from e

    raise FlickrError(f"Request failed after {retries + 1} attempts: {method}")


def content(value: Any) -> Any:
    """Flickr wraps many strings as {"_content": "..."}."""
    if isinstance(value, dict) and "_content" in value and len(value) == 1:
        return value["_content"]
    return value


def flatten_photo(photo: dict) -> dict:
    out = {}
    for k, v in (photo or {}).items():
        out[k] = content(v)
    return out


def _listing(block: dict) -> dict:
    block = dict(block or {})
    photos = [flatten_photo(p) for p in (block.pop("photo", None) or [])]
    listing = {"photo": photos}
    for key in ("page", "pages", "perpage", "per_page", "total"):
        if key in block:
            listing[key] = block.pop(key)
    listing["photoset"] = {k: content(v) for k, v in block.items()}
    return listing


class FlickrClient:
    def __init__(
        self,
        api_key: str,
        *,
        session: Optional[requests.Session] = None,
        limiter: Optional[TokenBucket] = None,
        timeout_s: int = 25,
        retries: int = 3,
    ) -> None:
        self.api_key = api_key
        self.session = session or make_flickr_session()
        self.limiter = limiter
        self.timeout_s = timeout_s
        self.retries = retries

    def call(self, method: str, params: Optional[dict] = None) -> dict:
        if self.limiter:
            self.limiter.take(1.0)
        return flickr_get(
            self.session,
            method,
            api_key=self.api_key,
            params=params,
            timeout_s=self.timeout_s,
            retries=self.retries,
        )

    def get_collection_info(self, collection_id: str, owner_id: str) -> dict:
        data = self.call("flickr.photosets.getInfo", {"photoset_id": collection_id, "user_id": owner_id})
        info = data.get("photoset") or {}
        return {
            "title": content(info.get("title")) or "",
            "description": content(info.get("description")) or "",
            "photos": info.get("count_photos", info.get("photos", 0)),
            "owner": info.get("username") or info.get("owner") or owner_id,
        }

    def get_page(self, collection_id: str, owner_id: str, params: dict) -> dict:
        query = {"photoset_id": collection_id, "user_id": owner_id}
        query.update(params)
        data = self.call("flickr.photosets.getPhotos", query)
        return _listing(data.get("photoset") or {})

    def search(self, params: dict) -> dict:
        data = self.call("flickr.photos.search", params)
        listing = _listing(data.get("photos") or {})
        listing["photoset"] = {}
        return listing

    def get_photo_detail(self, photo_id: str, owner_id: Optional[str] = None, secret: Optional[str] = None) -> dict:
        params = {"photo_id": photo_id}
        if secret:
            params["secret"] = secret
        data = self.call("flickr.photos.getInfo", params)
        return flatten_photo(data.get("photo") or {})
