from __future__ import annotations

from typing import Optional


class HarvestError(RuntimeError):
    pass


class InputError(HarvestError):
    """Bad collection reference or option; raised before any fetch."""


class SourceFetchError(HarvestError):
    def __init__(self, message: str, page: Optional[int] = None) -> None:
        super().__init__(message)
        self.page = page


class EnrichmentError(HarvestError):
    def __init__(self, photo_id: str, message: str) -> None:
        super().__init__(f"photo {photo_id}: {message}")
        self.photo_id = photo_id


class SubscriberError(HarvestError):
    """A subscriber raised while handling a photo event."""

    def __init__(self, photo_id: str, message: str) -> None:
        super().__init__(f"photo {photo_id}: {message}")
        self.photo_id = photo_id


class CacheError(HarvestError):
    pass


class RunAborted(HarvestError):
    """Raised by RunResult.raise_for_status(); carries the partial stats."""

    def __init__(self, error: BaseException, stats) -> None:
        super().__init__(str(error))
        self.error = error
        self.stats = stats
