"""Error taxonomy shared by scrapers, resolvers and the orchestrator."""

from __future__ import annotations

from typing import Sequence


class ScrapeError(RuntimeError):
    """Base class for failures while turning a listing URL into a record."""

    retryable = False
    needs_human = False

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url

    @property
    def kind(self) -> str:
        """Name of the nearest error class from this module, e.g. ``PageLoadError`` for HTTP failures."""

        for cls in type(self).__mro__:
            if cls.__module__ == __name__:
                return cls.__name__
        return type(self).__name__  # pragma: no cover


class PageLoadError(ScrapeError):
    """Raised when a page cannot be loaded (network failure, timeout, bad status)."""

    retryable = True

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ExtractionIncomplete(ScrapeError):
    """Raised when a page loaded but yielded no identifying vehicle fields."""


class GalleryEmpty(ScrapeError):
    """Signals that every image strategy came back empty.

    Scrapers record this as a warning on the record instead of raising it.
    """


class SlugUnresolved(ScrapeError):
    """Raised when no slug candidate produced a populated listing page."""

    needs_human = True

    def __init__(self, message: str, *, url: str | None = None, tried: Sequence[str] = ()) -> None:
        super().__init__(message, url=url)
        self.tried = list(tried)


class UnsupportedSiteError(ScrapeError):
    """Raised when no scraper is registered for a URL."""


class InvalidBatchError(ValueError):
    """Raised when a bulk request is malformed (``urls`` is not a list)."""


__all__ = [
    "ExtractionIncomplete",
    "GalleryEmpty",
    "InvalidBatchError",
    "PageLoadError",
    "ScrapeError",
    "SlugUnresolved",
    "UnsupportedSiteError",
]
