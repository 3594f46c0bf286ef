"""Normalized page representation handed to extractors."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from bs4 import BeautifulSoup

from .http_client import HttpFetcher

LOGGER = logging.getLogger(__name__)

_STRUCTURED_DATA_SELECTORS = ("script#__NEXT_DATA__", "script#__NUXT_DATA__")


@dataclass(slots=True)
class PageData:
    """A loaded page: parsed DOM plus the framework hydration payload, if any."""

    url: str
    html: str
    status_code: int = 200
    soup: BeautifulSoup = field(init=False, repr=False)
    structured_data: dict[str, Any] | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.soup = BeautifulSoup(self.html, "html.parser")
        self.structured_data = _extract_structured_data(self.soup, self.url)

    @property
    def title(self) -> str | None:
        for selector in ("h1", "title"):
            node = self.soup.select_one(selector)
            if node:
                text = node.get_text(" ", strip=True)
                if text:
                    return text
        return None

    @property
    def is_empty(self) -> bool:
        """True when the page rendered no listing content at all."""

        if self.structured_data:
            return False
        body = self.soup.body
        if body is None:
            return True
        if body.find("img") is not None:
            return False
        return not body.get_text(strip=True)


def _extract_structured_data(soup: BeautifulSoup, url: str) -> dict[str, Any] | None:
    for selector in _STRUCTURED_DATA_SELECTORS:
        script = soup.select_one(selector)
        if script is None:
            continue
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            payload = json.loads(raw)
        except ValueError:
            LOGGER.debug("Ignoring malformed hydration payload on %s", url)
            continue
        if isinstance(payload, dict):
            return payload
    return None


class PageLoader(Protocol):
    def load(self, url: str) -> PageData:  # pragma: no cover - interface only
        ...


class HttpPageLoader:
    """Loads server-rendered pages through :class:`HttpFetcher`."""

    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    def load(self, url: str) -> PageData:
        html, response = self._fetcher.fetch_html(url)
        return PageData(url=url, html=html, status_code=response.status_code)
