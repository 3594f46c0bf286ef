"""Playwright page loader for JavaScript-rendered dealer listings."""

from __future__ import annotations

import logging

from .errors import PageLoadError
from .pages import PageData

LOGGER = logging.getLogger(__name__)


class BrowserPageLoader:
    """Render listing pages in headless Chromium and hand back the settled DOM."""

    def __init__(
        self,
        *,
        headless: bool = True,
        timeout: float = 45.0,
        wait_until: str = "networkidle",
        user_agent: str | None = None,
    ) -> None:
        self._headless = headless
        self._timeout_ms = int(timeout * 1000)
        self._wait_until = wait_until
        self._user_agent = user_agent
        self._playwright_cm = None
        self._playwright = None
        self._browser = None
        self._context = None
        self._timeout_error_cls = None
        self._error_cls = None

    def __enter__(self) -> "BrowserPageLoader":
        try:
            from playwright.sync_api import (
                Error as PlaywrightError,
                TimeoutError as PlaywrightTimeoutError,
                sync_playwright,
            )
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise PageLoadError(
                "Playwright is not installed. Install it with `pip install playwright` and run `playwright install`."
            ) from exc

        self._timeout_error_cls = PlaywrightTimeoutError
        self._error_cls = PlaywrightError
        self._playwright_cm = sync_playwright()
        self._playwright = self._playwright_cm.__enter__()
        self._browser = self._playwright.chromium.launch(headless=self._headless)
        context_kwargs = {"user_agent": self._user_agent} if self._user_agent else {}
        self._context = self._browser.new_context(**context_kwargs)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._context is not None:
            self._context.close()
        if self._browser is not None:
            self._browser.close()
        if self._playwright_cm is not None:
            self._playwright_cm.__exit__(exc_type, exc, tb)

        self._context = None
        self._browser = None
        self._playwright = None
        self._playwright_cm = None
        self._timeout_error_cls = None
        self._error_cls = None
        return False

    def close(self) -> None:
        self.__exit__(None, None, None)

    def load(self, url: str) -> PageData:
        if self._context is None:
            raise PageLoadError("Browser loader must be used as a context manager", url=url)

        try:
            page = self._context.new_page()
        except self._error_cls as exc:
            raise PageLoadError(f"Browser could not open a page for {url}: {exc}", url=url) from exc
        try:
            response = page.goto(url, wait_until=self._wait_until, timeout=self._timeout_ms)
            status = response.status if response is not None else 200
            if status >= 400:
                raise PageLoadError(f"Unexpected status {status} for {url}", url=url, status_code=status)
            html = page.content()
        except self._timeout_error_cls as exc:
            raise PageLoadError(f"Timed out while loading {url}", url=url) from exc
        except self._error_cls as exc:
            # net::ERR_* navigation failures, DNS errors, crashed targets
            raise PageLoadError(f"Browser failed to load {url}: {exc}", url=url) from exc
        finally:
            page.close()

        LOGGER.debug("Rendered %s (%d bytes)", url, len(html))
        return PageData(url=url, html=html, status_code=status)
