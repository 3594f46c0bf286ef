"""HTTP utilities for fetching listing pages and probing image URLs."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import httpx

from .config import ProxyConfig, SyncConfig
from .errors import PageLoadError

LOGGER = logging.getLogger(__name__)

_BLOCK_REASONS = {
    httpx.codes.FORBIDDEN: "access denied",
    httpx.codes.TOO_MANY_REQUESTS: "rate limited",
    httpx.codes.SERVICE_UNAVAILABLE: "bot challenge or outage",
}


class HttpFetchError(PageLoadError):
    """Transport-level failure: timeout, connection error or a non-200 listing response."""


class ProxyRotator:
    """Asks the proxy provider for a new exit IP once a dealer site starts blocking requests.

    Rotations are spaced at least ``min_rotation_interval`` seconds apart.
    """

    def __init__(
        self,
        proxy_config: ProxyConfig,
        *,
        time_source: Callable[[], float] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._config = proxy_config
        self._time_source = time_source or time.monotonic
        self._client = client or httpx.Client(timeout=10.0)
        self._owns_client = client is None
        self._lock = threading.Lock()
        self._last_rotation_at: float | None = None
        self.rotations = 0

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    @staticmethod
    def block_reason(response: httpx.Response) -> str | None:
        """Describe why ``response`` looks like anti-scraping blocking, or ``None``."""

        reason = _BLOCK_REASONS.get(response.status_code)
        if reason is None:
            return None
        return f"{reason} ({response.status_code})"

    def _cooling_down(self, now: float) -> bool:
        return (
            self._last_rotation_at is not None
            and now - self._last_rotation_at < self._config.min_rotation_interval
        )

    def rotate(self, reason: str = "requested") -> bool:
        """Request a new exit IP; ``True`` only when the provider confirmed the change."""

        change_url = self._config.change_ip_url
        if not change_url:
            LOGGER.debug("Blocked (%s) but no proxy change endpoint is configured", reason)
            return False

        now = self._time_source()
        with self._lock:
            if self._cooling_down(now):
                LOGGER.info(
                    "Blocked (%s); proxy IP changed %.0fs ago, keeping current exit",
                    reason,
                    now - self._last_rotation_at,
                )
                return False

            params = {"key": self._config.api_key} if self._config.api_key else {}
            try:
                response = self._client.get(change_url, params=params)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                LOGGER.warning("Proxy IP change after %s failed: %s", reason, exc)
                return False

            try:
                payload: object = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict) and (payload.get("status") == "error" or payload.get("success") is False):
                LOGGER.warning("Proxy provider refused IP change after %s: %s", reason, payload)
                return False

            self._last_rotation_at = now
            self.rotations += 1
            LOGGER.info("Rotated proxy exit IP after %s (rotation #%d)", reason, self.rotations)
            return True


class HttpFetcher:
    """httpx client wrapper for listing pages, JSON search APIs and image probes."""

    def __init__(
        self,
        config: SyncConfig,
        *,
        client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
        rotator: ProxyRotator | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client = client or self._build_client()
        self._owns_client = client is None
        self._rotator = rotator
        if self._rotator is None and config.proxy:
            self._rotator = ProxyRotator(config.proxy)

    def _build_client(self) -> httpx.Client:
        kwargs: dict[str, object] = {
            "timeout": self._config.timeout.request_timeout,
            "headers": {"User-Agent": self._config.user_agent},
            "follow_redirects": True,
        }
        proxy_url = self._config.proxy.httpx_proxy() if self._config.proxy else None
        if proxy_url:
            kwargs["proxy"] = proxy_url
        if self._transport:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    def _reset_client(self) -> None:
        if not self._owns_client:
            return
        self._client.close()
        self._client = self._build_client()

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        attempts_remaining = 2
        while attempts_remaining:
            attempts_remaining -= 1
            try:
                response = self._client.request(method, url, **kwargs)
            except httpx.TimeoutException as exc:
                raise HttpFetchError(f"Timed out loading {url}", url=url) from exc
            except httpx.HTTPError as exc:
                raise HttpFetchError(str(exc), url=url) from exc

            if response.status_code == httpx.codes.OK:
                return response

            reason = self._rotator.block_reason(response) if self._rotator else None
            if attempts_remaining and reason and self._rotator.rotate(reason):
                self._reset_client()
                continue

            raise HttpFetchError(
                f"Unexpected status {response.status_code} for {url}",
                url=url,
                status_code=response.status_code,
            )

        raise HttpFetchError("Exhausted retries while fetching", url=url)  # pragma: no cover

    def fetch_html(self, url: str) -> tuple[str, httpx.Response]:
        response = self._send("GET", url)
        content_type = response.headers.get("content-type", "")
        if "html" not in content_type:
            raise HttpFetchError(f"Unsupported content type '{content_type}' for {url}", url=url)
        return response.text, response

    def post_json(self, url: str, payload: Any) -> Any:
        response = self._send("POST", url, json=payload)
        try:
            return response.json()
        except ValueError as exc:
            raise HttpFetchError(f"Invalid JSON from {url}", url=url) from exc

    def probe(self, url: str) -> int | None:
        """HEAD ``url`` and return its status code, or ``None`` on timeout or transport error."""

        try:
            response = self._client.head(url, timeout=self._config.timeout.probe_timeout)
        except httpx.HTTPError as exc:
            LOGGER.debug("Probe failed for %s: %s", url, exc)
            return None
        return response.status_code

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
        if self._rotator:
            self._rotator.close()

    def __enter__(self) -> "HttpFetcher":  # pragma: no cover - convenience wrapper
        return self

    def __exit__(self, *_exc_info) -> None:  # pragma: no cover - convenience wrapper
        self.close()
