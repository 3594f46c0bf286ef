"""Configuration utilities shared by the scrape and sync pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import quote

DEFAULT_LOG_DIR = Path("storage") / "logs"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
MAX_GALLERY_IMAGES = 24

# Dealer "coming soon" artwork served from the image CDN in place of real photos.
DEFAULT_PLACEHOLDER_IMAGES: tuple[str, ...] = (
    "https://image123.azureedge.net/1452782bcltd/16487202666893896-12.png",
)


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(0, parsed)


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return max(0.0, parsed)


@dataclass(slots=True)
class RateLimitConfig:
    per_url_delay: float = 1.0


@dataclass(slots=True)
class RetryConfig:
    max_attempts: int = 3
    backoff_factor: float = 2.0
    base_delay: float = 30.0

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait before the next attempt after ``attempts`` tries."""

        exponent = max(0, attempts - 1)
        return self.base_delay * (self.backoff_factor ** exponent)


@dataclass(slots=True)
class TimeoutConfig:
    request_timeout: float = 15.0
    page_timeout: float = 45.0
    probe_timeout: float = 10.0


@dataclass(slots=True)
class ProbeConfig:
    """Bounds for network probing done by image and slug resolution."""

    max_image_probes: int = 12
    max_slug_candidates: int = 10
    slug_image_threshold: int = 5
    max_search_pages: int = 20


@dataclass(slots=True)
class BrowserConfig:
    enabled: bool = False
    headless: bool = True
    wait_until: str = "networkidle"


@dataclass(slots=True)
class SweepConfig:
    grace_window: float = 120.0
    sweep_interval: float = 60.0
    due_poll_interval: float = 30.0


@dataclass(slots=True)
class ProxyConfig:
    """Configuration for outbound proxy usage and IP rotation."""

    scheme: str = "http"
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    change_ip_url: Optional[str] = None
    min_rotation_interval: float = 240.0

    @property
    def address(self) -> Optional[str]:
        if self.host is None or self.port is None:
            return None
        return f"{self.host}:{self.port}"

    def httpx_proxy(self) -> Optional[str]:
        address = self.address
        if not address:
            return None
        credentials = ""
        if self.username:
            user = quote(self.username, safe="")
            if self.password:
                credentials = f"{user}:{quote(self.password, safe='')}@"
            else:
                credentials = f"{user}@"
        return f"{self.scheme}://{credentials}{address}"

    @classmethod
    def from_endpoint(
        cls,
        endpoint: str,
        *,
        scheme: str = "http",
        change_ip_url: Optional[str] = None,
        min_rotation_interval: float = 240.0,
    ) -> "ProxyConfig":
        """Parse ``host:port``, ``host:port:key`` or ``host:port:user:password``."""

        parts = [segment.strip() for segment in endpoint.strip().split(":")]
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ValueError("Proxy endpoint must be in 'host:port[:key]' format")
        try:
            port = int(parts[1])
        except ValueError as exc:
            raise ValueError("Proxy port must be an integer") from exc

        username = password = key = None
        extras = parts[2:]
        if len(extras) == 1:
            key = extras[0] or None
        elif len(extras) >= 2:
            username, password = extras[0] or None, extras[1] or None
            key = ":".join(segment for segment in extras[2:] if segment) or None

        return cls(
            scheme=scheme,
            host=parts[0],
            port=port,
            username=username,
            password=password,
            api_key=key,
            change_ip_url=change_ip_url,
            min_rotation_interval=min_rotation_interval,
        )


@dataclass(slots=True)
class SyncConfig:
    db_url: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    log_dir: Path = DEFAULT_LOG_DIR
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    proxy: Optional[ProxyConfig] = None
    placeholder_images: tuple[str, ...] = DEFAULT_PLACEHOLDER_IMAGES

    def ensure_directories(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "SyncConfig":
        """Build a config from ``DEALERSYNC_*`` environment variables."""

        env = os.environ if env is None else env
        defaults = cls()
        config = cls(
            db_url=env.get("DEALERSYNC_DATABASE_URL") or None,
            user_agent=env.get("DEALERSYNC_USER_AGENT", defaults.user_agent),
            log_dir=Path(env.get("DEALERSYNC_LOG_DIR", str(defaults.log_dir))),
        )
        config.rate_limit.per_url_delay = _env_float(
            env, "DEALERSYNC_PER_URL_DELAY", defaults.rate_limit.per_url_delay
        )
        config.retry.max_attempts = _env_int(env, "DEALERSYNC_MAX_ATTEMPTS", defaults.retry.max_attempts)
        config.retry.base_delay = _env_float(env, "DEALERSYNC_RETRY_BASE_DELAY", defaults.retry.base_delay)
        config.timeout.page_timeout = _env_float(env, "DEALERSYNC_PAGE_TIMEOUT", defaults.timeout.page_timeout)
        config.timeout.probe_timeout = _env_float(
            env, "DEALERSYNC_PROBE_TIMEOUT", defaults.timeout.probe_timeout
        )
        config.probe.max_image_probes = _env_int(
            env, "DEALERSYNC_MAX_IMAGE_PROBES", defaults.probe.max_image_probes
        )
        config.browser.enabled = _env_bool(env, "DEALERSYNC_USE_BROWSER", defaults.browser.enabled)
        config.browser.wait_until = env.get("DEALERSYNC_BROWSER_WAIT_UNTIL", defaults.browser.wait_until)
        config.sweep.grace_window = _env_float(
            env, "DEALERSYNC_STUCK_GRACE_SECONDS", defaults.sweep.grace_window
        )

        proxy_endpoint = env.get("DEALERSYNC_PROXY")
        if proxy_endpoint:
            config.proxy = ProxyConfig.from_endpoint(
                proxy_endpoint,
                change_ip_url=env.get("DEALERSYNC_PROXY_CHANGE_URL") or None,
            )
        return config
