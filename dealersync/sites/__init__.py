"""Site registry for the supported dealer listing sites."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict
from urllib.parse import urlsplit

from ..errors import UnsupportedSiteError
from .autotrader import AutotraderScraper
from .base import ScraperContext, VehicleScraper
from .brownboys import BrownBoysScraper
from .cargurus import CarGurusScraper
from .carscom import CarsComScraper


@dataclass(slots=True)
class SiteDefinition:
    """Configuration for a supported dealer site."""

    slug: str
    scraper_factory: Callable[[ScraperContext], VehicleScraper]
    domain_pattern: re.Pattern[str]

    def build_scraper(self, context: ScraperContext) -> VehicleScraper:
        """Instantiate the scraper associated with this site."""

        return self.scraper_factory(context)

    def matches(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return bool(host) and bool(self.domain_pattern.search(host))


def _definition(scraper_cls: type[VehicleScraper]) -> SiteDefinition:
    if scraper_cls.domain_pattern is None:
        raise ValueError(f"Scraper {scraper_cls.__name__} has no domain pattern to register")
    return SiteDefinition(
        slug=scraper_cls.slug,
        scraper_factory=scraper_cls,
        domain_pattern=scraper_cls.domain_pattern,
    )


_SITE_REGISTRY: Dict[str, SiteDefinition] = {
    "brownboys": _definition(BrownBoysScraper),
    "autotrader": _definition(AutotraderScraper),
    "carscom": _definition(CarsComScraper),
    "cargurus": _definition(CarGurusScraper),
}


def get_site_definition(site_slug: str) -> SiteDefinition:
    try:
        return _SITE_REGISTRY[site_slug]
    except KeyError as exc:
        raise KeyError(f"Unknown site '{site_slug}'") from exc


def list_sites() -> list[str]:
    return sorted(_SITE_REGISTRY)


def resolve_site(url: str) -> SiteDefinition:
    """Pick the site definition whose domain pattern matches ``url``."""

    for definition in _SITE_REGISTRY.values():
        if definition.matches(url):
            return definition
    raise UnsupportedSiteError(f"No scraper registered for {url}", url=url)


class ScraperRegistry:
    """Builds scrapers lazily, one per site, sharing a single context."""

    def __init__(self, context: ScraperContext) -> None:
        self._context = context
        self._scrapers: dict[str, VehicleScraper] = {}

    def get(self, site_slug: str) -> VehicleScraper:
        scraper = self._scrapers.get(site_slug)
        if scraper is None:
            scraper = get_site_definition(site_slug).build_scraper(self._context)
            self._scrapers[site_slug] = scraper
        return scraper

    def for_url(self, url: str, site_slug: str | None = None) -> VehicleScraper:
        if site_slug:
            return self.get(site_slug)
        return self.get(resolve_site(url).slug)


__all__ = [
    "ScraperContext",
    "ScraperRegistry",
    "SiteDefinition",
    "VehicleScraper",
    "get_site_definition",
    "list_sites",
    "resolve_site",
]
