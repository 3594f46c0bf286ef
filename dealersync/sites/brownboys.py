"""Scraper for Brown Boys Auto, a dealer site on the Hillz Next.js platform."""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlsplit

from ..errors import PageLoadError
from ..extraction.fields import DEFAULT_ROW_SELECTORS, FieldExtractor
from ..pages import PageData
from ..records import VehicleRecord
from ..slugs import SearchIndexClient, SlugMetadata, SlugResolver
from .base import ScraperContext, VehicleScraper, dig

LOGGER = logging.getLogger(__name__)

BROWNBOYS_BASE_URL = "https://www.brownboysauto.com/cars/used"
BROWNBOYS_SEARCH_URL = (
    "https://api.hillzusers.com/api/dealership/advance/search/vehicles/brownboysauto.com"
)

_LISTING_PATH = re.compile(r"/cars/used/(?P<slug>(?P<year>\d{4})-(?P<name>.+?))-(?P<id>\d+)/?$")


def parse_listing_url(url: str) -> tuple[str, SlugMetadata] | None:
    """Split ``/cars/used/2021-Land-Rover-Range-Rover-509760`` into id and what the slug tells us."""

    match = _LISTING_PATH.search(urlsplit(url).path)
    if not match:
        return None
    parts = [part for part in match.group("name").split("-") if part]
    metadata = SlugMetadata(
        year=match.group("year"),
        make=parts[0] if parts else None,
        model=" ".join(parts[1:]) or None,
    )
    return match.group("id"), metadata


def _image_url(entry: Any) -> str | None:
    if not isinstance(entry, dict):
        return None
    url = dig(entry, "url", "url") or dig(entry, "image_url", "url")
    if not url and isinstance(entry.get("url"), str):
        url = entry["url"]
    return str(url) if url else None


class BrownBoysScraper(VehicleScraper):
    slug = "brownboys"
    domain_pattern = re.compile(r"(^|\.)brownboysauto\.com$", re.IGNORECASE)
    gallery_selectors = (".image-gallery-slide img.image-gallery-image",)
    thumbnail_selectors = ("img.image-gallery-thumbnail-image",)
    feature_selectors = (".vehicle-features li", ".features-list li")

    def __init__(self, context: ScraperContext) -> None:
        super().__init__(context)
        search_index = None
        if context.fetcher is not None:
            search_index = SearchIndexClient(
                context.fetcher,
                BROWNBOYS_SEARCH_URL,
                max_pages=context.config.probe.max_search_pages,
            )
        self.slugs = SlugResolver(
            context.loader,
            self.images,
            BROWNBOYS_BASE_URL,
            search_index=search_index,
            max_candidates=context.config.probe.max_slug_candidates,
            image_threshold=context.config.probe.slug_image_threshold,
        )

    def build_field_extractor(self) -> FieldExtractor:
        return FieldExtractor(
            structured_mapper=self.map_structured_data,
            row_selectors=DEFAULT_ROW_SELECTORS,
            selector_fields={
                "price": (".price-value", ".final-price", ".internet-price"),
                "description": (".DetaileProductCustomrWeb-description-text",),
            },
        )

    def _listing(self, page: PageData) -> dict[str, Any] | None:
        data = dig(page.structured_data, "props", "pageProps", "data")
        return data if isinstance(data, dict) else None

    def map_structured_data(self, page: PageData) -> dict[str, Any] | None:
        data = self._listing(page)
        if data is None:
            return None
        vehicle = data.get("Vehicle") or {}
        return {
            "vin": vehicle.get("vin_number"),
            "year": vehicle.get("model_year"),
            "make": vehicle.get("make"),
            "model": vehicle.get("model"),
            "trim": vehicle.get("trim"),
            "body_style": vehicle.get("body_style"),
            "drivetrain": vehicle.get("drive_type"),
            "transmission": vehicle.get("transmission"),
            "exterior_color": dig(vehicle, "exterior_color", "name"),
            "interior_color": dig(vehicle, "interior_color", "name"),
            "doors": vehicle.get("doors"),
            "passengers": vehicle.get("passenger"),
            "fuel_type": vehicle.get("fuel_type"),
            "engine": vehicle.get("engine_cylinders"),
            "stock_number": data.get("stock_NO"),
            "price": data.get("sell_price"),
            "mileage": data.get("odometer"),
            "description": data.get("comment"),
        }

    def structured_images(self, page: PageData) -> list[str]:
        data = self._listing(page)
        if data is None:
            return []
        urls = (_image_url(entry) for entry in data.get("dealership_vehicle_images") or [])
        return [url.replace("thumb-", "") for url in urls if url]

    def scrape(self, url: str) -> VehicleRecord:
        try:
            page = self.load(url)
        except PageLoadError as exc:
            if not exc.is_not_found:
                raise
            return self._scrape_via_slug(url, exc)
        if page.is_empty:
            return self._scrape_via_slug(url, None)
        return self.build_record(page, source_url=url)

    def _scrape_via_slug(self, url: str, cause: PageLoadError | None) -> VehicleRecord:
        parsed = parse_listing_url(url)
        if parsed is None:
            if cause is not None:
                raise cause
            raise PageLoadError(f"Listing page {url} rendered no content", url=url)
        vehicle_id, metadata = parsed
        LOGGER.info("Listing %s is stale; resolving slug for vehicle %s", url, vehicle_id)
        resolution = self.slugs.resolve(vehicle_id, metadata)
        record = self.build_record(resolution.page, source_url=resolution.candidate.url)
        record.warnings.append(f"Listing moved from {url} to {resolution.candidate.url}")
        return record
