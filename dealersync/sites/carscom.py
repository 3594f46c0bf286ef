"""Scraper for cars.com vehicle detail pages."""

from __future__ import annotations

import re

from ..extraction.fields import FieldExtractor
from ..pages import PageData
from ..records import VehicleRecord
from .base import VehicleScraper

_RESOLUTION_SEGMENT = re.compile(r"/\d+x\d+/")

_SELECTOR_FIELDS = {
    "price": ("span.primary-price", ".vehicle-pricing"),
    "mileage": ('[data-qa="mileage"]',),
    "vin": ('[data-qa="vin"]',),
    "exterior_color": ('[data-qa="exterior-color"]',),
    "interior_color": ('[data-qa="interior-color"]',),
    "drivetrain": ('[data-qa="drivetrain"]',),
    "transmission": ('[data-qa="transmission"]',),
    "engine": ('[data-qa="engine"]',),
    "stock_number": ('[data-qa="stock-number"]',),
    "description": ('[data-qa="description"]',),
    "trim": ('[data-qa="trim"]',),
    "body_style": ('[data-qa="body-style"]',),
}


def upgrade_resolution(url: str) -> str:
    """Request the largest rendition cars.com serves for a gallery image."""

    return _RESOLUTION_SEGMENT.sub("/1920x1440/", url).replace("_small", "_large").replace("_medium", "_large")


class CarsComScraper(VehicleScraper):
    slug = "carscom"
    domain_pattern = re.compile(r"(^|\.)cars\.com$", re.IGNORECASE)
    gallery_selectors = ('img[data-qa="vehicle-image"]', ".vdp-gallery picture img")
    feature_selectors = ('[data-qa="features"] li', 'ul[class*="feature"] li')

    def build_field_extractor(self) -> FieldExtractor:
        return FieldExtractor(selector_fields=_SELECTOR_FIELDS)

    def build_record(self, page: PageData, **kwargs) -> VehicleRecord:
        record = super().build_record(page, **kwargs)
        upgraded: list[str] = []
        for url in record.images:
            candidate = upgrade_resolution(url)
            if candidate not in upgraded:
                upgraded.append(candidate)
        record.images = upgraded
        return record
