"""Scraper for CarGurus vehicle detail pages."""

from __future__ import annotations

import re

from ..extraction.fields import FieldExtractor, clean_int, clean_price
from ..pages import PageData
from ..records import VehicleRecord
from .base import VehicleScraper

_RESOLUTION_SEGMENT = re.compile(r"/\d+x\d+/")
_PRICE_IN_TEXT = re.compile(r"\$\s?\d[\d,]*")
_MILEAGE_IN_TEXT = re.compile(r"\b(\d[\d,]*)\s*mi(?:les)?\b", re.IGNORECASE)

_SELECTOR_FIELDS = {
    "price": (".price-section span", 'span[class*="price"]', 'div[class*="pricing"]'),
    "mileage": ('div[class*="mileage"]',),
    "trim": ('span[class*="trim"]',),
    "description": ('div[class*="seller-comments"]', 'div[class*="description"]', 'p[class*="comments"]'),
}


def upgrade_resolution(url: str) -> str:
    """Point a CarGurus gallery URL at its full-size rendition."""

    upgraded = _RESOLUTION_SEGMENT.sub("/1920x1440/", url)
    return upgraded.replace("_sm.", "_lg.").replace("_thumb.", "_full.")


class CarGurusScraper(VehicleScraper):
    slug = "cargurus"
    domain_pattern = re.compile(r"(^|\.)cargurus\.(com|ca)$", re.IGNORECASE)
    gallery_selectors = (
        'img[class*="gallery"]',
        'img[class*="vehicle"]',
        "picture img",
        'img[src*="cargurus"]',
    )
    feature_selectors = (
        'ul[class*="features"] li',
        'div[class*="amenities"] li',
        'ul[class*="options"] li',
    )

    def build_field_extractor(self) -> FieldExtractor:
        return FieldExtractor(selector_fields=_SELECTOR_FIELDS)

    def build_record(self, page: PageData, **kwargs) -> VehicleRecord:
        record = super().build_record(page, **kwargs)

        # Listings without a price or odometer widget still state both in the copy.
        if record.price is None or record.mileage is None:
            body = page.soup.body or page.soup
            text = body.get_text(" ", strip=True)
            if record.price is None:
                match = _PRICE_IN_TEXT.search(text)
                record.price = clean_price(match.group(0)) if match else None
            if record.mileage is None:
                match = _MILEAGE_IN_TEXT.search(text)
                record.mileage = clean_int(match.group(1)) if match else None

        upgraded: list[str] = []
        for url in record.images:
            candidate = upgrade_resolution(url)
            if candidate not in upgraded:
                upgraded.append(candidate)
        record.images = upgraded
        return record
