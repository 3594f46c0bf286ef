"""Scraper for Autotrader vehicle detail pages."""

from __future__ import annotations

import re
from typing import Any

from ..extraction.fields import FieldExtractor
from ..pages import PageData
from .base import VehicleScraper, dig

_VEHICLE_ID = re.compile(r"/vehicle/(\d+)")

_SELECTOR_FIELDS = {
    "year": ('[data-cmp="year"]',),
    "make": ('[data-cmp="make"]',),
    "model": ('[data-cmp="model"]',),
    "trim": ('[data-cmp="trim"]',),
    "price": ('[data-cmp="vdpPrice"]', '[data-cmp="firstPrice"]'),
    "mileage": ('[data-cmp="mileage"]', '[data-cmp="vehicleMileage"]'),
    "vin": ('[data-cmp="vin"]',),
    "exterior_color": ('[data-cmp="exteriorColor"]',),
    "interior_color": ('[data-cmp="interiorColor"]',),
    "drivetrain": ('[data-cmp="drivetrain"]',),
    "transmission": ('[data-cmp="transmission"]',),
    "engine": ('[data-cmp="engine"]',),
    "stock_number": ('[data-cmp="stockNumber"]',),
    "description": ('[data-cmp="vdpComments"]',),
}


class AutotraderScraper(VehicleScraper):
    slug = "autotrader"
    domain_pattern = re.compile(r"(^|\.)autotrader\.(com|ca)$", re.IGNORECASE)
    gallery_selectors = ('img[data-cmp="media"]',)
    feature_selectors = ('[data-cmp="features"] li',)

    def build_field_extractor(self) -> FieldExtractor:
        return FieldExtractor(structured_mapper=self.map_structured_data, selector_fields=_SELECTOR_FIELDS)

    def map_structured_data(self, page: PageData) -> dict[str, Any] | None:
        match = _VEHICLE_ID.search(page.url)
        if not match:
            return None
        vehicle = dig(page.structured_data, "props", "pageProps", "__eggsState", "inventory", match.group(1))
        if not isinstance(vehicle, dict):
            return None

        price = dig(vehicle, "pricingDetail", "salePrice")
        if price is None:
            price = dig(vehicle, "pricingHistory", 0, "price")
        mileage = vehicle.get("mileage")
        if isinstance(mileage, dict):
            mileage = mileage.get("value")
        if mileage is None:
            mileage = vehicle.get("odometer")
        description = vehicle.get("fullDescription") or vehicle.get("description")
        if isinstance(description, dict):
            description = description.get("label")

        return {
            "vin": vehicle.get("vin"),
            "year": vehicle.get("year"),
            "make": vehicle.get("make"),
            "model": vehicle.get("model"),
            "trim": vehicle.get("trim"),
            "price": price,
            "mileage": mileage,
            "stock_number": vehicle.get("stockNumber"),
            "description": description,
        }

    def structured_images(self, page: PageData) -> list[str]:
        sources = dig(page.structured_data, "props", "pageProps", "images", "sources") or []
        return [str(source["src"]) for source in sources if isinstance(source, dict) and source.get("src")]
