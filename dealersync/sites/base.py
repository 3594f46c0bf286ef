"""Shared scraper contract composed from field and image extraction."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..config import SyncConfig
from ..errors import ExtractionIncomplete, GalleryEmpty
from ..extraction.fields import FieldExtractor
from ..extraction.images import ImageProber, ImageResolver, normalize_gallery
from ..http_client import HttpFetcher
from ..pages import PageData, PageLoader
from ..records import VehicleRecord

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ScraperContext:
    """Collaborators handed to every scraper at construction."""

    loader: PageLoader
    config: SyncConfig = field(default_factory=SyncConfig)
    prober: ImageProber | None = None
    fetcher: HttpFetcher | None = None


def dig(payload: Any, *path: Any) -> Any:
    """Walk nested dicts and lists, returning ``None`` at the first missing step."""

    current = payload
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int) and -len(current) <= key < len(current):
            current = current[key]
        else:
            return None
        if current is None:
            return None
    return current


def feature_texts(page: PageData, selectors: Iterable[str]) -> list[str]:
    features: list[str] = []
    for selector in selectors:
        for node in page.soup.select(selector):
            text = node.get_text(" ", strip=True)
            if text and text not in features:
                features.append(text)
    return features


class VehicleScraper:
    """Base class for site-specific scrapers: ``scrape(url) -> VehicleRecord``."""

    slug = ""
    domain_pattern: re.Pattern[str] | None = None
    gallery_selectors: tuple[str, ...] | None = None
    thumbnail_selectors: tuple[str, ...] | None = None
    feature_selectors: tuple[str, ...] = ()

    def __init__(self, context: ScraperContext) -> None:
        self._context = context
        self._config = context.config
        self._loader = context.loader
        self.fields = self.build_field_extractor()
        self.images = self.build_image_resolver()

    def build_field_extractor(self) -> FieldExtractor:
        return FieldExtractor(structured_mapper=self.map_structured_data)

    def build_image_resolver(self) -> ImageResolver:
        kwargs: dict[str, Any] = {}
        if self.gallery_selectors is not None:
            kwargs["gallery_selectors"] = self.gallery_selectors
        if self.thumbnail_selectors is not None:
            kwargs["thumbnail_selectors"] = self.thumbnail_selectors
        return ImageResolver(
            prober=self._context.prober,
            max_probes=self._config.probe.max_image_probes,
            placeholders=self._config.placeholder_images,
            **kwargs,
        )

    def map_structured_data(self, page: PageData) -> dict[str, Any] | None:
        """Map the page's hydration payload onto record fields. Sites override this."""

        return None

    def structured_images(self, page: PageData) -> list[str]:
        return []

    def load(self, url: str) -> PageData:
        return self._loader.load(url)

    def scrape(self, url: str) -> VehicleRecord:
        page = self.load(url)
        return self.build_record(page, source_url=url)

    def build_record(
        self,
        page: PageData,
        *,
        source_url: str | None = None,
        base_image_url: str | None = None,
    ) -> VehicleRecord:
        record = self.fields.extract(page)
        if source_url:
            record.source_url = source_url
        record.site = self.slug
        if not record.has_identity:
            raise ExtractionIncomplete(f"No vehicle fields found on {page.url}", url=page.url)

        if not record.features and self.feature_selectors:
            record.features = feature_texts(page, self.feature_selectors)

        images = normalize_gallery(self.structured_images(page), placeholders=self._config.placeholder_images)
        if len(images) <= 1:
            resolved = self.images.resolve_gallery(page, base_image_url=base_image_url or (images[0] if images else None))
            if len(resolved) > len(images):
                images = resolved
        record.images = images

        if not images:
            warning = GalleryEmpty(f"No gallery images found on {page.url}", url=page.url)
            LOGGER.warning("%s", warning)
            record.warnings.append(str(warning))
        return record
