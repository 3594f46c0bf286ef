"""Listing slug recovery for dealer sites that re-slug their inventory pages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping
from urllib.parse import urlsplit

from .errors import PageLoadError, SlugUnresolved
from .extraction.images import ImageResolver
from .extraction.fields import normalize_vin
from .http_client import HttpFetcher
from .pages import PageData, PageLoader

LOGGER = logging.getLogger(__name__)

_DERIVED_SLUG = re.compile(r"^(?:thumb-)?(\d{4}-.+?)-\d+\.(?:jpe?g|png|webp)$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


class SlugStrategy(str, Enum):
    DERIVED_FROM_IMAGE = "derived-from-image"
    STANDARD_HYPHENATED = "standard-hyphenated"
    CLEAN_MAKE = "clean-make"
    CLEAN_MODEL = "clean-model"
    STOCK_NUMBER = "stock-number"


@dataclass(slots=True, frozen=True)
class SlugCandidate:
    url: str
    strategy: SlugStrategy


@dataclass(slots=True)
class SlugMetadata:
    """What is known about a vehicle whose listing URL needs recovering."""

    year: str | None = None
    make: str | None = None
    model: str | None = None
    stock_number: str | None = None
    vin: str | None = None
    image_urls: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SlugResolution:
    candidate: SlugCandidate
    page: PageData
    tried: list[str]


def hyphenate(text: str) -> str:
    return _WHITESPACE.sub("-", text.strip())


def compact(text: str) -> str:
    return re.sub(r"[\s-]+", "", text.strip())


def derive_slug_from_image(image_url: str) -> str | None:
    """Recover ``2021-LandRover-RangeRover`` from ``.../thumb-2021-LandRover-RangeRover-3.jpg``."""

    filename = urlsplit(image_url).path.rsplit("/", 1)[-1]
    match = _DERIVED_SLUG.match(filename)
    return match.group(1) if match else None


def build_slug_candidates(vehicle_id: str, metadata: SlugMetadata, base_url: str) -> list[SlugCandidate]:
    """Candidate listing URLs, most specific first. Pure and deterministic."""

    base = base_url.rstrip("/")
    derived = next(
        (slug for slug in (derive_slug_from_image(url) for url in metadata.image_urls) if slug),
        None,
    )

    slugs: list[tuple[str, SlugStrategy]] = []
    if derived:
        slugs.append((f"{derived}-{vehicle_id}", SlugStrategy.DERIVED_FROM_IMAGE))

    standard: str | None = None
    if metadata.year and metadata.make and metadata.model:
        make, model = metadata.make, metadata.model
        standard = f"{metadata.year}-{hyphenate(make)}-{hyphenate(model)}"
        slugs.append((f"{standard}-{vehicle_id}", SlugStrategy.STANDARD_HYPHENATED))
        slugs.append(
            (f"{metadata.year}-{compact(make)}-{hyphenate(model)}-{vehicle_id}", SlugStrategy.CLEAN_MAKE)
        )
        slugs.append(
            (f"{metadata.year}-{hyphenate(make)}-{compact(model)}-{vehicle_id}", SlugStrategy.CLEAN_MODEL)
        )

    stock = (metadata.stock_number or "").strip()
    if stock:
        for prefix in (derived, standard):
            if prefix:
                slugs.append((f"{prefix}-{stock}", SlugStrategy.STOCK_NUMBER))

    candidates: list[SlugCandidate] = []
    seen: set[str] = set()
    for slug, strategy in slugs:
        url = f"{base}/{slug}"
        if url in seen:
            continue
        seen.add(url)
        candidates.append(SlugCandidate(url=url, strategy=strategy))
    return candidates


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def metadata_from_search_item(item: Mapping[str, Any]) -> SlugMetadata:
    """Map one dealer-platform search result onto :class:`SlugMetadata`."""

    vehicle = item.get("Vehicle") or {}
    images: list[str] = []
    for media in item.get("MidVDSMedia") or []:
        source = _first(media.get("media_src"), media.get("src")) if isinstance(media, Mapping) else None
        if source:
            images.append(str(source))
    year = _first(vehicle.get("model_year"), item.get("year"))
    return SlugMetadata(
        year=str(year) if year is not None else None,
        make=_first(vehicle.get("make"), item.get("make")),
        model=_first(vehicle.get("model"), item.get("model")),
        stock_number=_first(item.get("stock_NO"), item.get("stock_number")),
        vin=normalize_vin(_first(item.get("vin"), vehicle.get("vin_number"))),
        image_urls=images,
    )


class SearchIndexClient:
    """Pages through a dealer platform's inventory search API to find one vehicle."""

    def __init__(self, fetcher: HttpFetcher, search_url: str, *, page_size: int = 50, max_pages: int = 20) -> None:
        self._fetcher = fetcher
        self._search_url = search_url
        self._page_size = page_size
        self._max_pages = max_pages

    def _page(self, page: int) -> list[Mapping[str, Any]]:
        url = f"{self._search_url}?page={page}&limit={self._page_size}&keywords="
        payload = self._fetcher.post_json(url, {})
        items = payload if isinstance(payload, list) else (payload or {}).get("data") or []
        return [item for item in items if isinstance(item, Mapping)]

    def find(self, *, vehicle_id: str | None = None, vin: str | None = None) -> Mapping[str, Any] | None:
        wanted_vin = normalize_vin(vin)
        for page in range(1, self._max_pages + 1):
            try:
                items = self._page(page)
            except PageLoadError as exc:
                LOGGER.warning("Search index request failed on page %d: %s", page, exc)
                return None
            if not items:
                return None
            for item in items:
                if vehicle_id is not None and str(item.get("id")) == str(vehicle_id):
                    return item
                if wanted_vin and metadata_from_search_item(item).vin == wanted_vin:
                    return item
        return None

    def lookup(self, *, vehicle_id: str | None = None, vin: str | None = None) -> SlugMetadata | None:
        item = self.find(vehicle_id=vehicle_id, vin=vin)
        return metadata_from_search_item(item) if item is not None else None


class SlugResolver:
    """Probe slug candidates in order and accept the first populated listing page."""

    def __init__(
        self,
        loader: PageLoader,
        image_resolver: ImageResolver,
        base_url: str,
        *,
        search_index: SearchIndexClient | None = None,
        max_candidates: int = 10,
        image_threshold: int = 5,
    ) -> None:
        self._loader = loader
        self._images = image_resolver
        self._base_url = base_url
        self._search_index = search_index
        self._max_candidates = max_candidates
        self._image_threshold = image_threshold

    def enrich(self, vehicle_id: str, metadata: SlugMetadata) -> SlugMetadata:
        """Fill missing image URLs and stock number from the search index."""

        if self._search_index is None or (metadata.image_urls and metadata.stock_number):
            return metadata
        found = self._search_index.lookup(vehicle_id=vehicle_id, vin=metadata.vin)
        if found is None:
            return metadata
        return SlugMetadata(
            year=metadata.year or found.year,
            make=metadata.make or found.make,
            model=metadata.model or found.model,
            stock_number=metadata.stock_number or found.stock_number,
            vin=metadata.vin or found.vin,
            image_urls=metadata.image_urls or found.image_urls,
        )

    def candidates(self, vehicle_id: str, metadata: SlugMetadata) -> list[SlugCandidate]:
        return build_slug_candidates(vehicle_id, metadata, self._base_url)[: self._max_candidates]

    def is_populated(self, page: PageData) -> bool:
        if page.is_empty:
            return False
        if self._images.from_gallery(page):
            return True
        return len(self._images.from_page_images(page)) > self._image_threshold

    def resolve(self, vehicle_id: str, metadata: SlugMetadata) -> SlugResolution:
        metadata = self.enrich(vehicle_id, metadata)
        tried: list[str] = []
        for candidate in self.candidates(vehicle_id, metadata):
            tried.append(candidate.url)
            try:
                page = self._loader.load(candidate.url)
            except PageLoadError as exc:
                LOGGER.debug("Slug candidate %s failed: %s", candidate.url, exc)
                continue
            if self.is_populated(page):
                LOGGER.info("Resolved vehicle %s via %s: %s", vehicle_id, candidate.strategy.value, candidate.url)
                return SlugResolution(candidate=candidate, page=page, tried=tried)

        raise SlugUnresolved(
            f"No slug candidate produced a listing for vehicle {vehicle_id} ({len(tried)} tried)",
            tried=tried,
        )

