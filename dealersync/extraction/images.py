"""Gallery resolution strategies for vehicle listing pages."""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Protocol, Sequence
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import Tag

from ..config import MAX_GALLERY_IMAGES
from ..pages import PageData

LOGGER = logging.getLogger(__name__)

DEFAULT_IMAGE_HOST_PATTERN = re.compile(
    r"(azureedge\.net|hillzusers\.com|cloudfront\.net|autotradercdn\.ca|atcdn\.co\.uk"
    r"|cstatic-images\.com|static\.cargurus\.com)",
    re.IGNORECASE,
)

DEFAULT_GALLERY_SELECTORS: tuple[str, ...] = (
    ".image-gallery-slide img.image-gallery-image",
    "img.image-gallery-image",
)
DEFAULT_THUMBNAIL_SELECTORS: tuple[str, ...] = (
    "img.image-gallery-thumbnail-image",
    ".image-gallery-thumbnail img",
)

_EXCLUDED_TAGS = {"header", "nav", "footer"}
_REJECTED_TOKENS = ("logo", "icon", "avatar", "sprite", "placeholder")
_IMAGE_ATTRS = (
    "data-original",
    "data-src",
    "data-lazy-src",
    "data-srcset",
    "srcset",
    "src",
)
_SEQUENCE_SUFFIX = re.compile(r"^(?P<stem>.+?)(?:[-_]\d{1,2})?$")


class ImageProber(Protocol):
    def probe(self, url: str) -> int | None:  # pragma: no cover - interface only
        ...


def normalize_image_url(raw_url: str | None, base_url: str | None = None) -> str | None:
    if not raw_url:
        return None
    cleaned = raw_url.strip()
    if not cleaned or cleaned.startswith("data:"):
        return None
    if cleaned.startswith("//"):
        return f"https:{cleaned}"
    if not cleaned.startswith("http"):
        if not base_url:
            return None
        cleaned = urljoin(base_url, cleaned)
    return cleaned


def image_source(tag: Tag, base_url: str | None = None) -> str | None:
    """Return the best source URL for an ``<img>``, preferring lazy-load attributes."""

    for attr in _IMAGE_ATTRS:
        if attr not in tag.attrs:
            continue
        raw_value = tag.get(attr) or ""
        if attr in {"srcset", "data-srcset"}:
            raw_value = raw_value.split(",")[0].split(" ")[0]
        source = normalize_image_url(raw_value, base_url)
        if source:
            return source
    return None


def upgrade_thumbnail(url: str) -> str:
    """Rewrite ``.../thumb-name.jpg`` to ``.../name.jpg``."""

    parts = urlsplit(url)
    path = parts.path.replace("/thumb-", "/")
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def is_valid_image(url: str, placeholders: Iterable[str] = ()) -> bool:
    if not url.startswith("http"):
        return False
    lowered = url.lower()
    path = urlsplit(lowered).path
    if path.endswith(".svg"):
        return False
    filename = path.rsplit("/", 1)[-1]
    if any(token in filename for token in _REJECTED_TOKENS):
        return False
    return url not in set(placeholders)


def normalize_gallery(
    urls: Iterable[str],
    *,
    placeholders: Iterable[str] = (),
    limit: int = MAX_GALLERY_IMAGES,
) -> list[str]:
    """Drop invalid and placeholder images, de-duplicate in order and cap at ``limit``."""

    placeholder_set = set(placeholders)
    seen: set[str] = set()
    gallery: list[str] = []
    for url in urls:
        if not url or url in seen or not is_valid_image(url, placeholder_set):
            continue
        seen.add(url)
        gallery.append(url)
        if len(gallery) >= limit:
            break
    return gallery


def _is_chrome_image(tag: Tag) -> bool:
    """True for images inside site chrome (header, nav, footer, logo or home link)."""

    for parent in tag.parents:
        if not isinstance(parent, Tag):
            continue
        if parent.name in _EXCLUDED_TAGS:
            return True
        if parent.name == "a" and parent.get("href") == "/":
            return True
        marker = " ".join(parent.get("class") or []) + " " + (parent.get("id") or "")
        if "logo" in marker.lower():
            return True
    return False


def split_sequence_url(url: str) -> tuple[str, str, str] | None:
    """Split an image URL into ``(directory, stem, extension)`` with any sequence suffix removed."""

    parts = urlsplit(url)
    directory, _, filename = parts.path.rpartition("/")
    name, dot, extension = filename.rpartition(".")
    if not dot or not name:
        return None
    if name.startswith("thumb-"):
        name = name[len("thumb-"):]
    match = _SEQUENCE_SUFFIX.match(name)
    stem = match.group("stem") if match else name
    prefix = urlunsplit((parts.scheme, parts.netloc, directory, "", ""))
    return prefix, stem, extension


def numeric_suffix_variants(url: str, sequence: int) -> list[str]:
    """Candidate URLs for image ``sequence``, one per format: ``-1``, ``-01``, ``_1``, ``_01``."""

    split = split_sequence_url(url)
    if split is None:
        return []
    prefix, stem, extension = split
    return [
        f"{prefix}/{stem}{separator}{number}.{extension}"
        for separator in ("-", "_")
        for number in (str(sequence), f"{sequence:02d}")
    ]


class ImageResolver:
    """Run image strategies in order until one yields a plausible gallery."""

    def __init__(
        self,
        *,
        prober: ImageProber | None = None,
        host_pattern: re.Pattern[str] = DEFAULT_IMAGE_HOST_PATTERN,
        gallery_selectors: Sequence[str] = DEFAULT_GALLERY_SELECTORS,
        thumbnail_selectors: Sequence[str] = DEFAULT_THUMBNAIL_SELECTORS,
        max_probes: int = 12,
        placeholders: Iterable[str] = (),
        limit: int = MAX_GALLERY_IMAGES,
    ) -> None:
        self._prober = prober
        self._host_pattern = host_pattern
        self._gallery_selectors = tuple(gallery_selectors)
        self._thumbnail_selectors = tuple(thumbnail_selectors)
        self._max_probes = max_probes
        self._placeholders = tuple(placeholders)
        self._limit = limit

    def _normalize(self, urls: Iterable[str]) -> list[str]:
        return normalize_gallery(urls, placeholders=self._placeholders, limit=self._limit)

    def _select_sources(self, page: PageData, selectors: Sequence[str]) -> list[str]:
        sources: list[str] = []
        for selector in selectors:
            for tag in page.soup.select(selector):
                source = image_source(tag, page.url)
                if source:
                    sources.append(source)
        return sources

    def from_gallery(self, page: PageData) -> list[str]:
        return self._normalize(self._select_sources(page, self._gallery_selectors))

    def from_page_images(self, page: PageData) -> list[str]:
        sources: list[str] = []
        for tag in page.soup.find_all("img"):
            source = image_source(tag, page.url)
            if not source or not self._host_pattern.search(source):
                continue
            if _is_chrome_image(tag):
                continue
            sources.append(source)
        return self._normalize(sources)

    def from_thumbnails(self, page: PageData) -> list[str]:
        sources = self._select_sources(page, self._thumbnail_selectors)
        return self._normalize(upgrade_thumbnail(url) for url in sources)

    def from_numeric_suffix(self, base_image_url: str) -> list[str]:
        """Probe sequential image URLs built from ``base_image_url``; only HTTP 200 counts."""

        if self._prober is None:
            return []
        probes = 0
        found: list[str] = []
        fixed_format: int | None = None
        sequence = 1
        while len(found) < self._limit and probes < self._max_probes:
            variants = numeric_suffix_variants(upgrade_thumbnail(base_image_url), sequence)
            if not variants:
                break
            if fixed_format is not None:
                variants = [variants[fixed_format]]
            hit: str | None = None
            tried: set[str] = set()
            for index, candidate in enumerate(variants):
                if probes >= self._max_probes:
                    break
                if candidate in tried:
                    continue
                tried.add(candidate)
                probes += 1
                if self._prober.probe(candidate) == 200:
                    hit = candidate
                    if fixed_format is None:
                        fixed_format = index
                    break
            if hit is None:
                break
            found.append(hit)
            sequence += 1
        LOGGER.debug("Numeric suffix probing found %d images using %d probes", len(found), probes)
        return self._normalize(found)

    def strategies(self) -> list[Callable[[PageData], list[str]]]:
        return [self.from_gallery, self.from_page_images, self.from_thumbnails]

    def resolve_gallery(self, page: PageData, base_image_url: str | None = None) -> list[str]:
        best: list[str] = []
        for strategy in self.strategies():
            result = strategy(page)
            if len(result) > len(best):
                best = result
            if len(best) > 1:
                return best

        base = base_image_url or (best[0] if best else None)
        if base:
            probed = self.from_numeric_suffix(base)
            if len(probed) > len(best):
                best = probed
        if not best:
            LOGGER.info("No gallery images resolved for %s", page.url)
        return best
