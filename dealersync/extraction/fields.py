"""Vehicle field extraction from hydration payloads, labeled DOM rows and titles."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterable, Mapping, Sequence

from bs4 import BeautifulSoup, Tag

from ..pages import PageData
from ..records import VehicleRecord

LOGGER = logging.getLogger(__name__)

VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_VIN_IN_TEXT = re.compile(r"\bVIN[\s:#]*([A-HJ-NPR-Z0-9]{17})\b", re.IGNORECASE)
_TITLE_PATTERN = re.compile(r"^\s*((?:19|20)\d{2})\s+(\S+)\s+(.+?)\s*$")
_CONDITION_PREFIX = re.compile(r"^\s*(?:used|new|pre-owned|certified(?:\s+pre-owned)?)\s+", re.IGNORECASE)
_YEAR_PATTERN = re.compile(r"^(?:19|20)\d{2}$")
_UNIT_SUFFIX = re.compile(r"(?:km|kms|mi|miles|k)\.?$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

DEFAULT_ROW_SELECTORS: tuple[str, ...] = (
    ".vehicle_single_detail_div__container",
    "table tr",
    "ul.specs li",
    "dl.specs div",
)

# Normalized label text -> record attribute.
LABEL_FIELDS: dict[str, str] = {
    "year": "year",
    "make": "make",
    "model": "model",
    "trim": "trim",
    "body style": "body_style",
    "body type": "body_style",
    "odometer": "mileage",
    "mileage": "mileage",
    "kilometres": "mileage",
    "kilometers": "mileage",
    "transmission": "transmission",
    "exterior color": "exterior_color",
    "exterior colour": "exterior_color",
    "interior color": "interior_color",
    "interior colour": "interior_color",
    "doors": "doors",
    "passengers": "passengers",
    "seats": "passengers",
    "fuel type": "fuel_type",
    "fuel": "fuel_type",
    "stock number": "stock_number",
    "stock": "stock_number",
    "stock no": "stock_number",
    "vin": "vin",
    "engine": "engine",
    "drivetrain": "drivetrain",
    "drive type": "drivetrain",
    "price": "price",
}

StructuredMapper = Callable[[PageData], "Mapping[str, Any] | None"]


def clean_number(value: Any) -> float | None:
    """Coerce ``"$34,995"``, ``"45,000 km"`` or ``"12 mi"`` to a float; ``None`` when unparseable."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace("$", "").replace(",", "")
    text = _UNIT_SUFFIX.sub("", text).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def clean_int(value: Any) -> int | None:
    number = clean_number(value)
    return int(number) if number is not None else None


def clean_price(value: Any) -> float | int | None:
    number = clean_number(value)
    if number is None or number <= 0:
        return None
    return int(number) if number.is_integer() else number


def normalize_vin(value: Any) -> str | None:
    if value is None:
        return None
    candidate = re.sub(r"[\s-]", "", str(value)).upper()
    return candidate if VIN_PATTERN.match(candidate) else None


def find_vin_in_text(text: str) -> str | None:
    match = _VIN_IN_TEXT.search(text or "")
    return match.group(1).upper() if match else None


def normalize_label(text: str) -> str:
    cleaned = text.replace(":", " ").replace("#", " ").strip().lower()
    return _WHITESPACE.sub(" ", cleaned).strip()


def parse_title(text: str | None) -> dict[str, str]:
    """Split ``"2023 Hyundai Elantra"`` (or ``"Used 2023 Hyundai Elantra"``) into year, make and model."""

    if not text:
        return {}
    match = _TITLE_PATTERN.match(_CONDITION_PREFIX.sub("", _WHITESPACE.sub(" ", text)))
    if not match:
        return {}
    year, make, model = match.groups()
    return {"year": year, "make": make, "model": model}


def _strip_markup(text: str) -> str:
    if "<" not in text:
        return text.strip()
    return BeautifulSoup(text, "html.parser").get_text(" ", strip=True)


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        value = value.get("name") or value.get("value")
        if value is None:
            return None
    text = _WHITESPACE.sub(" ", str(value)).strip()
    if not text or text.lower() in {"n/a", "none", "null", "-"}:
        return None
    return text


def coerce_fields(raw: Mapping[str, Any], warnings: list[str] | None = None) -> dict[str, Any]:
    """Normalize raw extracted values into record-ready values, dropping empties."""

    cleaned: dict[str, Any] = {}
    for key, value in raw.items():
        if key == "mileage":
            result: Any = clean_int(value)
        elif key == "price":
            result = clean_price(value)
        elif key == "vin":
            result = normalize_vin(value)
            if result is None and _clean_text(value) and warnings is not None:
                warnings.append(f"Discarded malformed VIN {value!r}")
        elif key == "year":
            text = _clean_text(value)
            result = text if text and _YEAR_PATTERN.match(text) else None
        elif key == "description":
            result = _strip_markup(str(value)) or None if _clean_text(value) else None
        else:
            result = _clean_text(value)
        if result is not None:
            cleaned[key] = result
    return cleaned


def is_consistent(values: Mapping[str, Any]) -> bool:
    """Hydration data is trusted only with a valid year and at least make or model."""

    year = values.get("year")
    if year is not None and not _YEAR_PATTERN.match(str(year)):
        return False
    return bool(values.get("make") or values.get("model"))


def _row_cells(row: Tag) -> list[Tag]:
    return [child for child in row.find_all(True, recursive=False) if child.get_text(strip=True)]


def extract_labeled_fields(soup: BeautifulSoup, row_selectors: Iterable[str] = DEFAULT_ROW_SELECTORS) -> dict[str, str]:
    """Map rows whose first cell is a known label to their last cell's text.

    Bare ``<dt>label</dt><dd>value</dd>`` pairs count as rows too.
    """

    found: dict[str, str] = {}

    def add(label: Tag, value: Tag) -> None:
        attribute = LABEL_FIELDS.get(normalize_label(label.get_text(" ", strip=True)))
        if attribute is None or attribute in found:
            return
        text = value.get_text(" ", strip=True)
        if text:
            found[attribute] = text

    for selector in row_selectors:
        for row in soup.select(selector):
            cells = _row_cells(row)
            if len(cells) >= 2:
                add(cells[0], cells[-1])
    for term in soup.find_all("dt"):
        definition = term.find_next_sibling()
        if definition is not None and definition.name == "dd":
            add(term, definition)
    return found


def _select_text(soup: BeautifulSoup, selectors: Sequence[str]) -> str | None:
    for selector in selectors:
        node = soup.select_one(selector)
        if node:
            text = node.get_text(" ", strip=True)
            if text:
                return text
    return None


class FieldExtractor:
    """Build a :class:`VehicleRecord` from a page, preferring the most structured source."""

    def __init__(
        self,
        *,
        structured_mapper: StructuredMapper | None = None,
        row_selectors: Sequence[str] = DEFAULT_ROW_SELECTORS,
        selector_fields: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._structured_mapper = structured_mapper
        self._row_selectors = tuple(row_selectors)
        self._selector_fields = dict(selector_fields or {})

    def extract(self, page: PageData) -> VehicleRecord:
        record = VehicleRecord(source_url=page.url)

        structured = self._structured_fields(page, record.warnings)
        if structured:
            record.merge_missing(structured)
            features = structured.get("features")
            if features:
                record.features = [str(item).strip() for item in features if str(item).strip()]

        labeled_raw: dict[str, Any] = dict(extract_labeled_fields(page.soup, self._row_selectors))
        for attribute, selectors in self._selector_fields.items():
            if attribute not in labeled_raw:
                text = _select_text(page.soup, selectors)
                if text:
                    labeled_raw[attribute] = text
        record.merge_missing(coerce_fields(labeled_raw, record.warnings))

        if not (record.year and record.make and record.model):
            record.merge_missing(parse_title(page.title))

        if record.vin is None:
            record.vin = find_vin_in_text(page.soup.get_text(" ", strip=True))

        return record

    def _structured_fields(self, page: PageData, warnings: list[str]) -> dict[str, Any] | None:
        if self._structured_mapper is None or not page.structured_data:
            return None
        try:
            raw = self._structured_mapper(page)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            LOGGER.debug("Structured data mapper failed for %s: %s", page.url, exc)
            return None
        if not raw:
            return None
        features = raw.get("features")
        cleaned = coerce_fields({key: value for key, value in raw.items() if key != "features"}, warnings)
        if raw.get("year") is not None and "year" not in cleaned:
            LOGGER.debug("Ignoring structured data with malformed year on %s", page.url)
            return None
        if not is_consistent(cleaned):
            LOGGER.debug("Ignoring inconsistent structured data on %s", page.url)
            return None
        if isinstance(features, (list, tuple)):
            cleaned["features"] = list(features)
        return cleaned
