"""Vehicle record data model produced by site scrapers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Mapping


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class VehicleRecord:
    """One scraped listing. Only ``source_url`` is required."""

    source_url: str
    vin: str | None = None
    year: str | None = None
    make: str | None = None
    model: str | None = None
    trim: str | None = None
    body_style: str | None = None
    mileage: int | None = None
    transmission: str | None = None
    exterior_color: str | None = None
    interior_color: str | None = None
    doors: str | None = None
    passengers: str | None = None
    fuel_type: str | None = None
    stock_number: str | None = None
    engine: str | None = None
    drivetrain: str | None = None
    price: float | None = None
    description: str | None = None
    features: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    site: str | None = None
    warnings: list[str] = field(default_factory=list)
    scraped_at: datetime = field(default_factory=utcnow)

    @property
    def title(self) -> str:
        return " ".join(part for part in (self.year, self.make, self.model) if part)

    @property
    def has_identity(self) -> bool:
        return any((self.vin, self.year, self.make, self.model))

    def merge_missing(self, values: Mapping[str, Any]) -> None:
        """Fill fields that are still empty from ``values``; populated fields win."""

        for key, value in values.items():
            if key not in VEHICLE_FIELDS or value is None or value == "":
                continue
            if getattr(self, key) is None:
                setattr(self, key, value)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["scraped_at"] = self.scraped_at.isoformat()
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "VehicleRecord":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in payload.items() if key in known}
        scraped_at = values.get("scraped_at")
        if isinstance(scraped_at, str):
            values["scraped_at"] = datetime.fromisoformat(scraped_at)
        return cls(**values)


# Scalar attributes a FieldExtractor may populate.
VEHICLE_FIELDS: tuple[str, ...] = (
    "vin",
    "year",
    "make",
    "model",
    "trim",
    "body_style",
    "mileage",
    "transmission",
    "exterior_color",
    "interior_color",
    "doors",
    "passengers",
    "fuel_type",
    "stock_number",
    "engine",
    "drivetrain",
    "price",
    "description",
)
