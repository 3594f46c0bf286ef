"""Create / skip / update decisions for scraped vehicles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .records import VEHICLE_FIELDS, VehicleRecord
from .store import DuplicateKeyError, StoredVehicle, VehicleStore

LOGGER = logging.getLogger(__name__)


class AdmitDecision(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    UPDATED = "updated"


@dataclass(slots=True)
class AdmitResult:
    decision: AdmitDecision
    vehicle_id: str | None
    reason: str | None = None


def merge_changes(existing: VehicleRecord, incoming: VehicleRecord) -> dict[str, Any]:
    """Fields the incoming scrape provides that differ from what is stored.

    Missing incoming values never blank out stored ones, and images are only
    replaced by a non-empty gallery.
    """

    changes: dict[str, Any] = {}
    for name in VEHICLE_FIELDS:
        value = getattr(incoming, name)
        if value is not None and value != getattr(existing, name):
            changes[name] = value
    if incoming.images and incoming.images != existing.images:
        changes["images"] = list(incoming.images)
    if incoming.features and incoming.features != existing.features:
        changes["features"] = list(incoming.features)
    changes["warnings"] = list(incoming.warnings)
    changes["scraped_at"] = incoming.scraped_at
    return changes


class DedupGate:
    """Admits a scraped record into the store unless it is already there."""

    def __init__(self, store: VehicleStore) -> None:
        self._store = store

    def _lookup(self, record: VehicleRecord, organization: str) -> StoredVehicle | None:
        if record.vin:
            existing = self._store.find_by_vin(organization, record.vin)
            if existing is not None:
                return existing
        return self._store.find_by_url(organization, record.source_url)

    def admit(self, record: VehicleRecord, organization: str, assigned_user: str | None = None) -> AdmitResult:
        existing = self._lookup(record, organization)
        if existing is None:
            try:
                stored = self._store.create(organization, record, assigned_user)
            except DuplicateKeyError as exc:
                LOGGER.info("Lost create race for %s: %s", record.source_url, exc)
                return AdmitResult(AdmitDecision.SKIPPED, None, _already_exists(record))
            LOGGER.info("Created vehicle %s (%s) from %s", stored.id, record.title or "untitled", record.source_url)
            return AdmitResult(AdmitDecision.CREATED, stored.id)

        if record.vin:
            LOGGER.info("Skipping %s: VIN %s already stored as %s", record.source_url, record.vin, existing.id)
            return AdmitResult(AdmitDecision.SKIPPED, existing.id, _already_exists(record))

        changes = merge_changes(existing.record, record)
        self._store.update(existing.id, changes)
        LOGGER.info("Updated vehicle %s from %s", existing.id, record.source_url)
        return AdmitResult(AdmitDecision.UPDATED, existing.id)


def _already_exists(record: VehicleRecord) -> str:
    if record.vin:
        return f"Vehicle with VIN {record.vin} already exists."
    return f"Vehicle from {record.source_url} already exists."
