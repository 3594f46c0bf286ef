"""Store interfaces for vehicles and jobs, with in-memory implementations."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Collection, Mapping, Protocol

from models import generate_uuid7

from .jobs import JobStatus, ScrapeJob
from .records import VehicleRecord


class StoreError(RuntimeError):
    """Raised when a store operation fails."""


class DuplicateKeyError(StoreError):
    """Raised when a create collides with an existing (organization, vin|source_url) row."""


@dataclass(slots=True)
class StoredVehicle:
    id: str
    organization: str
    record: VehicleRecord
    assigned_user: str | None = None


class VehicleStore(Protocol):
    def find_by_vin(self, organization: str, vin: str) -> StoredVehicle | None:  # pragma: no cover
        ...

    def find_by_url(self, organization: str, source_url: str) -> StoredVehicle | None:  # pragma: no cover
        ...

    def create(
        self, organization: str, record: VehicleRecord, assigned_user: str | None = None
    ) -> StoredVehicle:  # pragma: no cover
        ...

    def update(self, vehicle_id: str, changes: Mapping[str, Any]) -> StoredVehicle:  # pragma: no cover
        ...

    def count(self, organization: str) -> int:  # pragma: no cover
        ...


class JobStore(Protocol):
    def add(self, job: ScrapeJob) -> None:  # pragma: no cover
        ...

    def get(self, job_id: str) -> ScrapeJob | None:  # pragma: no cover
        ...

    def list(
        self,
        *,
        status: JobStatus | None = None,
        assigned_to: str | None = None,
        organization: str | None = None,
    ) -> list[ScrapeJob]:  # pragma: no cover
        ...

    def find_scheduled(self, *, due_before: datetime) -> list[ScrapeJob]:  # pragma: no cover
        ...

    def compare_and_set(
        self,
        job_id: str,
        expected: Collection[JobStatus],
        changes: Mapping[str, Any],
        *,
        scheduled_before: datetime | None = None,
    ) -> ScrapeJob | None:  # pragma: no cover
        ...


class InMemoryVehicleStore:
    """Process-local vehicle store enforcing the same identity keys as the SQL schema."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._vehicles: dict[str, StoredVehicle] = {}

    def _snapshot(self, stored: StoredVehicle) -> StoredVehicle:
        return replace(stored, record=VehicleRecord.from_payload(stored.record.to_payload()))

    def _find(self, organization: str, attribute: str, value: str) -> StoredVehicle | None:
        for stored in self._vehicles.values():
            if stored.organization == organization and getattr(stored.record, attribute) == value:
                return stored
        return None

    def find_by_vin(self, organization: str, vin: str) -> StoredVehicle | None:
        with self._lock:
            found = self._find(organization, "vin", vin)
            return self._snapshot(found) if found else None

    def find_by_url(self, organization: str, source_url: str) -> StoredVehicle | None:
        with self._lock:
            found = self._find(organization, "source_url", source_url)
            return self._snapshot(found) if found else None

    def create(self, organization: str, record: VehicleRecord, assigned_user: str | None = None) -> StoredVehicle:
        with self._lock:
            if record.vin and self._find(organization, "vin", record.vin):
                raise DuplicateKeyError(f"VIN {record.vin} already stored for {organization}")
            if self._find(organization, "source_url", record.source_url):
                raise DuplicateKeyError(f"{record.source_url} already stored for {organization}")
            stored = StoredVehicle(
                id=str(generate_uuid7()),
                organization=organization,
                record=VehicleRecord.from_payload(record.to_payload()),
                assigned_user=assigned_user,
            )
            self._vehicles[stored.id] = stored
            return self._snapshot(stored)

    def update(self, vehicle_id: str, changes: Mapping[str, Any]) -> StoredVehicle:
        with self._lock:
            stored = self._vehicles.get(vehicle_id)
            if stored is None:
                raise StoreError(f"Vehicle {vehicle_id} not found")
            for key, value in changes.items():
                setattr(stored.record, key, value)
            return self._snapshot(stored)

    def count(self, organization: str) -> int:
        with self._lock:
            return sum(1 for stored in self._vehicles.values() if stored.organization == organization)


class InMemoryJobStore:
    """Process-local job store; conditional writes are atomic under a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, ScrapeJob] = {}

    def add(self, job: ScrapeJob) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise DuplicateKeyError(f"Job {job.id} already exists")
            self._jobs[job.id] = job.copy()

    def get(self, job_id: str) -> ScrapeJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.copy() if job else None

    def list(
        self,
        *,
        status: JobStatus | None = None,
        assigned_to: str | None = None,
        organization: str | None = None,
    ) -> list[ScrapeJob]:
        with self._lock:
            jobs = [
                job.copy()
                for job in self._jobs.values()
                if (status is None or job.status is status)
                and (assigned_to is None or job.assigned_user == assigned_to)
                and (organization is None or job.organization == organization)
            ]
        return sorted(jobs, key=lambda job: job.created_at)

    def find_scheduled(self, *, due_before: datetime) -> list[ScrapeJob]:
        with self._lock:
            jobs = [
                job.copy()
                for job in self._jobs.values()
                if job.status is JobStatus.SCHEDULED
                and job.scheduled_time is not None
                and job.scheduled_time <= due_before
            ]
        return sorted(jobs, key=lambda job: job.scheduled_time)

    def compare_and_set(
        self,
        job_id: str,
        expected: Collection[JobStatus],
        changes: Mapping[str, Any],
        *,
        scheduled_before: datetime | None = None,
    ) -> ScrapeJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in expected:
                return None
            if scheduled_before is not None and (
                job.scheduled_time is None or not job.scheduled_time < scheduled_before
            ):
                return None
            for key, value in changes.items():
                setattr(job, key, value)
            return job.copy()
