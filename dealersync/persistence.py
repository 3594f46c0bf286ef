"""SQLAlchemy-backed vehicle and job stores."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Collection, Mapping
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import Base, ScrapeJobEntry, Vehicle, generate_uuid7

from .jobs import JobResult, JobStatus, ScrapeJob
from .records import VEHICLE_FIELDS, VehicleRecord
from .store import DuplicateKeyError, StoreError, StoredVehicle

LOGGER = logging.getLogger(__name__)


class VehiclePersistenceError(StoreError):
    """Raised when persisting a vehicle fails."""


def _to_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _vehicle_to_stored(row: Vehicle) -> StoredVehicle:
    values = {name: getattr(row, name) for name in VEHICLE_FIELDS}
    record = VehicleRecord(
        source_url=row.source_url,
        features=list(row.features or []),
        images=list(row.images or []),
        site=row.site_slug,
        warnings=list(row.scrape_warnings or []),
        scraped_at=_from_db_time(row.scraped_at) or _from_db_time(row.created_at),
        **values,
    )
    return StoredVehicle(
        id=str(row.id),
        organization=row.organization,
        record=record,
        assigned_user=row.assigned_user,
    )


class SqlVehicleStore:
    """Vehicle store with identity enforced by the (organization, vin|source_url) unique constraints."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def _find(self, organization: str, column, value: str) -> StoredVehicle | None:
        try:
            with self._session_factory() as session:
                row = session.execute(
                    select(Vehicle).where(Vehicle.organization == organization, column == value)
                ).scalar_one_or_none()
                return _vehicle_to_stored(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise VehiclePersistenceError(str(exc)) from exc

    def find_by_vin(self, organization: str, vin: str) -> StoredVehicle | None:
        return self._find(organization, Vehicle.vin, vin)

    def find_by_url(self, organization: str, source_url: str) -> StoredVehicle | None:
        return self._find(organization, Vehicle.source_url, source_url)

    def create(self, organization: str, record: VehicleRecord, assigned_user: str | None = None) -> StoredVehicle:
        row = Vehicle(
            id=generate_uuid7(),
            organization=organization,
            assigned_user=assigned_user,
            site_slug=record.site,
            source_url=record.source_url,
            features=list(record.features),
            images=list(record.images),
            scrape_warnings=list(record.warnings),
            scraped_at=_to_db_time(record.scraped_at),
            **{name: getattr(record, name) for name in VEHICLE_FIELDS},
        )
        try:
            with self._session_factory() as session:
                session.add(row)
                session.commit()
                session.refresh(row)
                return _vehicle_to_stored(row)
        except IntegrityError as exc:
            raise DuplicateKeyError(
                f"Vehicle {record.vin or record.source_url} already stored for {organization}"
            ) from exc
        except SQLAlchemyError as exc:  # pragma: no cover - failure path
            raise VehiclePersistenceError(str(exc)) from exc

    def update(self, vehicle_id: str, changes: Mapping[str, Any]) -> StoredVehicle:
        column_map = {"site": "site_slug", "warnings": "scrape_warnings"}
        try:
            with self._session_factory() as session:
                row = session.get(Vehicle, _parse_uuid(vehicle_id))
                if row is None:
                    raise StoreError(f"Vehicle {vehicle_id} not found")
                for key, value in changes.items():
                    if key == "scraped_at":
                        value = _to_db_time(value)
                    elif isinstance(value, list):
                        value = list(value)
                    setattr(row, column_map.get(key, key), value)
                session.commit()
                session.refresh(row)
                return _vehicle_to_stored(row)
        except IntegrityError as exc:
            raise DuplicateKeyError(f"Update of vehicle {vehicle_id} violates identity keys") from exc
        except SQLAlchemyError as exc:  # pragma: no cover - failure path
            raise VehiclePersistenceError(str(exc)) from exc

    def count(self, organization: str) -> int:
        with self._session_factory() as session:
            return session.execute(
                select(func.count()).select_from(Vehicle).where(Vehicle.organization == organization)
            ).scalar_one()


def _entry_to_job(entry: ScrapeJobEntry) -> ScrapeJob:
    result = None
    if entry.outcome or entry.error:
        result = JobResult(
            vehicle_id=str(entry.vehicle_id) if entry.vehicle_id else None,
            outcome=entry.outcome,
            error=entry.error,
            error_type=entry.error_type,
            needs_human=bool(entry.needs_human),
        )
    return ScrapeJob(
        id=str(entry.id),
        source_url=entry.source_url,
        organization=entry.organization,
        assigned_user=entry.assigned_user,
        status=JobStatus(entry.status),
        scheduled_time=_from_db_time(entry.scheduled_time),
        attempts=entry.attempts or 0,
        scraped=bool(entry.scraped),
        result=result,
        created_at=_from_db_time(entry.created_at),
        updated_at=_from_db_time(entry.updated_at),
    )


def _job_columns(changes: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "status":
            values["status"] = JobStatus(value).value
        elif key in {"scheduled_time", "updated_at", "created_at"}:
            values[key] = _to_db_time(value)
        elif key == "result":
            result: JobResult | None = value
            values["vehicle_id"] = _parse_uuid(result.vehicle_id) if result and result.vehicle_id else None
            values["outcome"] = result.outcome if result else None
            values["error"] = result.error if result else None
            values["error_type"] = result.error_type if result else None
            values["needs_human"] = bool(result.needs_human) if result else False
        else:
            values[key] = value
    return values


class SqlJobStore:
    """Job store whose conditional writes are a single ``UPDATE ... WHERE status IN (...)``."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def add(self, job: ScrapeJob) -> None:
        entry = ScrapeJobEntry(id=_parse_uuid(job.id), source_url=job.source_url, organization=job.organization)
        for key, value in _job_columns(
            {
                "assigned_user": job.assigned_user,
                "status": job.status,
                "scheduled_time": job.scheduled_time,
                "attempts": job.attempts,
                "scraped": job.scraped,
                "result": job.result,
                "created_at": job.created_at,
                "updated_at": job.updated_at,
            }
        ).items():
            setattr(entry, key, value)
        try:
            with self._session_factory() as session:
                session.add(entry)
                session.commit()
        except IntegrityError as exc:
            raise DuplicateKeyError(f"Job {job.id} already exists") from exc

    def get(self, job_id: str) -> ScrapeJob | None:
        key = _parse_uuid(job_id)
        if key is None:
            return None
        with self._session_factory() as session:
            entry = session.get(ScrapeJobEntry, key)
            return _entry_to_job(entry) if entry is not None else None

    def list(
        self,
        *,
        status: JobStatus | None = None,
        assigned_to: str | None = None,
        organization: str | None = None,
    ) -> list[ScrapeJob]:
        query = select(ScrapeJobEntry)
        if status is not None:
            query = query.where(ScrapeJobEntry.status == status.value)
        if assigned_to is not None:
            query = query.where(ScrapeJobEntry.assigned_user == assigned_to)
        if organization is not None:
            query = query.where(ScrapeJobEntry.organization == organization)
        with self._session_factory() as session:
            entries = session.execute(query.order_by(ScrapeJobEntry.created_at)).scalars().all()
            return [_entry_to_job(entry) for entry in entries]

    def find_scheduled(self, *, due_before: datetime) -> list[ScrapeJob]:
        query = (
            select(ScrapeJobEntry)
            .where(
                ScrapeJobEntry.status == JobStatus.SCHEDULED.value,
                ScrapeJobEntry.scheduled_time <= _to_db_time(due_before),
            )
            .order_by(ScrapeJobEntry.scheduled_time)
        )
        with self._session_factory() as session:
            return [_entry_to_job(entry) for entry in session.execute(query).scalars().all()]

    def compare_and_set(
        self,
        job_id: str,
        expected: Collection[JobStatus],
        changes: Mapping[str, Any],
        *,
        scheduled_before: datetime | None = None,
    ) -> ScrapeJob | None:
        key = _parse_uuid(job_id)
        if key is None:
            return None
        statement = update(ScrapeJobEntry).where(
            ScrapeJobEntry.id == key,
            ScrapeJobEntry.status.in_([JobStatus(status).value for status in expected]),
        )
        if scheduled_before is not None:
            statement = statement.where(ScrapeJobEntry.scheduled_time < _to_db_time(scheduled_before))
        statement = statement.values(**_job_columns(changes)).execution_options(synchronize_session=False)

        with self._session_factory() as session:
            result = session.execute(statement)
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            entry = session.get(ScrapeJobEntry, key, populate_existing=True)
            return _entry_to_job(entry) if entry is not None else None


def create_tables(engine) -> None:
    Base.metadata.create_all(engine)  # ensure required tables exist before queries
