"""Scrape job lifecycle: state machine, claims and the stuck-job sweep."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from models import generate_uuid7

from .records import utcnow

if TYPE_CHECKING:
    from .store import JobStore

LOGGER = logging.getLogger(__name__)

DEFAULT_GRACE_WINDOW = timedelta(minutes=2)


class JobStatus(str, Enum):
    QUEUED = "queued"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STUCK = "stuck"


# target status -> statuses it may be entered from
_PREDECESSORS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.STUCK, JobStatus.FAILED}),
    JobStatus.SCHEDULED: frozenset({JobStatus.QUEUED}),
    JobStatus.RUNNING: frozenset({JobStatus.SCHEDULED}),
    JobStatus.SUCCEEDED: frozenset({JobStatus.RUNNING}),
    JobStatus.FAILED: frozenset({JobStatus.RUNNING}),
    JobStatus.STUCK: frozenset({JobStatus.SCHEDULED}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return current in _PREDECESSORS[target]


class JobError(RuntimeError):
    """Base class for job lifecycle errors."""


class JobNotFoundError(JobError):
    """Raised when a job id is unknown."""


class JobTransitionError(JobError):
    """Raised when a status change is not allowed from the job's current state."""


class PermissionDenied(JobError):
    """Raised when a non-admin caller tries an admin-only job update."""


@dataclass(slots=True)
class JobResult:
    """Outcome of a job run: a vehicle reference, or an error payload."""

    vehicle_id: str | None = None
    outcome: str | None = None
    error: str | None = None
    error_type: str | None = None
    needs_human: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "vehicleId": self.vehicle_id,
            "outcome": self.outcome,
            "error": self.error,
            "errorType": self.error_type,
            "needsHuman": self.needs_human,
        }


@dataclass(slots=True)
class ScrapeJob:
    id: str
    source_url: str
    organization: str
    assigned_user: str | None = None
    status: JobStatus = JobStatus.QUEUED
    scheduled_time: datetime | None = None
    attempts: int = 0
    scraped: bool = False
    result: JobResult | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceUrl": self.source_url,
            "organization": self.organization,
            "assignedUser": self.assigned_user,
            "status": self.status.value,
            "scheduledTime": self.scheduled_time.isoformat() if self.scheduled_time else None,
            "attempts": self.attempts,
            "scraped": self.scraped,
            "result": self.result.to_payload() if self.result else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def copy(self) -> "ScrapeJob":
        return replace(self, result=replace(self.result) if self.result else None)


class JobScheduler:
    """Owns every job status change; all writes are conditional on the current status."""

    def __init__(
        self,
        store: "JobStore",
        *,
        grace_window: timedelta = DEFAULT_GRACE_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._grace_window = grace_window
        self._clock = clock

    @property
    def grace_window(self) -> timedelta:
        return self._grace_window

    def get(self, job_id: str) -> ScrapeJob:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def _transition(self, job_id: str, target: JobStatus, **changes: Any) -> ScrapeJob:
        job = self.get(job_id)
        if not can_transition(job.status, target):
            raise JobTransitionError(f"Job {job_id} cannot move from {job.status.value} to {target.value}")
        changes.update(status=target, updated_at=self._clock())
        updated = self._store.compare_and_set(job_id, _PREDECESSORS[target], changes)
        if updated is None:
            raise JobTransitionError(f"Job {job_id} changed state concurrently; {target.value} not applied")
        LOGGER.debug("Job %s: %s -> %s", job_id, job.status.value, target.value)
        return updated

    def enqueue(self, source_url: str, organization: str, assigned_user: str | None = None) -> ScrapeJob:
        now = self._clock()
        job = ScrapeJob(
            id=str(generate_uuid7()),
            source_url=source_url,
            organization=organization,
            assigned_user=assigned_user,
            created_at=now,
            updated_at=now,
        )
        self._store.add(job)
        LOGGER.info("Queued job %s for %s", job.id, source_url)
        return job

    def schedule(self, job_id: str, scheduled_time: datetime | None = None) -> ScrapeJob:
        return self._transition(job_id, JobStatus.SCHEDULED, scheduled_time=scheduled_time or self._clock())

    def submit(
        self,
        source_url: str,
        organization: str,
        assigned_user: str | None = None,
        scheduled_time: datetime | None = None,
    ) -> ScrapeJob:
        job = self.enqueue(source_url, organization, assigned_user)
        return self.schedule(job.id, scheduled_time)

    def claim(self, job_id: str) -> ScrapeJob | None:
        """Move a scheduled job to running. Returns ``None`` when another worker or the sweep won."""

        job = self._store.get(job_id)
        if job is None or job.status is not JobStatus.SCHEDULED:
            return None
        return self._store.compare_and_set(
            job_id,
            _PREDECESSORS[JobStatus.RUNNING],
            {"status": JobStatus.RUNNING, "attempts": job.attempts + 1, "updated_at": self._clock()},
        )

    def due_jobs(self, now: datetime | None = None) -> list[ScrapeJob]:
        """Scheduled jobs that are due but still inside the grace window. Nothing is claimed."""

        now = now or self._clock()
        cutoff = now - self._grace_window
        return [
            job
            for job in self._store.find_scheduled(due_before=now)
            if job.scheduled_time is None or job.scheduled_time >= cutoff
        ]

    def claim_due(self, now: datetime | None = None, limit: int | None = None) -> list[ScrapeJob]:
        """Claim scheduled jobs that are due but still inside the grace window."""

        claimed: list[ScrapeJob] = []
        for job in self.due_jobs(now):
            if limit is not None and len(claimed) >= limit:
                break
            running = self.claim(job.id)
            if running is not None:
                claimed.append(running)
        return claimed

    def complete(self, job_id: str, *, vehicle_id: str | None, outcome: str) -> ScrapeJob:
        return self._transition(
            job_id,
            JobStatus.SUCCEEDED,
            scraped=True,
            result=JobResult(vehicle_id=vehicle_id, outcome=outcome),
        )

    def fail(self, job_id: str, *, error: str, error_type: str, needs_human: bool = False) -> ScrapeJob:
        return self._transition(
            job_id,
            JobStatus.FAILED,
            result=JobResult(outcome="failed", error=error, error_type=error_type, needs_human=needs_human),
        )

    def requeue(self, job_id: str) -> ScrapeJob:
        return self._transition(job_id, JobStatus.QUEUED, scheduled_time=None)

    def reschedule(self, job_id: str, delay: timedelta) -> ScrapeJob:
        """Requeue a failed or stuck job and schedule it ``delay`` from now."""

        self.requeue(job_id)
        return self.schedule(job_id, self._clock() + delay)

    def sweep_stuck(self, now: datetime | None = None) -> list[ScrapeJob]:
        """Mark scheduled jobs more than the grace window overdue as stuck.

        Each write is conditional on the job still being scheduled and still overdue,
        so a job claimed or rescheduled between the read and the write is left alone.
        Re-running the sweep is a no-op for jobs already marked.
        """

        now = now or self._clock()
        cutoff = now - self._grace_window
        marked: list[ScrapeJob] = []
        for job in self._store.find_scheduled(due_before=cutoff):
            updated = self._store.compare_and_set(
                job.id,
                _PREDECESSORS[JobStatus.STUCK],
                {"status": JobStatus.STUCK, "updated_at": now},
                scheduled_before=cutoff,
            )
            if updated is not None:
                marked.append(updated)
        if marked:
            LOGGER.warning("Marked %d job(s) stuck: %s", len(marked), ", ".join(job.id for job in marked))
        return marked

    def list_jobs(
        self,
        *,
        status: JobStatus | str | None = None,
        assigned_to: str | None = None,
        organization: str | None = None,
    ) -> list[ScrapeJob]:
        status_filter = JobStatus(status) if status is not None else None
        return self._store.list(status=status_filter, assigned_to=assigned_to, organization=organization)

    def update_job(
        self,
        job_id: str,
        *,
        status: JobStatus | str | None = None,
        scraped: bool | None = None,
        assigned_to: str | None = None,
        caller_is_admin: bool = False,
    ) -> ScrapeJob:
        """Operator update. Reassigning a job requires admin capability."""

        if assigned_to is not None and not caller_is_admin:
            raise PermissionDenied("Only admins can reassign jobs")

        job = self.get(job_id)
        if status is not None:
            target = JobStatus(status)
            if target is not job.status:
                extra: dict[str, Any] = {}
                if target is JobStatus.SCHEDULED and job.scheduled_time is None:
                    extra["scheduled_time"] = self._clock()
                job = self._transition(job_id, target, **extra)

        changes: dict[str, Any] = {}
        if scraped is not None:
            changes["scraped"] = scraped
        if assigned_to is not None:
            changes["assigned_user"] = assigned_to
        if changes:
            changes["updated_at"] = self._clock()
            updated = self._store.compare_and_set(job_id, {job.status}, changes)
            if updated is None:
                raise JobTransitionError(f"Job {job_id} changed state concurrently; update not applied")
            job = updated
        return job
