"""Bulk scrape batches and scheduled job execution."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Sequence

from .config import SyncConfig
from .dedupe import AdmitDecision, DedupGate
from .errors import InvalidBatchError, ScrapeError
from .jobs import JobScheduler, ScrapeJob
from .records import utcnow
from .sites import ScraperRegistry

LOGGER = logging.getLogger(__name__)
_SCRAPE_FAILURE_LOG = "scrape_failures.ndjson"

STATUS_SUCCESS = "success"
STATUS_UPDATED = "updated"
STATUS_FAILED = "failed"
DUPLICATE_ERROR_TYPE = "DuplicateVehicle"


@dataclass(slots=True)
class BatchItem:
    url: str
    status: str
    vehicle_id: str | None = None
    title: str | None = None
    error: str | None = None
    error_type: str | None = None
    needs_human: bool = False
    retryable: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"url": self.url, "status": self.status}
        if self.vehicle_id is not None:
            payload["vehicleId"] = self.vehicle_id
        if self.status == STATUS_FAILED:
            payload["error"] = self.error
            payload["errorType"] = self.error_type
            if self.needs_human:
                payload["needsHuman"] = True
        else:
            payload["title"] = self.title
        return payload


@dataclass(slots=True)
class BatchReport:
    total: int = 0
    success: int = 0
    failed: int = 0
    items: list[BatchItem] = field(default_factory=list)

    def add(self, item: BatchItem) -> None:
        self.items.append(item)
        self.total += 1
        if item.status == STATUS_FAILED:
            self.failed += 1
        else:
            self.success += 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "items": [item.to_payload() for item in self.items],
        }


class SyncOrchestrator:
    """Scrape, de-duplicate and persist listings one URL at a time."""

    def __init__(
        self,
        registry: ScraperRegistry,
        gate: DedupGate,
        scheduler: JobScheduler,
        *,
        config: SyncConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._gate = gate
        self._scheduler = scheduler
        self._config = config or SyncConfig()
        self._sleep = sleep
        self._clock = clock

    def run_batch(
        self,
        urls: Sequence[Any],
        organization: str,
        assigned_user: str | None = None,
        site: str | None = None,
    ) -> BatchReport:
        """Process ``urls`` sequentially; one failing URL never aborts the batch."""

        if not isinstance(urls, (list, tuple)):
            raise InvalidBatchError("urls must be an array")

        report = BatchReport()
        delay = self._config.rate_limit.per_url_delay
        LOGGER.info("Starting batch of %d URL(s) for organization %s", len(urls), organization)
        for index, raw_url in enumerate(urls):
            if index and delay > 0:
                self._sleep(delay)
            if not isinstance(raw_url, str) or not raw_url.strip():
                item = BatchItem(
                    url="" if raw_url is None else str(raw_url),
                    status=STATUS_FAILED,
                    error="URL must be a non-empty string",
                    error_type="InvalidUrl",
                )
            else:
                item = self.process_url(raw_url.strip(), organization, assigned_user, site)
            if item.status == STATUS_FAILED and item.error_type != DUPLICATE_ERROR_TYPE:
                self._record_failure(organization, item)
            report.add(item)
        LOGGER.info(
            "Batch finished for %s: total=%d success=%d failed=%d",
            organization,
            report.total,
            report.success,
            report.failed,
        )
        return report

    def process_url(
        self,
        url: str,
        organization: str,
        assigned_user: str | None = None,
        site: str | None = None,
    ) -> BatchItem:
        try:
            scraper = self._registry.for_url(url, site)
            record = scraper.scrape(url)
            result = self._gate.admit(record, organization, assigned_user)
        except ScrapeError as exc:
            LOGGER.warning("Scrape failed for %s: %s", url, exc)
            return BatchItem(
                url=url,
                status=STATUS_FAILED,
                error=str(exc) or exc.kind,
                error_type=exc.kind,
                needs_human=exc.needs_human,
                retryable=exc.retryable,
            )
        except Exception as exc:  # batch boundary: capture and keep going
            LOGGER.exception("Unexpected failure processing %s", url)
            return BatchItem(
                url=url,
                status=STATUS_FAILED,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )

        if result.decision is AdmitDecision.SKIPPED:
            return BatchItem(
                url=url,
                status=STATUS_FAILED,
                vehicle_id=result.vehicle_id,
                error=result.reason,
                error_type=DUPLICATE_ERROR_TYPE,
            )
        status = STATUS_SUCCESS if result.decision is AdmitDecision.CREATED else STATUS_UPDATED
        return BatchItem(url=url, status=status, vehicle_id=result.vehicle_id, title=record.title)

    def run_due_jobs(self, now: datetime | None = None, limit: int | None = None) -> list[ScrapeJob]:
        """Run due scheduled jobs to a terminal or rescheduled state.

        Jobs are claimed one at a time, right before they run, so a failure while
        recording one job's outcome leaves the jobs after it scheduled rather than
        stranded in ``running``.
        """

        finished: list[ScrapeJob] = []
        delay = self._config.rate_limit.per_url_delay
        attempted = 0
        for candidate in self._scheduler.due_jobs(now):
            if limit is not None and attempted >= limit:
                break
            job = self._scheduler.claim(candidate.id)
            if job is None:
                continue
            if attempted and delay > 0:
                self._sleep(delay)
            attempted += 1
            try:
                finished.append(self.process_job(job))
            except Exception:  # job boundary: keep draining the due list
                LOGGER.exception("Could not record the outcome of job %s (%s)", job.id, job.source_url)
        return finished

    def process_job(self, job: ScrapeJob) -> ScrapeJob:
        item = self.process_url(job.source_url, job.organization, job.assigned_user)
        if item.status != STATUS_FAILED:
            outcome = "created" if item.status == STATUS_SUCCESS else item.status
            return self._scheduler.complete(job.id, vehicle_id=item.vehicle_id, outcome=outcome)
        if item.error_type == DUPLICATE_ERROR_TYPE:
            return self._scheduler.complete(job.id, vehicle_id=item.vehicle_id, outcome="skipped")

        self._record_failure(job.organization, item, job_id=job.id)
        failed = self._scheduler.fail(
            job.id,
            error=item.error or "",
            error_type=item.error_type or "Error",
            needs_human=item.needs_human,
        )
        if item.retryable and failed.attempts < self._config.retry.max_attempts:
            delay = timedelta(seconds=self._config.retry.delay_for(failed.attempts))
            LOGGER.info("Retrying job %s in %.0fs (attempt %d)", job.id, delay.total_seconds(), failed.attempts)
            return self._scheduler.reschedule(job.id, delay)
        return failed

    def _record_failure(self, organization: str, item: BatchItem, job_id: str | None = None) -> None:
        payload = {
            "url": item.url,
            "organization": organization,
            "job_id": job_id,
            "error": item.error,
            "error_type": item.error_type,
            "needs_human": item.needs_human,
            "timestamp": self._clock().isoformat(),
        }
        log_path = Path(self._config.log_dir) / _SCRAPE_FAILURE_LOG
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as file_error:  # pragma: no cover - filesystem failure path
            LOGGER.warning("Failed to record scrape failure for %s: %s", item.url, file_error)
