"""Celery tasks for bulk scraping, due-job execution and the stuck-job sweep."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Sequence

from celery import Task

from .celery_app import celery_app
from .config import SyncConfig
from .runtime import SyncRuntime, build_runtime

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _runtime() -> SyncRuntime:
    """One runtime per worker process, built from ``DEALERSYNC_*`` settings."""

    config = SyncConfig.from_env()
    config.ensure_directories()
    return build_runtime(config)


@celery_app.task(name="dealersync.sweep_stuck_jobs")
def sweep_stuck_jobs_task() -> dict[str, Any]:
    marked = _runtime().scheduler.sweep_stuck()
    return {"stuck": [job.id for job in marked]}


@celery_app.task(name="dealersync.run_due_jobs", bind=True, autoretry_for=(Exception,), retry_backoff=True)
def run_due_jobs_task(self: Task, limit: int | None = None) -> dict[str, Any]:
    finished = _runtime().orchestrator.run_due_jobs(limit=limit)
    statuses: dict[str, int] = {}
    for job in finished:
        statuses[job.status.value] = statuses.get(job.status.value, 0) + 1
    if finished:
        LOGGER.info("Processed %d due job(s): %s", len(finished), statuses)
    return {"processed": len(finished), "statuses": statuses}


@celery_app.task(name="dealersync.scrape_bulk", bind=True)
def scrape_bulk_task(
    self: Task,
    urls: Sequence[str],
    organization: str,
    assigned_user: str | None = None,
    site: str | None = None,
) -> dict[str, Any]:
    report = _runtime().orchestrator.run_batch(list(urls), organization, assigned_user, site)
    return report.to_payload()
