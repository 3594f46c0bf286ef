"""HTTP API for bulk scraping and job management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import SyncConfig
from .errors import InvalidBatchError
from .jobs import JobNotFoundError, JobStatus, JobTransitionError, PermissionDenied
from .runtime import SyncRuntime, build_runtime

LOGGER = logging.getLogger(__name__)

ADMIN_ROLES = {"admin", "super_admin"}


@dataclass(slots=True)
class Caller:
    organization: str
    user_id: Optional[str]
    role: Optional[str]

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() in ADMIN_ROLES


def get_caller(
    x_organization_id: str = Header("default"),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Caller:
    """Caller identity is supplied by the upstream auth proxy as headers."""
    return Caller(organization=x_organization_id, user_id=x_user_id, role=x_user_role)


class JobCreate(BaseModel):
    url: str
    assignedUserId: Optional[str] = None
    scheduledTime: Optional[datetime] = None


class JobUpdate(BaseModel):
    status: Optional[JobStatus] = None
    scraped: Optional[bool] = None
    assignedTo: Optional[str] = None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(runtime: SyncRuntime | None = None) -> FastAPI:
    """Build the API around ``runtime``, or around one built from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.runtime is None
        if owned:
            config = SyncConfig.from_env()
            config.ensure_directories()
            app.state.runtime = build_runtime(config)
        LOGGER.info("Dealer sync API started")
        try:
            yield
        finally:
            if owned:
                app.state.runtime.close()
                app.state.runtime = None
            LOGGER.info("Dealer sync API stopped")

    app = FastAPI(title="Dealer Inventory Sync", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime

    def get_runtime(request: Request) -> SyncRuntime:
        return request.app.state.runtime

    @app.exception_handler(JobNotFoundError)
    async def _not_found(_request: Request, exc: JobNotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(JobTransitionError)
    async def _conflict(_request: Request, exc: JobTransitionError) -> JSONResponse:
        return _error(409, str(exc))

    @app.exception_handler(PermissionDenied)
    async def _forbidden(_request: Request, exc: PermissionDenied) -> JSONResponse:
        return _error(403, str(exc))

    @app.exception_handler(InvalidBatchError)
    async def _bad_batch(_request: Request, exc: InvalidBatchError) -> JSONResponse:
        return _error(400, str(exc))

    @app.post("/scrape-bulk")
    def scrape_bulk(
        payload: Any = Body(None),
        caller: Caller = Depends(get_caller),
        runtime: SyncRuntime = Depends(get_runtime),
    ) -> dict[str, Any]:
        """Scrape every URL in order; always 200 with per-item status unless ``urls`` is not an array."""
        urls = payload.get("urls") if isinstance(payload, dict) else None
        if not isinstance(urls, list):
            raise InvalidBatchError("urls must be an array")
        assigned_user = payload.get("assignedUserId") or caller.user_id
        report = runtime.orchestrator.run_batch(urls, caller.organization, assigned_user, payload.get("site"))
        return report.to_payload()

    @app.get("/jobs")
    def list_jobs(
        status: Optional[str] = None,
        assignedTo: Optional[str] = None,
        caller: Caller = Depends(get_caller),
        runtime: SyncRuntime = Depends(get_runtime),
    ):
        try:
            status_filter = JobStatus(status) if status else None
        except ValueError:
            return _error(400, f"Unknown status '{status}'")
        if not caller.is_admin and caller.user_id:
            assignedTo = caller.user_id
        jobs = runtime.scheduler.list_jobs(
            status=status_filter,
            assigned_to=assignedTo,
            organization=caller.organization,
        )
        return {"total": len(jobs), "items": [job.to_payload() for job in jobs]}

    @app.post("/jobs", status_code=201)
    def create_job(
        body: JobCreate,
        caller: Caller = Depends(get_caller),
        runtime: SyncRuntime = Depends(get_runtime),
    ) -> dict[str, Any]:
        job = runtime.scheduler.submit(
            body.url,
            caller.organization,
            body.assignedUserId or caller.user_id,
            _as_utc(body.scheduledTime),
        )
        return job.to_payload()

    @app.patch("/jobs/{job_id}")
    def update_job(
        job_id: str,
        body: JobUpdate,
        caller: Caller = Depends(get_caller),
        runtime: SyncRuntime = Depends(get_runtime),
    ) -> dict[str, Any]:
        job = runtime.scheduler.get(job_id)
        if job.organization != caller.organization:
            raise JobNotFoundError(f"Job {job_id} not found")
        if not caller.is_admin and job.assigned_user not in (None, caller.user_id):
            raise PermissionDenied("Only the assigned user or an admin can update this job")
        updated = runtime.scheduler.update_job(
            job_id,
            status=body.status,
            scraped=body.scraped,
            assigned_to=body.assignedTo,
            caller_is_admin=caller.is_admin,
        )
        return updated.to_payload()

    @app.post("/jobs/{job_id}/requeue")
    def requeue_job(
        job_id: str,
        schedule: bool = True,
        caller: Caller = Depends(get_caller),
        runtime: SyncRuntime = Depends(get_runtime),
    ) -> dict[str, Any]:
        job = runtime.scheduler.get(job_id)
        if job.organization != caller.organization:
            raise JobNotFoundError(f"Job {job_id} not found")
        job = runtime.scheduler.requeue(job_id)
        if schedule:
            job = runtime.scheduler.schedule(job_id)
        return job.to_payload()

    return app
