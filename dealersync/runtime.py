"""Process-level wiring of stores, scrapers, scheduler and orchestrator."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .browser import BrowserPageLoader
from .config import SyncConfig
from .dedupe import DedupGate
from .http_client import HttpFetcher
from .jobs import JobScheduler
from .orchestrator import SyncOrchestrator
from .pages import HttpPageLoader, PageLoader
from .persistence import SqlJobStore, SqlVehicleStore, create_tables
from .sites import ScraperContext, ScraperRegistry
from .store import InMemoryJobStore, InMemoryVehicleStore, JobStore, VehicleStore

LOGGER = logging.getLogger(__name__)

_ENGINE_OPTIONS = {
    # Keep each worker's connection footprint small when many run against one Postgres.
    "pool_size": 2,
    "max_overflow": 0,
    "pool_pre_ping": True,
    "pool_recycle": 1800,
}


def build_session_factory(db_url: str) -> sessionmaker:
    if db_url.startswith("sqlite"):
        kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if db_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(db_url, **kwargs)
    else:
        engine = create_engine(db_url, **_ENGINE_OPTIONS)
    create_tables(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


@dataclass(slots=True)
class SyncRuntime:
    config: SyncConfig
    fetcher: HttpFetcher
    loader: PageLoader
    vehicles: VehicleStore
    jobs: JobStore
    scheduler: JobScheduler
    gate: DedupGate
    registry: ScraperRegistry
    orchestrator: SyncOrchestrator
    _closers: list[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        while self._closers:
            closer = self._closers.pop()
            try:
                closer()
            except Exception:  # pragma: no cover - teardown best effort
                LOGGER.exception("Error while closing runtime resource")

    def __enter__(self) -> "SyncRuntime":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()


def build_runtime(
    config: SyncConfig | None = None,
    *,
    session_factory: sessionmaker | None = None,
    loader: PageLoader | None = None,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SyncRuntime:
    """Create every long-lived collaborator once; ``close()`` tears them down."""

    config = config or SyncConfig()
    closers: list[Callable[[], None]] = []

    fetcher = HttpFetcher(config, transport=transport)
    closers.append(fetcher.close)

    if loader is None:
        if config.browser.enabled:
            browser = BrowserPageLoader(
                headless=config.browser.headless,
                timeout=config.timeout.page_timeout,
                wait_until=config.browser.wait_until,
                user_agent=config.user_agent,
            )
            browser.__enter__()
            closers.append(browser.close)
            loader = browser
        else:
            loader = HttpPageLoader(fetcher)

    if session_factory is None and config.db_url:
        session_factory = build_session_factory(config.db_url)

    vehicles: VehicleStore
    jobs: JobStore
    if session_factory is not None:
        vehicles = SqlVehicleStore(session_factory)
        jobs = SqlJobStore(session_factory)
    else:
        LOGGER.info("No database configured; using in-memory stores")
        vehicles = InMemoryVehicleStore()
        jobs = InMemoryJobStore()

    scheduler = JobScheduler(jobs, grace_window=timedelta(seconds=config.sweep.grace_window))
    gate = DedupGate(vehicles)
    registry = ScraperRegistry(ScraperContext(loader=loader, config=config, prober=fetcher, fetcher=fetcher))
    orchestrator = SyncOrchestrator(registry, gate, scheduler, config=config, sleep=sleep)

    return SyncRuntime(
        config=config,
        fetcher=fetcher,
        loader=loader,
        vehicles=vehicles,
        jobs=jobs,
        scheduler=scheduler,
        gate=gate,
        registry=registry,
        orchestrator=orchestrator,
        _closers=closers,
    )
