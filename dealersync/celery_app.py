"""Celery application setup for the sync task queue."""

from __future__ import annotations

import os
from typing import Optional

from celery import Celery

from .config import SweepConfig, _env_bool, _env_float


def _sqla_broker_from_db(db_url: Optional[str]) -> Optional[str]:
    if not db_url:
        return None
    return db_url if db_url.startswith("sqla+") else f"sqla+{db_url}"


def _db_backend_from_db(db_url: Optional[str]) -> Optional[str]:
    if not db_url:
        return None
    return db_url if db_url.startswith("db+") else f"db+{db_url}"


def create_celery_app() -> Celery:
    """Instantiate the Celery app with environment driven configuration."""

    env = os.environ
    db_url = env.get("DEALERSYNC_DATABASE_URL")
    broker_url = env.get("DEALERSYNC_CELERY_BROKER_URL") or _sqla_broker_from_db(db_url) or "memory://"
    backend_url = env.get("DEALERSYNC_CELERY_RESULT_BACKEND") or _db_backend_from_db(db_url) or "cache+memory://"

    defaults = SweepConfig()
    sweep_interval = _env_float(env, "DEALERSYNC_SWEEP_INTERVAL", defaults.sweep_interval)
    due_interval = _env_float(env, "DEALERSYNC_DUE_POLL_INTERVAL", defaults.due_poll_interval)

    app = Celery("dealersync", broker=broker_url, backend=backend_url, include=["dealersync.tasks"])
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_always_eager=_env_bool(env, "DEALERSYNC_CELERY_TASK_ALWAYS_EAGER", True),
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        beat_schedule={
            "sweep-stuck-jobs": {
                "task": "dealersync.sweep_stuck_jobs",
                "schedule": sweep_interval,
            },
            "run-due-jobs": {
                "task": "dealersync.run_due_jobs",
                "schedule": due_interval,
            },
        },
    )
    return app


celery_app = create_celery_app()


__all__ = ["celery_app", "create_celery_app"]
