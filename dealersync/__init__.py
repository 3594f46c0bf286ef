"""Dealer listing scrape and inventory sync pipeline."""

from .orchestrator import BatchReport, SyncOrchestrator
from .runtime import SyncRuntime, build_runtime

__all__ = ["BatchReport", "SyncOrchestrator", "SyncRuntime", "build_runtime"]
