"""
Core module - Snapshot state machine, persistence and scheduling.

This package contains the components that own the crawl state.
"""

from .errors import (
    CatalogError,
    ValidationError,
    StorageUnavailable,
    MalformedSnapshot,
    UpstreamFetchFailure,
)
from .rate_limiter import AdaptiveRateLimiter, RateLimitConfig
from .config import CatalogSettings, load_settings
from .snapshot import Snapshot, RepairReport, repair_items
from .store import SnapshotStore, FileSnapshotStore, MemorySnapshotStore
from .scheduler import Scheduler, TickResult, CrawlPhase, should_reset
from .engine import CrawlEngine, BatchResult


__all__ = [
    # Errors
    "CatalogError",
    "ValidationError",
    "StorageUnavailable",
    "MalformedSnapshot",
    "UpstreamFetchFailure",
    # Rate limiting
    "AdaptiveRateLimiter",
    "RateLimitConfig",
    # Settings
    "CatalogSettings",
    "load_settings",
    # Snapshot and storage
    "Snapshot",
    "RepairReport",
    "repair_items",
    "SnapshotStore",
    "FileSnapshotStore",
    "MemorySnapshotStore",
    # Crawl engine and scheduler
    "CrawlEngine",
    "BatchResult",
    "Scheduler",
    "TickResult",
    "CrawlPhase",
    "should_reset",
]
