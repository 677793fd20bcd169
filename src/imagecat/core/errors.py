"""
Catalog errors - Exception hierarchy shared by the store, engine and API.
"""

from typing import Optional


class CatalogError(Exception):
    """Base exception for catalog errors"""
    pass


class ValidationError(CatalogError):
    """Raised when administrative input is malformed (nothing is mutated)"""
    pass


class StorageUnavailable(CatalogError):
    """Raised when the snapshot cannot be read from or written to storage"""
    pass


class MalformedSnapshot(CatalogError):
    """Raised when the persisted snapshot cannot be parsed at all"""
    pass


class UpstreamFetchFailure(CatalogError):
    """Raised when a directory page fetch fails or returns non-success"""

    def __init__(self, page: int, status: Optional[int] = None, reason: str = ""):
        self.page = page
        self.status = status
        self.reason = reason
        detail = f"status {status}" if status is not None else (reason or "request failed")
        super().__init__(f"Failed to fetch directory page {page}: {detail}")
