"""
Crawler module - Directory page retrieval and slug extraction.

This package contains:
- HttpPageFetcher: Throttled, cached aiohttp fetcher for directory pages
- extract_items: Markup -> validated image Items
"""

from .slugs import Item, extract_items, check_slug, Valid, Rejected, RejectReason
from .fetcher import PageFetcher, HttpPageFetcher, PageCache


__all__ = [
    # Fetching
    "PageFetcher",
    "HttpPageFetcher",
    "PageCache",
    # Extraction
    "Item",
    "extract_items",
    "check_slug",
    "Valid",
    "Rejected",
    "RejectReason",
]
