"""
API module - HTTP read and admin endpoints over the crawl engine.
"""

from .server import create_app, ENDPOINTS


__all__ = [
    "create_app",
    "ENDPOINTS",
]
