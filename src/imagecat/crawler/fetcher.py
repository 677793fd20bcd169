"""
Page Fetcher - Retrieves raw directory pages from the upstream origin.

The crawl engine only needs ``async fetch(page) -> str``. Any non-success
(non-2xx status, connection error, timeout) raises UpstreamFetchFailure so
the engine can tell a failed page apart from a genuinely empty one.

HttpPageFetcher adds:
1. A total request timeout per page
2. Adaptive spacing between sequential requests (AdaptiveRateLimiter)
3. A short-lived in-process cache so re-walks within the TTL do not hit upstream
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import aiohttp
import structlog

from ..core.errors import UpstreamFetchFailure
from ..core.rate_limiter import AdaptiveRateLimiter
from .slugs import DEFAULT_ORIGIN


class PageFetcher(ABC):
    """Interface consumed by the crawl engine"""

    @abstractmethod
    async def fetch(self, page: int) -> str:
        """
        Fetch directory page ``page`` (1-based).

        Returns:
            Raw page markup

        Raises:
            UpstreamFetchFailure: On any non-success outcome
        """
        pass


class PageCache:
    """TTL cache of page markup keyed by URL"""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}

    def get(self, url: str) -> Optional[str]:
        entry = self._entries.get(url)
        if entry is None:
            return None
        expires, text = entry
        if self._clock() >= expires:
            del self._entries[url]
            return None
        return text

    def put(self, url: str, text: str):
        if self.ttl <= 0:
            return
        now = self._clock()
        self.purge(now)
        self._entries[url] = (now + self.ttl, text)

    def purge(self, now: Optional[float] = None) -> int:
        """Drop expired entries; returns how many were removed"""
        now = self._clock() if now is None else now
        expired = [url for url, (expires, _) in self._entries.items() if now >= expires]
        for url in expired:
            del self._entries[url]
        return len(expired)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class HttpPageFetcher(PageFetcher):
    """
    aiohttp-based fetcher for ``<origin><directory_path>/<page>``.

    Example:
        >>> async with HttpPageFetcher(origin="https://images.chainguard.dev") as fetcher:
        ...     markup = await fetcher.fetch(1)
    """

    def __init__(
        self,
        origin: str = DEFAULT_ORIGIN,
        directory_path: str = "/directory",
        timeout: float = 20.0,
        user_agent: str = "imagecat-builder/1.0",
        cache_ttl: float = 300.0,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            origin: Upstream origin (scheme + host)
            directory_path: Path prefix of the paginated listing
            timeout: Total timeout per request (seconds)
            user_agent: User-Agent header sent upstream
            cache_ttl: Seconds a fetched page stays cached (0 disables)
            rate_limiter: Spacing between requests (defaults if None)
        """
        self.origin = origin.rstrip("/")
        self.directory_path = "/" + directory_path.strip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self.cache = PageCache(cache_ttl)
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter()

        self.session: Optional[aiohttp.ClientSession] = None
        self.fetched_count = 0
        self.cache_hits = 0

        self.logger = structlog.get_logger(__name__)

    @classmethod
    def from_settings(cls, settings) -> "HttpPageFetcher":
        return cls(
            origin=settings.origin,
            directory_path=settings.directory_path,
            timeout=settings.request_timeout,
            user_agent=settings.user_agent,
            cache_ttl=settings.cache_ttl,
            rate_limiter=AdaptiveRateLimiter(settings.rate_limit_config()),
        )

    async def initialize(self):
        """Open the HTTP session"""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
            )

    async def close(self):
        """Close the HTTP session"""
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "HttpPageFetcher":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def page_url(self, page: int) -> str:
        return f"{self.origin}{self.directory_path}/{page}"

    async def fetch(self, page: int) -> str:
        if self.session is None:
            raise RuntimeError("Fetcher not initialized. Call initialize() first.")

        url = self.page_url(page)
        cached = self.cache.get(url)
        if cached is not None:
            self.cache_hits += 1
            self.logger.debug("page_cache_hit", page=page)
            return cached

        await self.rate_limiter.wait()
        started = time.monotonic()

        try:
            async with self.session.get(url) as response:
                if not 200 <= response.status < 300:
                    self.rate_limiter.on_error(response.status)
                    raise UpstreamFetchFailure(page, status=response.status)
                text = await response.text(errors="replace")

        except asyncio.TimeoutError as e:
            self.rate_limiter.on_error(None)
            raise UpstreamFetchFailure(page, reason="timeout") from e

        except aiohttp.ClientError as e:
            self.rate_limiter.on_error(None)
            raise UpstreamFetchFailure(page, reason=str(e) or type(e).__name__) from e

        self.rate_limiter.on_success()
        self.cache.put(url, text)
        self.fetched_count += 1

        self.logger.debug(
            "page_fetched",
            page=page,
            bytes=len(text),
            elapsed=f"{time.monotonic() - started:.2f}s",
        )
        return text

    def get_stats(self) -> dict:
        return {
            "fetched": self.fetched_count,
            "cache_hits": self.cache_hits,
            "cached_pages": len(self.cache),
            "rate_limiter": self.rate_limiter.get_stats(),
        }
