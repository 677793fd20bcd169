"""
Unit tests for the HTTP page fetcher.

Serves directory pages from a local aiohttp test server.

Run with: pytest tests/unit/test_fetcher.py -v
"""

import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from imagecat.core.errors import UpstreamFetchFailure
from imagecat.core.rate_limiter import RateLimitConfig, AdaptiveRateLimiter
from imagecat.crawler.fetcher import HttpPageFetcher, PageCache
from conftest import directory_page


def upstream_app(hits):
    """Pages 1-2 list images, page 7 fails, page 9 hangs"""

    async def page(request: web.Request) -> web.Response:
        number = int(request.match_info["page"])
        hits.append(number)
        if number == 7:
            return web.Response(status=500, text="boom")
        if number == 9:
            await asyncio.sleep(1)
        if number == 404:
            raise web.HTTPNotFound()
        return web.Response(text=directory_page(f"image-{number}"), content_type="text/html")

    app = web.Application()
    app.router.add_get("/directory/{page}", page)
    return app


def make_fetcher(server: test_utils.TestServer, **kwargs) -> HttpPageFetcher:
    limiter = AdaptiveRateLimiter(RateLimitConfig(base_delay=0.0, min_delay=0.0, jitter_range=0.0))
    return HttpPageFetcher(
        origin=str(server.make_url("/")),
        rate_limiter=limiter,
        **kwargs,
    )


class TestHttpPageFetcher:
    """Test suite for HttpPageFetcher"""

    def test_page_url(self):
        fetcher = HttpPageFetcher(origin="https://images.example.dev/", directory_path="directory/")

        assert fetcher.page_url(3) == "https://images.example.dev/directory/3"

    @pytest.mark.asyncio
    async def test_fetch_requires_initialize(self):
        """Test fetch() refuses to run without a session"""
        fetcher = HttpPageFetcher()

        with pytest.raises(RuntimeError):
            await fetcher.fetch(1)

    @pytest.mark.asyncio
    async def test_fetch_success(self):
        hits = []
        async with test_utils.TestServer(upstream_app(hits)) as server:
            async with make_fetcher(server) as fetcher:
                markup = await fetcher.fetch(2)

        assert "/directory/image/image-2/overview" in markup
        assert hits == [2]
        assert fetcher.session is None

    @pytest.mark.asyncio
    async def test_server_error_raises_upstream_failure(self):
        """Test a 5xx response is a failure, not an empty page"""
        async with test_utils.TestServer(upstream_app([])) as server:
            async with make_fetcher(server) as fetcher:
                with pytest.raises(UpstreamFetchFailure) as exc_info:
                    await fetcher.fetch(7)

                assert fetcher.rate_limiter.error_count == 1

        assert exc_info.value.page == 7
        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_not_found_raises_upstream_failure(self):
        async with test_utils.TestServer(upstream_app([])) as server:
            async with make_fetcher(server) as fetcher:
                with pytest.raises(UpstreamFetchFailure) as exc_info:
                    await fetcher.fetch(404)

        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_timeout_raises_upstream_failure(self):
        async with test_utils.TestServer(upstream_app([])) as server:
            async with make_fetcher(server, timeout=0.2) as fetcher:
                with pytest.raises(UpstreamFetchFailure, match="timeout"):
                    await fetcher.fetch(9)

    @pytest.mark.asyncio
    async def test_connection_error_raises_upstream_failure(self):
        """Test an unreachable origin is reported as a failed page"""
        async with test_utils.TestServer(upstream_app([])) as server:
            origin = str(server.make_url("/"))

        async with HttpPageFetcher(origin=origin, timeout=2) as fetcher:
            with pytest.raises(UpstreamFetchFailure) as exc_info:
                await fetcher.fetch(1)

        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_cache_hit_skips_upstream(self):
        hits = []
        async with test_utils.TestServer(upstream_app(hits)) as server:
            async with make_fetcher(server, cache_ttl=60) as fetcher:
                first = await fetcher.fetch(1)
                second = await fetcher.fetch(1)

        assert first == second
        assert hits == [1]
        assert fetcher.get_stats()["cache_hits"] == 1
        assert fetcher.get_stats()["fetched"] == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self):
        hits = []
        async with test_utils.TestServer(upstream_app(hits)) as server:
            async with make_fetcher(server, cache_ttl=0) as fetcher:
                await fetcher.fetch(1)
                await fetcher.fetch(1)

        assert hits == [1, 1]


class TestPageCache:
    """Test suite for PageCache"""

    def test_entries_expire(self):
        now = [0.0]
        cache = PageCache(ttl=10, clock=lambda: now[0])
        cache.put("u", "markup")

        now[0] = 9.9
        assert cache.get("u") == "markup"

        now[0] = 10.0
        assert cache.get("u") is None
        assert len(cache) == 0

    def test_clear(self):
        cache = PageCache(ttl=10)
        cache.put("a", "1")
        cache.put("b", "2")

        cache.clear()

        assert len(cache) == 0

    def test_put_drops_expired_entries(self):
        """Test stale pages do not accumulate when their URL is never read again"""
        now = [0.0]
        cache = PageCache(ttl=10, clock=lambda: now[0])
        for page in range(100):
            cache.put(f"page-{page}", "markup")

        now[0] = 10.0
        cache.put("fresh", "markup")

        assert len(cache) == 1
        assert cache.get("fresh") == "markup"

    def test_purge(self):
        now = [0.0]
        cache = PageCache(ttl=10, clock=lambda: now[0])
        cache.put("a", "1")
        now[0] = 5.0
        cache.put("b", "2")

        now[0] = 12.0

        assert cache.purge() == 1
        assert cache.get("b") == "2"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
