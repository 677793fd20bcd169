"""
Catalog API - aiohttp.web front end for the crawl engine.

Public (read-only):
    GET  /v1/status
    GET  /v1/images?page=1&size=200
    GET  /v1/search?q=node*&page=1&size=50

Admin (POST, ``x-admin-key`` header must match the configured key):
    /admin/build?steps=5
    /admin/set-lastpage?value=278
    /admin/restart-crawl
    /admin/repair
    /admin/compact
    /admin/reset

Every response is JSON and carries permissive CORS headers.
"""

import asyncio
import contextlib
import hmac
import json
from functools import partial
from typing import Any, Dict, Optional

import structlog
from aiohttp import web

from ..core.engine import CrawlEngine
from ..core.errors import MalformedSnapshot, StorageUnavailable, ValidationError


ENGINE_KEY = web.AppKey("engine", CrawlEngine)
ADMIN_KEY = web.AppKey("admin_key", str)

ENDPOINTS = [
    "/v1/status",
    "/v1/images?page=1&size=200",
    "/v1/search?q=node&size=50",
    "POST /admin/build?steps=5",
    "POST /admin/set-lastpage?value=278",
    "POST /admin/restart-crawl",
    "POST /admin/repair",
    "POST /admin/compact",
    "POST /admin/reset",
]

CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "GET, POST, OPTIONS",
    "access-control-allow-headers": "Content-Type, x-admin-key",
}

logger = structlog.get_logger(__name__)


def json_response(body: Any, status: int = 200) -> web.Response:
    return web.json_response(body, status=status, dumps=partial(json.dumps, indent=2))


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers.update(CORS_HEADERS)
    return response


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return json_response({"error": "route not found"}, 404)
    except web.HTTPMethodNotAllowed:
        return json_response({"error": "use POST"}, 405)
    except ValidationError as e:
        return json_response({"error": str(e)}, 400)
    except StorageUnavailable as e:
        logger.error("storage_unavailable", path=request.path, error=str(e))
        return json_response({"error": str(e)}, 503)
    except MalformedSnapshot as e:
        logger.error("malformed_snapshot", path=request.path, error=str(e))
        return json_response({"error": str(e)}, 500)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception("request_failed", path=request.path, error=str(e))
        return json_response({"error": str(e) or type(e).__name__}, 500)


def is_admin(request: web.Request) -> bool:
    expected = request.app[ADMIN_KEY]
    provided = request.headers.get("x-admin-key", "")
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def admin_only(handler):
    async def wrapper(request: web.Request) -> web.Response:
        if not is_admin(request):
            logger.warning("admin_forbidden", path=request.path, remote=request.remote)
            return json_response({"error": "forbidden"}, 403)
        return await handler(request)
    wrapper.__name__ = handler.__name__
    return wrapper


def _items(items) -> Dict[str, Any]:
    return {"items": [item.to_dict() for item in items]}


# ---- Public ----

async def index(request: web.Request) -> web.Response:
    return json_response({"ok": True, "endpoints": ENDPOINTS})


async def status(request: web.Request) -> web.Response:
    return json_response(await asyncio.to_thread(request.app[ENGINE_KEY].status))


async def images(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    items = await asyncio.to_thread(
        engine.list_items,
        request.query.get("page"),
        request.query.get("size"),
    )
    return json_response(_items(items))


async def search(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    items = await asyncio.to_thread(
        engine.search,
        request.query.get("q", ""),
        request.query.get("page"),
        request.query.get("size"),
    )
    return json_response(_items(items))


# ---- Admin ----

@admin_only
async def build(request: web.Request) -> web.Response:
    result = await request.app[ENGINE_KEY].run_batch(request.query.get("steps"))
    return json_response(result.to_dict())


@admin_only
async def set_last_page(request: web.Request) -> web.Response:
    value = request.query.get("value")
    if not value:
        raise ValidationError("missing or invalid ?value=")
    return json_response(await request.app[ENGINE_KEY].set_last_page(value))


@admin_only
async def restart_crawl(request: web.Request) -> web.Response:
    return json_response(await request.app[ENGINE_KEY].restart_crawl())


@admin_only
async def repair(request: web.Request) -> web.Response:
    return json_response(await request.app[ENGINE_KEY].repair())


@admin_only
async def compact(request: web.Request) -> web.Response:
    return json_response(await request.app[ENGINE_KEY].compact())


@admin_only
async def reset(request: web.Request) -> web.Response:
    return json_response(await request.app[ENGINE_KEY].reset())


def create_app(
    engine: CrawlEngine,
    admin_key: Optional[str] = None,
    fetcher=None,
    scheduler=None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        engine: Crawl engine serving every route
        admin_key: Shared secret for admin routes (admin disabled if None)
        fetcher: HttpPageFetcher whose session is opened/closed with the app
        scheduler: Scheduler to run in the background while the app is up
    """
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app[ENGINE_KEY] = engine
    app[ADMIN_KEY] = admin_key or ""

    app.router.add_get("/", index)
    app.router.add_get("/v1/status", status)
    app.router.add_get("/v1/images", images)
    app.router.add_get("/v1/search", search)
    app.router.add_post("/admin/build", build)
    app.router.add_post("/admin/set-lastpage", set_last_page)
    app.router.add_post("/admin/restart-crawl", restart_crawl)
    app.router.add_post("/admin/repair", repair)
    app.router.add_post("/admin/compact", compact)
    app.router.add_post("/admin/reset", reset)

    if fetcher is not None:
        async def fetcher_session(app: web.Application):
            await fetcher.initialize()
            yield
            await fetcher.close()

        app.cleanup_ctx.append(fetcher_session)

    if scheduler is not None:
        async def background_scheduler(app: web.Application):
            task = asyncio.create_task(scheduler.run_forever())
            yield
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        app.cleanup_ctx.append(background_scheduler)

    if not admin_key:
        logger.warning("admin_routes_disabled", reason="no admin key configured")

    return app
