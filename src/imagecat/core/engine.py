"""
Crawl Engine - Incremental, bounded-batch crawl of the image directory.

The engine advances a cursor over directory pages a few pages at a time,
merges the discovered items into the snapshot and detects when the listing
has been fully walked. It also hosts the administrative mutators and the
read operations used by the API and CLI.

Persistence model:
    Every operation is an explicit load -> mutate -> save cycle against the
    store passed in. Inside one process all such cycles run under a single
    asyncio.Lock, so an admin call cannot interleave with a scheduler tick.
    Loads and saves run on a worker thread (store.aload/asave).
    Two processes sharing one snapshot file are not coordinated; the later
    write wins.

Batch failure policy:
    Pages are merged into the in-memory snapshot one by one and the snapshot
    is saved once when the batch ends. A failed page fetch is retried
    ``fetch_retries`` times, then counted as a failed page with zero items
    and skipped. A failure on or past the known last page ends the batch
    with the cursor left on that page, so completion is never concluded
    from a failed fetch. Any other error (or cancellation)
    propagates and nothing from that batch is persisted; the next run
    resumes from the last saved cursor.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ..crawler.slugs import Item, extract_items
from .config import CatalogSettings
from .errors import UpstreamFetchFailure, ValidationError
from .query import clamp_int, paginate, search_items, sorted_items
from .scheduler import crawl_phase
from .snapshot import Snapshot
from .store import SnapshotStore


LAST_PAGE_MAX = 100000


@dataclass
class BatchResult:
    """Summary of one run_batch() call"""
    crawled_pages: int
    added_items: int
    reached_end: bool
    next_cursor: int
    total: int
    last_page: Optional[int]
    failed_pages: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "crawledPages": self.crawled_pages,
            "addedItems": self.added_items,
            "failedPages": list(self.failed_pages),
            "reachedEnd": self.reached_end,
            "nextCursor": self.next_cursor,
            "total": self.total,
            "lastPage": self.last_page,
        }


class CrawlEngine:
    """
    Bounded-batch crawler over a persisted snapshot.

    Example:
        >>> engine = CrawlEngine(store=FileSnapshotStore(path), fetcher=fetcher)
        >>> result = await engine.run_batch(steps=5)
        >>> print(result.added_items, result.next_cursor)
    """

    def __init__(
        self,
        store: SnapshotStore,
        fetcher,
        settings: Optional[CatalogSettings] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Snapshot store (the only persisted state)
            fetcher: Object with ``async fetch(page: int) -> str`` raising UpstreamFetchFailure
            settings: Runtime settings (defaults if None)
        """
        self.store = store
        self.fetcher = fetcher
        self.settings = settings or CatalogSettings()
        self._lock = asyncio.Lock()

        self.logger = structlog.get_logger(__name__)

    def exclusive(self) -> asyncio.Lock:
        """Lock guarding every load-modify-save cycle in this process"""
        return self._lock

    def clamp_steps(self, steps: Any) -> int:
        limit = self.settings.max_batch_steps
        return clamp_int(steps, 1, limit, min(self.settings.batch_pages_default, limit))

    # ------------------------------------------------------------------
    # Crawling
    # ------------------------------------------------------------------

    async def run_batch(self, steps: Any = None) -> BatchResult:
        """
        Fetch up to ``steps`` pages from the cursor and merge their items.

        Args:
            steps: Page budget, clamped to [1, max_batch_steps]

        Returns:
            BatchResult for this call

        Raises:
            StorageUnavailable: If the snapshot cannot be loaded or saved
            MalformedSnapshot: If the persisted snapshot is unparsable
        """
        steps = self.clamp_steps(steps)
        async with self._lock:
            return await self._run_batch(steps)

    async def _run_batch(self, steps: int) -> BatchResult:
        snapshot = await self.store.aload()

        if snapshot.complete:
            self.logger.debug("batch_skipped_complete", cursor=snapshot.cursor)
            return BatchResult(
                crawled_pages=0,
                added_items=0,
                reached_end=True,
                next_cursor=snapshot.cursor,
                total=snapshot.total,
                last_page=snapshot.last_page,
            )

        cap = self.settings.max_pages_cap
        hard_stop = min(snapshot.last_page or cap, cap)
        page = max(1, snapshot.cursor)
        start = page
        crawled_pages = 0
        added_items = 0
        failed_pages: List[int] = []

        self.logger.info(
            "batch_started",
            cursor=page,
            steps=steps,
            hard_stop=hard_stop,
            last_page=snapshot.last_page,
        )

        while crawled_pages < steps and page <= hard_stop:
            items = await self._fetch_page_items(page)
            crawled_pages += 1

            if items is None:
                failed_pages.append(page)
                if snapshot.last_page and page >= snapshot.last_page:
                    # Keep the cursor on the boundary page so the next batch retries it
                    break
                page += 1
                continue

            if not items:
                if snapshot.last_page and page >= snapshot.last_page:
                    snapshot.complete = True
                    page += 1
                    break
                self.logger.info("empty_page", page=page)
                page += 1
                continue

            added = sum(1 for item in items if snapshot.add_item(item))
            added_items += added
            self.logger.debug("page_merged", page=page, found=len(items), added=added)
            page += 1

        if snapshot.last_page and page > snapshot.last_page:
            snapshot.complete = True

        snapshot.cursor = page
        snapshot.sort_items()
        await self.store.asave(snapshot)

        result = BatchResult(
            crawled_pages=crawled_pages,
            added_items=added_items,
            reached_end=snapshot.complete,
            next_cursor=snapshot.cursor,
            total=snapshot.total,
            last_page=snapshot.last_page,
            failed_pages=failed_pages,
        )

        self.logger.info(
            "batch_complete",
            pages=f"{start}-{page - 1}" if crawled_pages else "none",
            crawled_pages=crawled_pages,
            added_items=added_items,
            failed_pages=len(failed_pages),
            reached_end=result.reached_end,
            next_cursor=result.next_cursor,
            total=result.total,
        )

        return result

    async def _fetch_page_items(self, page: int) -> Optional[List[Item]]:
        """
        Fetch and extract one page.

        Returns:
            Items on the page ([] for a confirmed empty page), or None if every
            attempt failed
        """
        attempts = 1 + self.settings.fetch_retries

        for attempt in range(1, attempts + 1):
            try:
                markup = await self.fetcher.fetch(page)
            except UpstreamFetchFailure as e:
                self.logger.warning(
                    "page_fetch_failed",
                    page=page,
                    attempt=attempt,
                    attempts=attempts,
                    status=e.status,
                    error=str(e),
                )
                continue

            return extract_items(markup, self.settings.origin)

        return None

    # ------------------------------------------------------------------
    # Administrative mutators
    # ------------------------------------------------------------------

    async def set_last_page(self, value: Any) -> Dict[str, Any]:
        """
        Record the known last page; completes the crawl if the cursor is past it.

        Raises:
            ValidationError: If ``value`` is not an integer in [1, 100000]
        """
        last_page = self._parse_last_page(value)

        async with self._lock:
            snapshot = await self.store.aload()
            snapshot.last_page = last_page
            if snapshot.cursor > last_page:
                snapshot.complete = True
            await self.store.asave(snapshot)

        self.logger.info(
            "last_page_set",
            last_page=last_page,
            cursor=snapshot.cursor,
            complete=snapshot.complete,
        )
        return {
            "ok": True,
            "lastPage": snapshot.last_page,
            "cursor": snapshot.cursor,
            "complete": snapshot.complete,
        }

    @staticmethod
    def _parse_last_page(value: Any) -> int:
        if isinstance(value, bool) or value is None:
            raise ValidationError("missing or invalid last page value")
        if isinstance(value, int):
            number = value
        else:
            try:
                number = int(str(value).strip())
            except ValueError:
                raise ValidationError(f"last page must be an integer, got {value!r}")
        # Rejected rather than clamped: a typo like 0 must not silently become page 1
        if not 1 <= number <= LAST_PAGE_MAX:
            raise ValidationError(f"last page must be between 1 and {LAST_PAGE_MAX}, got {number}")
        return number

    async def restart_crawl(self) -> Dict[str, Any]:
        """Reset the cursor to page 1 keeping every known item"""
        async with self._lock:
            snapshot = await self.store.aload()
            snapshot.restart()
            await self.store.asave(snapshot)

        self.logger.info("crawl_restarted", total=snapshot.total)
        return {
            "ok": True,
            "cursor": snapshot.cursor,
            "complete": snapshot.complete,
            "lastPage": snapshot.last_page,
        }

    async def repair(self) -> Dict[str, Any]:
        """Revalidate every item and persist the repaired snapshot"""
        async with self._lock:
            snapshot = await self.store.aload()
            report = self.store.last_repair
            snapshot.repair(self.settings.origin)
            await self.store.asave(snapshot)

        self.logger.info("snapshot_repair_persisted", total=snapshot.total)
        return {
            "ok": True,
            "total": snapshot.total,
            "repair": report.to_dict() if report else None,
        }

    async def compact(self) -> Dict[str, Any]:
        """Re-sort and persist without content changes"""
        async with self._lock:
            snapshot = await self.store.aload()
            snapshot.sort_items()
            await self.store.asave(snapshot)

        return {"ok": True, "total": snapshot.total}

    async def reset(self) -> Dict[str, Any]:
        """Discard everything and persist a fresh snapshot"""
        async with self._lock:
            await self.store.asave(Snapshot.fresh())

        self.logger.warning("snapshot_reset")
        return {"ok": True, "reset": True}

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        snapshot = self.store.load()
        status = snapshot.status()
        status["phase"] = crawl_phase(snapshot).value
        return status

    def list_items(self, page: Any = 1, size: Any = 200) -> List[Item]:
        """Page of items in case-insensitive lexicographic order"""
        page = clamp_int(page, 1, 10 ** 9, 1)
        size = clamp_int(size, 1, 1000, 200)
        snapshot = self.store.load()
        return paginate(sorted_items(snapshot.items), page, size)

    def search(self, query: str, page: Any = 1, size: Any = 50) -> List[Item]:
        """Page of items matching a wildcard query (term, term*, *term, *term*)"""
        if not (query or "").strip():
            return []
        page = clamp_int(page, 1, 10 ** 9, 1)
        size = clamp_int(size, 1, 200, 50)
        snapshot = self.store.load()
        return paginate(search_items(snapshot.items, query), page, size)
