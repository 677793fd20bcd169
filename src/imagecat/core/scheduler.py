"""
Scheduler Trigger - Periodic tick that keeps the catalog fresh.

The crawl alternates between two phases:

    CRAWLING --(cursor passes lastPage / empty page at lastPage)--> COMPLETE
    COMPLETE --(cronTicks reaches threshold: full-cycle reset)----> CRAWLING

While COMPLETE, batches are no-ops and the tick counter acts as a cooldown.
The reset restarts the walk from page 1 because the upstream listing is
alphabetical: new images can appear on any page, not only after the end.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import structlog


class CrawlPhase(Enum):
    """Named crawl states"""
    CRAWLING = "crawling"
    COMPLETE = "complete"


def crawl_phase(snapshot) -> CrawlPhase:
    return CrawlPhase.COMPLETE if snapshot.complete else CrawlPhase.CRAWLING


def should_reset(ticks: int, threshold: int) -> bool:
    """True when the tick counter has reached the full-cycle reset threshold"""
    return ticks >= threshold


def cooldown_remaining(ticks: int, threshold: int) -> int:
    """Ticks left before the next full-cycle reset"""
    return max(0, threshold - ticks)


@dataclass
class TickResult:
    """Outcome of one scheduler tick"""
    ticks: int
    reset: bool
    phase: CrawlPhase
    batch: Any = None  # BatchResult of the batch run in this tick

    def to_dict(self) -> dict:
        return {
            "cronTicks": self.ticks,
            "reset": self.reset,
            "phase": self.phase.value,
            "batch": self.batch.to_dict() if self.batch is not None else None,
        }


class Scheduler:
    """
    Drives the crawl engine on a fixed interval.

    Example:
        >>> scheduler = Scheduler(engine)
        >>> await scheduler.tick()              # one invocation
        >>> await scheduler.run_forever(60.0)   # one tick per minute
    """

    def __init__(
        self,
        engine,
        threshold: Optional[int] = None,
        batch_steps: Optional[int] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            engine: CrawlEngine to drive
            threshold: Ticks between full-cycle resets (settings default if None)
            batch_steps: Pages per tick (settings default if None)
        """
        self.engine = engine
        self.threshold = threshold or engine.settings.reset_threshold
        self.batch_steps = batch_steps or engine.settings.batch_pages_default
        self.tick_count = 0

        self.logger = structlog.get_logger(__name__)

    async def tick(self) -> TickResult:
        """
        One scheduler invocation: bump the counter, reset if due, run a batch.

        Raises:
            StorageUnavailable: If the snapshot cannot be loaded or saved
            MalformedSnapshot: If the persisted snapshot is unparsable
        """
        store = self.engine.store

        async with self.engine.exclusive():
            snapshot = await store.aload()
            snapshot.cron_ticks += 1
            reset = should_reset(snapshot.cron_ticks, self.threshold)

            if reset:
                snapshot.restart()
                snapshot.cron_ticks = 0
                self.logger.info("full_cycle_reset", total=snapshot.total)

            await store.asave(snapshot)
            ticks = snapshot.cron_ticks

        batch = await self.engine.run_batch(self.batch_steps)
        phase = CrawlPhase.COMPLETE if batch.reached_end else CrawlPhase.CRAWLING
        self.tick_count += 1

        self.logger.info(
            "tick_complete",
            cron_ticks=ticks,
            reset=reset,
            phase=phase.value,
            cooldown=cooldown_remaining(ticks, self.threshold) if batch.reached_end else None,
            crawled_pages=batch.crawled_pages,
            added_items=batch.added_items,
        )

        return TickResult(ticks=ticks, reset=reset, phase=phase, batch=batch)

    async def run_forever(
        self,
        interval: Optional[float] = None,
        max_ticks: Optional[int] = None,
    ):
        """
        Tick on a fixed interval until cancelled (or ``max_ticks`` ticks ran).

        A failing tick is logged and skipped; the next tick is the retry.
        Cancellation stops the loop.
        """
        interval = interval or self.engine.settings.tick_interval
        ran = 0

        self.logger.info("scheduler_started", interval=interval, threshold=self.threshold)

        while max_ticks is None or ran < max_ticks:
            started = time.monotonic()
            try:
                await self.tick()
            except Exception as e:
                self.logger.error("tick_failed", error=str(e), exc_info=True)
            ran += 1

            if max_ticks is not None and ran >= max_ticks:
                break
            await asyncio.sleep(max(0.0, interval - (time.monotonic() - started)))

        self.logger.info("scheduler_stopped", ticks=ran)
