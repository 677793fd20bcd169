"""
Snapshot - The single persisted aggregate of crawl progress and items.

The persisted JSON shape is a compatibility surface:

    {
      "items": [{"name": "nginx", "url": ".../directory/image/nginx"}, ...],
      "cursor": 3,
      "lastPage": 278,
      "complete": false,
      "lastUpdated": 1735689600,
      "cronTicks": 12
    }

Any reader must tolerate missing or ill-typed fields, so parsing goes through
SnapshotDocument (which defaults every scalar) and then the repair pass
(which revalidates every item).
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..crawler.slugs import (
    DEFAULT_ORIGIN,
    Item,
    RejectReason,
    Valid,
    check_slug,
    item_sort_key,
    slug_from_url,
)
from .errors import MalformedSnapshot


def epoch() -> int:
    return int(time.time())


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class SnapshotDocument(BaseModel):
    """Lenient view of a persisted snapshot; every scalar falls back to its default"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    items: List[Any] = Field(default_factory=list)
    cursor: int = 1
    last_page: Optional[int] = Field(None, alias="lastPage")
    complete: bool = False
    last_updated: Optional[int] = Field(None, alias="lastUpdated")
    cron_ticks: int = Field(0, alias="cronTicks")

    @field_validator("items", mode="before")
    @classmethod
    def _default_items(cls, value):
        return value if isinstance(value, list) else []

    @field_validator("cursor", mode="before")
    @classmethod
    def _default_cursor(cls, value):
        number = _as_int(value)
        return number if number is not None and number >= 1 else 1

    @field_validator("last_page", mode="before")
    @classmethod
    def _default_last_page(cls, value):
        number = _as_int(value)
        return number if number is not None and number >= 1 else None

    @field_validator("complete", mode="before")
    @classmethod
    def _default_complete(cls, value):
        return value is True

    @field_validator("last_updated", mode="before")
    @classmethod
    def _default_last_updated(cls, value):
        number = _as_int(value)
        return number if number is not None and number > 0 else None

    @field_validator("cron_ticks", mode="before")
    @classmethod
    def _default_cron_ticks(cls, value):
        number = _as_int(value)
        return number if number is not None and number >= 0 else 0


@dataclass
class RepairReport:
    """Outcome of one repair pass: survivors plus drop counts by reason"""
    kept: int = 0
    dropped: Counter = field(default_factory=Counter)

    @property
    def total_dropped(self) -> int:
        return sum(self.dropped.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kept": self.kept,
            "dropped": self.total_dropped,
            "by_reason": {reason: count for reason, count in sorted(self.dropped.items())},
        }


def repair_items(
    raw_items: Iterable[Any],
    origin: str = DEFAULT_ORIGIN,
) -> Tuple[List[Item], RepairReport]:
    """
    Revalidate persisted items.

    The slug is taken from the stored URL when that yields a valid slug,
    otherwise from the stored name. Items failing validation and duplicates
    after normalization are dropped. Never raises.

    Args:
        raw_items: Persisted item entries (dicts, Items or junk)
        origin: Origin for the re-derived canonical URLs

    Returns:
        (sorted surviving Items, RepairReport)
    """
    report = RepairReport()
    survivors: List[Item] = []
    seen: Set[str] = set()

    for raw in raw_items:
        if isinstance(raw, Item):
            url, name = raw.url, raw.name
        elif isinstance(raw, dict):
            url, name = raw.get("url"), raw.get("name")
        else:
            report.dropped[RejectReason.MISSING.value] += 1
            continue

        slug = slug_from_url(url)
        if slug is None:
            check = check_slug(name)
            if not isinstance(check, Valid):
                report.dropped[check.reason.value] += 1
                continue
            slug = check.slug

        if slug in seen:
            report.dropped[RejectReason.DUPLICATE.value] += 1
            continue

        seen.add(slug)
        survivors.append(Item.for_slug(slug, origin))

    survivors.sort(key=item_sort_key)
    report.kept = len(survivors)
    return survivors, report


@dataclass
class Snapshot:
    """
    Crawl progress plus the discovered items.

    ``seen`` is a derived index over ``items`` and is never persisted.
    """
    items: List[Item] = field(default_factory=list)
    cursor: int = 1
    last_page: Optional[int] = None
    complete: bool = False
    last_updated: int = field(default_factory=epoch)
    cron_ticks: int = 0
    seen: Set[str] = field(default_factory=set, repr=False, compare=False)

    def __post_init__(self):
        if not self.seen:
            self.seen = {item.name for item in self.items}

    @classmethod
    def fresh(cls) -> "Snapshot":
        return cls()

    @classmethod
    def from_document(
        cls,
        data: Any,
        origin: str = DEFAULT_ORIGIN,
    ) -> Tuple["Snapshot", RepairReport]:
        """
        Build a repaired snapshot from parsed JSON.

        Raises:
            MalformedSnapshot: If ``data`` is not a JSON object
        """
        if not isinstance(data, dict):
            raise MalformedSnapshot(
                f"Snapshot must be a JSON object, got {type(data).__name__}"
            )

        try:
            document = SnapshotDocument.model_validate(data)
        except pydantic.ValidationError as e:
            raise MalformedSnapshot(f"Snapshot has an unusable shape: {e}") from e

        items, report = repair_items(document.items, origin)
        snapshot = cls(
            items=items,
            cursor=document.cursor,
            last_page=document.last_page,
            complete=document.complete,
            last_updated=document.last_updated or epoch(),
            cron_ticks=document.cron_ticks,
        )
        return snapshot, report

    @property
    def total(self) -> int:
        return len(self.items)

    def add_item(self, item: Item) -> bool:
        """
        Insert ``item`` unless its name is already known.

        Returns:
            True if added (new), False if duplicate
        """
        if item.name in self.seen:
            return False
        self.seen.add(item.name)
        self.items.append(item)
        return True

    def sort_items(self):
        self.items.sort(key=item_sort_key)

    def repair(self, origin: str = DEFAULT_ORIGIN) -> RepairReport:
        """Run the repair pass over the in-memory items"""
        self.items, report = repair_items(self.items, origin)
        self.seen = {item.name for item in self.items}
        return report

    def restart(self):
        """Re-walk from page 1 keeping every known item"""
        self.cursor = 1
        self.complete = False

    def status(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "cursor": self.cursor,
            "complete": self.complete,
            "lastPage": self.last_page,
            "lastUpdated": self.last_updated,
            "cronTicks": self.cron_ticks,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Persisted representation"""
        return {
            "items": [item.to_dict() for item in self.items],
            "cursor": self.cursor,
            "lastPage": self.last_page,
            "complete": self.complete,
            "lastUpdated": self.last_updated,
            "cronTicks": self.cron_ticks,
        }
