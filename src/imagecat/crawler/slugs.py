"""
Slug Extractor - Turns directory page markup into validated image Items.

Every directory page lists image cards whose anchors point at
``/directory/image/<slug>``. The cards also carry badge links and labels
("latest", "fips", ...) that look like slugs but are not images, so every
candidate is normalized and validated before it becomes an Item.

This module has no network or persistence side effects.
"""

import html
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, unquote


DEFAULT_ORIGIN = "https://images.chainguard.dev"
IMAGE_PATH = "/directory/image/"

# Plus signs are legal (e.g. libstdc++)
SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9._+\-]*$")

# Badge and label tokens rendered next to real image links
DENYLIST = frozenset({
    "fips", "free", "validated", "hardened", "stig",
    "latest", "changed", "last", "tag",
})

_ANCHOR_RE = re.compile(r"""<a\b[^>]*?\bhref\s*=\s*(["'])(.*?)\1""", re.IGNORECASE | re.DOTALL)
_IMAGE_SEGMENT_RE = re.compile(r"/directory/image/([^/?#\"'\s<>]+)")


class RejectReason(Enum):
    """Why a candidate slug was not accepted"""
    MISSING = "missing"
    GRAMMAR = "grammar"
    DENYLISTED = "denylisted"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class Valid:
    """Candidate accepted; ``slug`` is the normalized form"""
    slug: str


@dataclass(frozen=True)
class Rejected:
    """Candidate refused for ``reason``"""
    reason: RejectReason
    candidate: Optional[str] = None


SlugCheck = Union[Valid, Rejected]


@dataclass(frozen=True)
class Item:
    """A catalog entry. ``url`` is always derived from ``name``."""
    name: str
    url: str

    @classmethod
    def for_slug(cls, slug: str, origin: str = DEFAULT_ORIGIN) -> "Item":
        return cls(name=slug, url=image_url(slug, origin))

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "url": self.url}


def image_url(slug: str, origin: str = DEFAULT_ORIGIN) -> str:
    """Canonical detail URL for ``slug`` (every reserved character encoded)"""
    return f"{origin.rstrip('/')}{IMAGE_PATH}{quote(slug, safe='')}"


def normalize_slug(candidate: str) -> str:
    return unquote(candidate).lower()


def check_slug(candidate: Any) -> SlugCheck:
    """
    Normalize and validate one candidate slug.

    Args:
        candidate: Raw value (path segment, stored name, ...)

    Returns:
        Valid(slug) or Rejected(reason)
    """
    if not isinstance(candidate, str) or not candidate:
        return Rejected(RejectReason.MISSING)

    slug = normalize_slug(candidate)
    if not SLUG_RE.match(slug):
        return Rejected(RejectReason.GRAMMAR, slug)
    if slug in DENYLIST:
        return Rejected(RejectReason.DENYLISTED, slug)
    return Valid(slug)


def is_valid_slug(candidate: Any) -> bool:
    return isinstance(check_slug(candidate), Valid)


def segment_from_url(url: Any) -> Optional[str]:
    """Raw path segment following ``/directory/image/`` in ``url``, if any"""
    if not isinstance(url, str) or not url:
        return None
    match = _IMAGE_SEGMENT_RE.search(url)
    return match.group(1) if match else None


def slug_from_url(url: Any) -> Optional[str]:
    """Validated slug referenced by ``url`` or None"""
    check = check_slug(segment_from_url(url))
    return check.slug if isinstance(check, Valid) else None


def extract_items(markup: str, origin: str = DEFAULT_ORIGIN) -> List[Item]:
    """
    Extract the image Items listed on one directory page.

    Args:
        markup: Raw HTML of the page
        origin: Origin used to build each Item's canonical URL

    Returns:
        Items ordered by first occurrence, without duplicates
    """
    items: List[Item] = []
    seen = set()

    for match in _ANCHOR_RE.finditer(markup or ""):
        slug = slug_from_url(html.unescape(match.group(2)))
        if slug is None or slug in seen:
            continue
        seen.add(slug)
        items.append(Item.for_slug(slug, origin))

    return items


def item_sort_key(item: Item):
    """Case-insensitive lexicographic order, ties broken by the raw name"""
    return (item.name.casefold(), item.name)
