"""
Read path - Pagination and wildcard search over an already loaded item list.
"""

from typing import Any, Iterable, List, Optional

from ..crawler.slugs import Item, item_sort_key


def clamp_int(value: Any, minimum: int, maximum: int, default: Optional[int]) -> Optional[int]:
    """
    Parse ``value`` as an integer and clamp it into [minimum, maximum].

    Unparsable values (None, "", "abc", 1.5) yield ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        number = value
    else:
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            return default
    return max(minimum, min(maximum, number))


def match_slug(slug: str, query: str) -> bool:
    """
    Wildcard match, case-insensitive.

    ``term`` exact, ``term*`` prefix, ``*term`` suffix, ``*term*`` contains.
    """
    slug = slug.lower()
    query = query.lower()

    if len(query) >= 2 and query.startswith("*") and query.endswith("*"):
        return query[1:-1] in slug
    if query.startswith("*"):
        return slug.endswith(query[1:])
    if query.endswith("*"):
        return slug.startswith(query[:-1])
    return slug == query


def paginate(items: List[Item], page: int, size: int) -> List[Item]:
    start = (page - 1) * size
    return items[start:start + size]


def sorted_items(items: Iterable[Item]) -> List[Item]:
    return sorted(items, key=item_sort_key)


def search_items(items: Iterable[Item], query: str) -> List[Item]:
    """Sorted items whose name matches ``query``; a blank query matches nothing"""
    query = (query or "").strip().lower()
    if not query:
        return []
    return sorted_items(item for item in items if match_slug(item.name, query))
