"""
Search, sort and pagination over in-memory lists of resource DTOs.

These run after the cache/provider read; the cached collection is always the
full unfiltered result, so nothing here may mutate its input.
"""

from typing import Optional, Sequence, TypeVar

from cloudnet.schemas.common import ListQuery, ResourceKind, SortOrder

T = TypeVar("T")

DEFAULT_LIMIT = 10
MAX_LIMIT = 100

SEARCH_FIELDS: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.VPC: ("name", "description", "id"),
    ResourceKind.SUBNET: ("name", "description", "cidr_block", "id"),
    ResourceKind.SECURITY_GROUP: ("name", "description", "id"),
}

# Public sort field -> candidate attribute names on the DTO
SORT_FIELDS: dict[str, tuple[str, ...]] = {
    "name": ("name",),
    "state": ("state",),
    "cidr_block": ("cidr_block", "cidr"),
    "created_at": ("creation_timestamp",),
}


def filter_items(items: list[T], search: str, fields: Sequence[str]) -> list[T]:
    """
    Keep items where any of *fields* contains *search* (case-insensitive).

    An empty search returns *items* itself, not a copy.
    """
    if not search:
        return items
    needle = search.lower()
    matched = []
    for item in items:
        for field in fields:
            value = getattr(item, field, None)
            if value and needle in str(value).lower():
                matched.append(item)
                break
    return matched


def _sort_value(item, attrs: tuple[str, ...]) -> str:
    for attr in attrs:
        value = getattr(item, attr, None)
        if value is not None:
            return str(getattr(value, "value", value)).lower()
    return ""


def sort_items(
    items: list[T], sort_by: Optional[str], order: SortOrder = SortOrder.ASC
) -> list[T]:
    """
    Stable sort by a named field.

    No *sort_by* keeps provider order; an unknown field sorts by ``name``
    ascending regardless of *order*.
    """
    if not sort_by:
        return items
    attrs = SORT_FIELDS.get(sort_by)
    if attrs is None:
        return sorted(items, key=lambda i: _sort_value(i, SORT_FIELDS["name"]))
    return sorted(
        items,
        key=lambda i: _sort_value(i, attrs),
        reverse=order == SortOrder.DESC,
    )


def normalize_page(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    if limit is None:
        limit = DEFAULT_LIMIT
    limit = max(1, min(limit, MAX_LIMIT))
    return page, limit


def paginate(items: list[T], page: Optional[int], limit: Optional[int]) -> list[T]:
    """Return one 1-indexed page; a page past the end is an empty list."""
    page, limit = normalize_page(page, limit)
    offset = (page - 1) * limit
    if offset >= len(items):
        return []
    return items[offset:offset + limit]


def apply_list_query(
    items: list[T], kind: ResourceKind, query: ListQuery
) -> tuple[list[T], int, int, int]:
    """
    Filter, sort and paginate *items*.

    Returns ``(page_items, total, page, limit)`` where ``total`` counts the
    filtered collection before pagination.
    """
    filtered = filter_items(items, query.search, SEARCH_FIELDS[kind])
    ordered = sort_items(filtered, query.sort_by, query.sort_order)
    page, limit = normalize_page(query.page, query.limit)
    return paginate(ordered, page, limit), len(filtered), page, limit
