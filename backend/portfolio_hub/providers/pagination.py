"""Cursor and page-number pagination helpers.

Both helpers accumulate every page before returning and fail fast: the first
page error propagates and no partial result is returned.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import parse_qs, urlsplit

from portfolio_hub.core.errors import ProviderError

CursorFetch = Callable[[str | None], Awaitable[Mapping[str, Any]]]
PageFetch = Callable[[int], Awaitable[Mapping[str, Any]]]


def cursor_from_path(next_path: str, cursor_param: str = "cursor") -> str | None:
    values = parse_qs(urlsplit(next_path).query).get(cursor_param)
    return values[0] if values else None


async def paginate_cursor(
    fetch_page: CursorFetch,
    *,
    items_field: str = "items",
    next_field: str = "nextPagePath",
    cursor_param: str = "cursor",
    provider: str | None = None,
) -> list[Any]:
    """Follow ``next_field`` links until a page omits them."""

    items: list[Any] = []
    seen: set[str] = set()
    cursor: str | None = None
    while True:
        page = await fetch_page(cursor)
        rows = page.get(items_field)
        if isinstance(rows, list):
            items.extend(rows)
        next_path = page.get(next_field)
        if not next_path:
            return items
        cursor = cursor_from_path(str(next_path), cursor_param)
        if cursor is None:
            raise ProviderError(f"Next page link has no {cursor_param} parameter", provider=provider)
        if cursor in seen:
            raise ProviderError(f"Pagination cursor {cursor!r} repeated", provider=provider)
        seen.add(cursor)


def _reported_total(page: Mapping[str, Any], total_field: str, page_number: int, provider: str | None) -> int | None:
    total = page.get(total_field)
    if total is None:
        return None
    try:
        return int(total)
    except (TypeError, ValueError):
        raise ProviderError(
            f"Page {page_number} reports a non-numeric {total_field}: {total!r}", provider=provider
        ) from None


async def paginate_pages(
    fetch_page: PageFetch,
    page_size: int,
    *,
    rows_field: str = "rows",
    total_field: str = "total",
    start_page: int = 1,
    provider: str | None = None,
) -> list[Any]:
    """Request numbered pages until a short page or the reported total."""

    if page_size < 1:
        raise ValueError("page_size must be positive")
    rows: list[Any] = []
    page_number = start_page
    while True:
        page = await fetch_page(page_number)
        batch = page.get(rows_field) or []
        rows.extend(batch)
        if len(batch) < page_size:
            return rows
        total = _reported_total(page, total_field, page_number, provider)
        if total is not None and len(rows) >= total:
            return rows
        page_number += 1


__all__ = ["cursor_from_path", "paginate_cursor", "paginate_pages"]
