"""Pagination helper tests."""

from __future__ import annotations

import pytest

from portfolio_hub.core.errors import ProviderError, Unreachable
from portfolio_hub.providers.pagination import cursor_from_path, paginate_cursor, paginate_pages


def test_cursor_from_path():
    assert cursor_from_path("/api/v0/history/dividends?limit=50&cursor=abc") == "abc"
    assert cursor_from_path("/api/v0/history/dividends?limit=50") is None


@pytest.mark.asyncio
async def test_cursor_pagination_follows_links():
    pages = {
        None: {"items": [1, 2], "nextPagePath": "/dividends?cursor=b"},
        "b": {"items": [3], "nextPagePath": "/dividends?cursor=c"},
        "c": {"items": [4, 5], "nextPagePath": None},
    }
    requested = []

    async def fetch(cursor):
        requested.append(cursor)
        return pages[cursor]

    assert await paginate_cursor(fetch) == [1, 2, 3, 4, 5]
    assert requested == [None, "b", "c"]


@pytest.mark.asyncio
async def test_repeated_cursor_is_rejected():
    async def fetch(cursor):
        return {"items": [cursor], "nextPagePath": "/dividends?cursor=loop"}

    with pytest.raises(ProviderError):
        await paginate_cursor(fetch, provider="trading212")


@pytest.mark.asyncio
async def test_page_pagination_stops_at_short_page():
    calls = []

    async def fetch(page):
        calls.append(page)
        size = 40 if page == 3 else 100
        return {"rows": [f"{page}-{index}" for index in range(size)], "total": 240}

    rows = await paginate_pages(fetch, 100)
    assert len(rows) == 240
    assert calls == [1, 2, 3]


@pytest.mark.asyncio
async def test_page_pagination_stops_at_reported_total():
    calls = []

    async def fetch(page):
        calls.append(page)
        return {"rows": list(range(100)), "total": 200}

    rows = await paginate_pages(fetch, 100)
    assert len(rows) == 200
    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_page_failure_discards_partial_rows():
    async def fetch(page):
        if page == 2:
            raise Unreachable("binance is unreachable", provider="binance")
        return {"rows": list(range(100))}

    with pytest.raises(Unreachable):
        await paginate_pages(fetch, 100)


@pytest.mark.asyncio
async def test_empty_first_page():
    async def fetch(page):
        return {"total": 0}

    assert await paginate_pages(fetch, 100) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("total", ["", "n/a", {"value": 240}])
async def test_non_numeric_total_is_a_provider_error(total):
    async def fetch(page):
        return {"rows": list(range(100)), "total": total}

    with pytest.raises(ProviderError) as excinfo:
        await paginate_pages(fetch, 100, provider="binance")
    assert excinfo.value.provider == "binance"
    assert "total" in excinfo.value.message
