"""Per-user TTL cache of aggregated results."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy import exc as sa_exc

from portfolio_hub.config import get_settings
from portfolio_hub.core.errors import ValidationError
from portfolio_hub.db import Database
from portfolio_hub.models import CACHE_KEYS, PortfolioCacheEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def _check_key(cache_key: str) -> str:
    if cache_key not in CACHE_KEYS:
        raise ValidationError(f"Unknown cache key: {cache_key}")
    return cache_key


class CacheStore:
    def __init__(
        self,
        database: Database,
        *,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._database = database
        self._ttl = timedelta(seconds=ttl_seconds or get_settings().cache_ttl_seconds)
        self._clock = clock

    async def get(self, user_id: str, cache_key: str) -> dict[str, Any] | None:
        """Return the cached payload, or ``None`` when absent or expired."""

        _check_key(cache_key)
        async with self._database.session() as session:
            entry = (
                await session.execute(
                    select(PortfolioCacheEntry).where(
                        PortfolioCacheEntry.user_id == user_id,
                        PortfolioCacheEntry.cache_key == cache_key,
                    )
                )
            ).scalar_one_or_none()
        if entry is None or self._clock() >= _aware(entry.expires_at):
            return None
        return entry.data

    async def set(self, user_id: str, cache_key: str, data: dict[str, Any]) -> None:
        _check_key(cache_key)
        now = self._clock()
        try:
            await self._upsert(user_id, cache_key, data, now)
        except sa_exc.IntegrityError:
            # A concurrent writer inserted the row first; overwrite it.
            await self._upsert(user_id, cache_key, data, now)

    async def _upsert(self, user_id: str, cache_key: str, data: dict[str, Any], now: datetime) -> None:
        async with self._database.session() as session:
            entry = (
                await session.execute(
                    select(PortfolioCacheEntry).where(
                        PortfolioCacheEntry.user_id == user_id,
                        PortfolioCacheEntry.cache_key == cache_key,
                    )
                )
            ).scalar_one_or_none()
            if entry is None:
                entry = PortfolioCacheEntry(user_id=user_id, cache_key=cache_key)
                session.add(entry)
            entry.data = data
            entry.cached_at = now
            entry.expires_at = now + self._ttl
            await session.commit()

    async def invalidate(self, user_id: str, cache_key: str | None = None) -> None:
        """Delete one cache key for a user, or all of them."""

        stmt = delete(PortfolioCacheEntry).where(PortfolioCacheEntry.user_id == user_id)
        if cache_key is not None:
            stmt = stmt.where(PortfolioCacheEntry.cache_key == _check_key(cache_key))
        async with self._database.session() as session:
            await session.execute(stmt)
            await session.commit()
        logger.debug("Invalidated cache %s for user %s", cache_key or "*", user_id)


__all__ = ["CacheStore"]
