"""Process-wide exchange-rate snapshot and currency conversion."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from portfolio_hub.config import AppSettings, get_settings
from portfolio_hub.core.errors import AggregatorError
from portfolio_hub.providers.http import ProviderRequest, ResilientFetcher

logger = logging.getLogger(__name__)

RATES_PROVIDER = "exchange-rates"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RateSnapshot:
    base: str
    rates: dict[str, float]
    fetched_at: datetime
    expires_at: datetime
    stale: bool = field(default=False, compare=False)

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        """Convert through the base currency; unknown codes pass through."""

        source = (from_currency or "").upper()
        target = (to_currency or "").upper()
        if source == target:
            return amount
        from_rate = self.rates.get(source)
        to_rate = self.rates.get(target)
        if not from_rate or not to_rate:
            return amount
        return amount / from_rate * to_rate

    def to_dict(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "rates": dict(self.rates),
            "fetched_at": self.fetched_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "stale": self.stale,
        }


class CurrencyConverter:
    """Keep one live rate snapshot, refreshed at most once at a time.

    A failed refresh serves the previous snapshot. With no snapshot at all the
    converter falls back to identity rates, so conversion never raises.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        settings: AppSettings | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._fetcher = fetcher
        self._settings = settings or get_settings()
        self._clock = clock
        self._snapshot: RateSnapshot | None = None
        self._lock = asyncio.Lock()

    @property
    def base(self) -> str:
        return self._settings.exchange_rate_base.upper()

    @property
    def supported(self) -> list[str]:
        return [code.upper() for code in self._settings.supported_currencies]

    @property
    def snapshot(self) -> RateSnapshot | None:
        return self._snapshot

    async def get_rates(self) -> RateSnapshot:
        snapshot = self._snapshot
        if snapshot is not None and snapshot.is_fresh(self._clock()):
            return snapshot
        if snapshot is not None and self._lock.locked():
            return snapshot
        async with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and snapshot.is_fresh(self._clock()):
                return snapshot
            return await self.refresh()

    async def refresh(self) -> RateSnapshot:
        now = self._clock()
        try:
            rates = await self._fetch_rates()
        except (AggregatorError, ValueError) as exc:
            if self._snapshot is not None:
                logger.warning("Exchange rate refresh failed, serving snapshot from %s: %s", self._snapshot.fetched_at, exc)
                return RateSnapshot(
                    self._snapshot.base,
                    self._snapshot.rates,
                    self._snapshot.fetched_at,
                    self._snapshot.expires_at,
                    stale=True,
                )
            logger.warning("Exchange rate refresh failed with no snapshot, using identity rates: %s", exc)
            return RateSnapshot(self.base, {self.base: 1.0}, now, now, stale=True)

        self._snapshot = RateSnapshot(
            base=self.base,
            rates=rates,
            fetched_at=now,
            expires_at=now + timedelta(seconds=self._settings.exchange_rate_ttl_seconds),
        )
        logger.info("Exchange rates refreshed: %s", rates)
        return self._snapshot

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        if (from_currency or "").upper() == (to_currency or "").upper():
            return amount
        snapshot = await self.get_rates()
        return snapshot.convert(amount, from_currency, to_currency)

    async def _fetch_rates(self) -> dict[str, float]:
        request = ProviderRequest("GET", self._settings.exchange_rates_url, provider=RATES_PROVIDER)
        payload = await self._fetcher.call_json(request)
        raw = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            raise ValueError("Exchange rate response has no rates")
        rates = {self.base: 1.0}
        for code in self.supported:
            if code == self.base:
                continue
            value = raw.get(code)
            if value is None:
                raise ValueError(f"Exchange rate response is missing {code}")
            rates[code] = float(value)
        return rates


__all__ = ["CurrencyConverter", "RateSnapshot"]
