"""Common adapter contract and helpers shared by provider implementations."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from portfolio_hub.config import AppSettings, get_settings
from portfolio_hub.core.errors import ValidationError
from portfolio_hub.models.connection import ProviderName
from portfolio_hub.schemas import Holding, IncomeEvent
from portfolio_hub.services.income import IncomeClassifier, default_classifier

from .http import ResilientFetcher

logger = logging.getLogger(__name__)


def to_float(value: Any) -> float:
    """Parse provider numbers, which arrive as strings, ints or floats."""

    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch milliseconds or ISO-8601 strings into an aware UTC datetime.

    Returns ``None`` for missing or unparseable values; callers drop the record.
    """

    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Dropping record with out-of-range timestamp %r", value)
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Dropping record with unparseable timestamp %r", value)
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    logger.warning("Dropping record without a timestamp: %r", value)
    return None


class PriceBook:
    """Resolve a USD price for an asset from a symbol-to-price map.

    Stablecoins price at 1.0. Other assets try ``asset + suffix`` for each
    quote suffix in order. An unresolved asset prices at 0.
    """

    def __init__(
        self,
        prices: Mapping[str, float],
        *,
        stablecoins: Iterable[str] = (),
        quote_suffixes: Iterable[str] = (),
    ) -> None:
        self._prices = dict(prices)
        self._stablecoins = {coin.upper() for coin in stablecoins}
        self._suffixes = tuple(quote_suffixes)

    def price_for(self, asset: str) -> float:
        asset = asset.upper()
        if asset in self._stablecoins:
            return 1.0
        if not self._suffixes:
            return to_float(self._prices.get(asset))
        for suffix in self._suffixes:
            price = to_float(self._prices.get(f"{asset}{suffix}"))
            if price > 0:
                return price
        return 0.0


@dataclass
class AuthResult:
    """Outcome of a successful authentication.

    ``credentials`` is what gets encrypted into the connection row;
    ``account`` is a non-secret summary returned to the caller.
    """

    credentials: dict[str, Any]
    account: dict[str, Any] = field(default_factory=dict)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class ProviderAdapter(ABC):
    """Capability set implemented once per provider."""

    provider: ProviderName
    display_name: str
    required_fields: tuple[str, ...] = ("api_key", "api_secret")

    def __init__(
        self,
        fetcher: ResilientFetcher,
        settings: AppSettings | None = None,
        *,
        clock: Callable[[], int] = _epoch_ms,
        classifier: IncomeClassifier = default_classifier,
    ) -> None:
        self._fetcher = fetcher
        self._settings = settings or get_settings()
        self._clock = clock
        self._classifier = classifier

    def require(self, credentials: Mapping[str, Any], fields: Iterable[str] | None = None) -> dict[str, str]:
        """Return the required credential fields or raise ``ValidationError``."""

        fields = tuple(fields or self.required_fields)
        missing = [name for name in fields if not str(credentials.get(name) or "").strip()]
        if missing:
            raise ValidationError(f"{', '.join(missing)} required", provider=self.provider.value)
        return {name: str(credentials[name]).strip() for name in fields}

    def holding(self, **fields: Any) -> Holding:
        fields.setdefault("source", self.provider.value)
        fields.setdefault("broker", self.display_name)
        fields.setdefault("value", to_float(fields.get("quantity")) * to_float(fields.get("price")))
        return Holding(**fields)

    def income_event(self, **fields: Any) -> IncomeEvent:
        fields.setdefault("source", self.provider.value)
        fields.setdefault("broker", self.display_name)
        return IncomeEvent(**fields)

    @abstractmethod
    async def authenticate(self, credentials: Mapping[str, Any]) -> AuthResult:
        """Validate credentials against the provider."""

    @abstractmethod
    async def fetch_holdings(self, credentials: Mapping[str, Any]) -> list[Holding]:
        """Return the current positions for a connection.

        Adapters that load several sub-resources raise ``PartialFailure``
        carrying what loaded when only some of them fail.
        """

    @abstractmethod
    async def fetch_income_events(self, credentials: Mapping[str, Any]) -> list[IncomeEvent]:
        """Return income received over the lookback window."""


__all__ = ["AuthResult", "PriceBook", "ProviderAdapter", "parse_timestamp", "to_float"]
