"""Fan-out aggregation of holdings and income across connected providers.

Each request runs ``cache check -> fan out -> merge -> conditional cache write``.
Provider branches are isolated: a failing provider contributes an entry to
``errors`` and the rest of the result is still returned. Results are cached
only when every provider succeeded. Expired connections are not fetched;
they are reported in ``errors`` until the user logs in again.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Generic, TypeVar

from portfolio_hub.config import AppSettings, get_settings
from portfolio_hub.core.errors import (
    AggregatorError,
    IntegrityError,
    PartialFailure,
    SessionExpired,
    ValidationError,
)
from portfolio_hub.models import ConnectionStatus, ProviderConnection, ProviderName
from portfolio_hub.providers.base import ProviderAdapter
from portfolio_hub.providers.registry import ProviderRegistry
from portfolio_hub.schemas import (
    Holding,
    IncomeEvent,
    IncomeResult,
    PortfolioResult,
    ProviderFailureSchema,
)
from portfolio_hub.schemas.holdings import non_negative_finite

from .cache import CacheStore
from .connections import ConnectionStore
from .currency import CurrencyConverter, RateSnapshot
from .vault import CredentialVault

logger = logging.getLogger(__name__)

T = TypeVar("T")

PORTFOLIO_KEY = "portfolio"
INCOME_KEY = "income"
SESSION_EXPIRED_MESSAGE = "Session expired, please log in again"
# Providers whose auth failures mean the stored session must be renewed by the user.
SESSION_PROVIDERS = frozenset({ProviderName.DEGIRO})


@dataclass
class FanOutResult(Generic[T]):
    items: list[T] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    errors: list[ProviderFailureSchema] = field(default_factory=list)
    connection_count: int = 0


@dataclass
class BranchOutcome(Generic[T]):
    items: list[T] = field(default_factory=list)
    failures: list[ProviderFailureSchema] = field(default_factory=list)
    loaded: bool = False


def failure_from(provider: str, exc: Exception) -> ProviderFailureSchema:
    if isinstance(exc, AggregatorError):
        return ProviderFailureSchema(
            provider=provider,
            error=exc.message,
            code=exc.code,
            retry_after=getattr(exc, "retry_after", None),
        )
    return ProviderFailureSchema(provider=provider, error=str(exc) or type(exc).__name__, code="provider_error")


class PortfolioAggregator:
    def __init__(
        self,
        connections: ConnectionStore,
        registry: ProviderRegistry,
        vault: CredentialVault,
        cache: CacheStore,
        converter: CurrencyConverter,
        settings: AppSettings | None = None,
    ) -> None:
        self._connections = connections
        self._registry = registry
        self._vault = vault
        self._cache = cache
        self._converter = converter
        self._settings = settings or get_settings()

    # Public entry points

    async def get_portfolio(
        self,
        user_id: str,
        refresh: bool = False,
        reporting_currency: str | None = None,
    ) -> PortfolioResult:
        currency = self._reporting_currency(reporting_currency)
        if not refresh:
            cached = await self._cached(user_id, PORTFOLIO_KEY, currency)
            if cached is not None:
                return PortfolioResult.model_validate({**cached, "cached": True})

        outcome = await self._fan_out(user_id, lambda adapter, creds: adapter.fetch_holdings(creds))
        rates = await self._converter.get_rates()
        holdings = sorted(
            (self._convert_holding(holding, rates, currency) for holding in outcome.items),
            key=lambda holding: holding.reporting_value,
            reverse=True,
        )
        result = PortfolioResult(
            holdings=holdings,
            total_value=sum(holding.reporting_value for holding in holdings),
            reporting_currency=currency,
            sources=outcome.sources,
            errors=outcome.errors,
            count=len(holdings),
            fetched_at=datetime.now(timezone.utc),
            no_connections=outcome.connection_count == 0,
        )
        await self._write_cache(user_id, PORTFOLIO_KEY, result.model_dump(mode="json"), outcome.errors)
        return result

    async def get_income(
        self,
        user_id: str,
        refresh: bool = False,
        reporting_currency: str | None = None,
    ) -> IncomeResult:
        currency = self._reporting_currency(reporting_currency)
        if not refresh:
            cached = await self._cached(user_id, INCOME_KEY, currency)
            if cached is not None:
                return IncomeResult.model_validate({**cached, "cached": True})

        outcome = await self._fan_out(user_id, lambda adapter, creds: adapter.fetch_income_events(creds))
        rates = await self._converter.get_rates()
        events = sorted(
            (self._convert_event(event, rates, currency) for event in outcome.items),
            key=lambda event: event.date,
            reverse=True,
        )
        now = datetime.now(timezone.utc)
        window_start = now - timedelta(days=365)
        trailing = sum(event.reporting_amount for event in events if event.date >= window_start)
        by_category: dict[str, float] = defaultdict(float)
        for event in events:
            by_category[event.category.value] += event.reporting_amount

        result = IncomeResult(
            events=events,
            total_income=sum(event.reporting_amount for event in events),
            trailing_12m_income=trailing,
            monthly_average=trailing / 12,
            by_category=dict(by_category),
            reporting_currency=currency,
            sources=outcome.sources,
            errors=outcome.errors,
            count=len(events),
            fetched_at=now,
            no_connections=outcome.connection_count == 0,
        )
        await self._write_cache(user_id, INCOME_KEY, result.model_dump(mode="json"), outcome.errors)
        return result

    async def invalidate(self, user_id: str, resource: str | None = None) -> None:
        await self._cache.invalidate(user_id, resource)

    # Fan-out

    async def _fan_out(
        self,
        user_id: str,
        fetch: Callable[[ProviderAdapter, dict[str, Any]], Awaitable[list[T]]],
    ) -> FanOutResult[T]:
        connections = await self._connections.list_for_user(user_id)
        outcome: FanOutResult[T] = FanOutResult(connection_count=len(connections))
        live = []
        for connection in connections:
            if connection.status == ConnectionStatus.EXPIRED:
                outcome.errors.append(
                    ProviderFailureSchema(
                        provider=connection.provider.value,
                        error=SESSION_EXPIRED_MESSAGE,
                        code=SessionExpired.code,
                    )
                )
            else:
                live.append(connection)

        branches = await asyncio.gather(*(self._run_branch(user_id, conn, fetch) for conn in live))
        for connection, branch in zip(live, branches):
            outcome.errors.extend(branch.failures)
            if branch.loaded:
                outcome.items.extend(branch.items)
                outcome.sources.append(connection.provider.value)
        return outcome

    async def _run_branch(
        self,
        user_id: str,
        connection: ProviderConnection,
        fetch: Callable[[ProviderAdapter, dict[str, Any]], Awaitable[list[T]]],
    ) -> BranchOutcome[T]:
        provider = connection.provider
        try:
            adapter = self._registry.get(provider)
            credentials = self._vault.decrypt_json(connection.encrypted_credentials)
            items = await fetch(adapter, credentials)
        except IntegrityError as exc:
            logger.error("Stored credentials for %s/%s failed integrity check", user_id, provider.value)
            return BranchOutcome(failures=[failure_from(provider.value, exc)])
        except SessionExpired as exc:
            logger.warning("%s session expired for user %s", provider.value, user_id)
            failure = failure_from(provider.value, exc)
            if provider in SESSION_PROVIDERS:
                await self._mark_expired(user_id, provider)
            return BranchOutcome(failures=[failure])
        except PartialFailure as exc:
            logger.warning("%s returned partial data for user %s: %s", provider.value, user_id, exc.message)
            await self._mark_synced(user_id, provider)
            return BranchOutcome(
                items=list(exc.items),
                failures=[failure_from(provider.value, failure) for failure in exc.failures],
                loaded=True,
            )
        except AggregatorError as exc:
            logger.warning("%s fetch failed for user %s: %s", provider.value, user_id, exc.message)
            return BranchOutcome(failures=[failure_from(provider.value, exc)])
        except Exception as exc:  # noqa: BLE001 - isolate unexpected provider failures
            logger.exception("Unexpected %s failure for user %s", provider.value, user_id)
            return BranchOutcome(failures=[failure_from(provider.value, exc)])

        await self._mark_synced(user_id, provider)
        return BranchOutcome(items=items, loaded=True)

    # Status bookkeeping never fails the request.

    async def _mark_expired(self, user_id: str, provider: ProviderName) -> None:
        try:
            await self._connections.mark_expired(user_id, provider, SESSION_EXPIRED_MESSAGE)
        except Exception:  # noqa: BLE001
            logger.exception("Could not mark %s connection expired for user %s", provider.value, user_id)

    async def _mark_synced(self, user_id: str, provider: ProviderName) -> None:
        try:
            await self._connections.mark_synced(user_id, provider)
        except Exception:  # noqa: BLE001
            logger.exception("Could not record sync time for %s/%s", user_id, provider.value)

    # Cache

    async def _cached(self, user_id: str, key: str, currency: str) -> dict[str, Any] | None:
        cached = await self._cache.get(user_id, key)
        if cached is None or cached.get("reporting_currency") != currency:
            return None
        return cached

    async def _write_cache(
        self,
        user_id: str,
        key: str,
        data: dict[str, Any],
        errors: list[ProviderFailureSchema],
    ) -> None:
        if errors:
            logger.info("Skipping %s cache write for user %s: %d provider error(s)", key, user_id, len(errors))
            return
        try:
            await self._cache.set(user_id, key, data)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to cache %s for user %s", key, user_id)

    # Conversion

    def _reporting_currency(self, requested: str | None) -> str:
        currency = (requested or self._settings.reporting_currency).upper()
        if currency not in self._converter.supported:
            raise ValidationError(f"Unsupported reporting currency: {currency}")
        return currency

    @staticmethod
    def _convert_holding(holding: Holding, rates: RateSnapshot, currency: str) -> Holding:
        return holding.model_copy(
            update={
                "reporting_value": non_negative_finite(rates.convert(holding.value, holding.currency, currency)),
                "reporting_currency": currency,
            }
        )

    @staticmethod
    def _convert_event(event: IncomeEvent, rates: RateSnapshot, currency: str) -> IncomeEvent:
        return event.model_copy(
            update={
                "reporting_amount": non_negative_finite(rates.convert(event.amount, event.currency, currency)),
                "reporting_currency": currency,
            }
        )


__all__ = ["BranchOutcome", "FanOutResult", "PortfolioAggregator", "failure_from"]
