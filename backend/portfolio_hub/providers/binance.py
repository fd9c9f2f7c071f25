"""Binance adapter using HMAC-SHA256 signed query strings."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from pydantic import BaseModel, Field

from portfolio_hub.core.errors import AggregatorError, InvalidCredentials, PartialFailure, ProviderError
from portfolio_hub.models.connection import ProviderName
from portfolio_hub.schemas import Holding, IncomeEvent

from .base import AuthResult, PriceBook, ProviderAdapter, parse_timestamp, to_float
from .http import ProviderRequest
from .pagination import paginate_pages
from .signing import BinanceSigner

logger = logging.getLogger(__name__)

T = TypeVar("T")

INVALID_KEY_CODE = -2015
THROTTLE_STATUSES = (429, 418)
EARN_POSITION_PAGE_SIZE = 100
DIVIDEND_LIMIT = 500
REWARD_PAGE_SIZE = 100
REWARD_ENDPOINTS = {
    "flexible": "/sapi/v1/simple-earn/flexible/history/rewardsRecord",
    "locked": "/sapi/v1/simple-earn/locked/history/rewardsRecord",
}


class BinanceBalance(BaseModel):
    asset: str
    free: float | str = 0
    locked: float | str = 0

    @property
    def total(self) -> float:
        return to_float(self.free) + to_float(self.locked)


class BinanceAccount(BaseModel):
    balances: list[BinanceBalance] = Field(default_factory=list)
    can_trade: bool | None = Field(default=None, alias="canTrade")
    can_withdraw: bool | None = Field(default=None, alias="canWithdraw")
    account_type: str | None = Field(default=None, alias="accountType")


class BinanceFlexiblePosition(BaseModel):
    asset: str
    total_amount: float | str | None = Field(default=None, alias="totalAmount")


class BinanceLockedPosition(BaseModel):
    asset: str
    amount: float | str | None = None
    position_id: int | str | None = Field(default=None, alias="positionId")


class BinanceAssetDividend(BaseModel):
    id: int | str | None = None
    tran_id: int | str | None = Field(default=None, alias="tranId")
    asset: str = ""
    amount: float | str | None = None
    div_time: int | None = Field(default=None, alias="divTime")
    en_info: str = Field(default="", alias="enInfo")


class BinanceReward(BaseModel):
    asset: str = ""
    rewards: float | str | None = None
    time: int | None = None
    type: str | None = None


class BinanceAdapter(ProviderAdapter):
    provider = ProviderName.BINANCE
    display_name = "Binance"
    earn_display_name = "Binance Earn"

    async def authenticate(self, credentials: Mapping[str, Any]) -> AuthResult:
        fields = self.require(credentials)
        account = BinanceAccount.model_validate(await self._signed(fields, "/api/v3/account"))
        return AuthResult(
            credentials=fields,
            account={
                "asset_count": sum(1 for balance in account.balances if balance.total > 0),
                "can_trade": account.can_trade,
                "can_withdraw": account.can_withdraw,
                "account_type": account.account_type,
            },
        )

    # Holdings

    async def fetch_holdings(self, credentials: Mapping[str, Any]) -> list[Holding]:
        fields = self.require(credentials)
        account_payload, prices = await asyncio.gather(
            self._signed(fields, "/api/v3/account"),
            self._price_book(),
        )
        account = BinanceAccount.model_validate(account_payload)
        failures: list[AggregatorError] = []
        flexible, locked = await asyncio.gather(
            self._isolated(
                "flexible earn positions",
                lambda: self._signed(fields, "/sapi/v1/simple-earn/flexible/position", {"size": EARN_POSITION_PAGE_SIZE}),
                failures,
            ),
            self._isolated(
                "locked earn positions",
                lambda: self._signed(fields, "/sapi/v1/simple-earn/locked/position", {"size": EARN_POSITION_PAGE_SIZE}),
                failures,
            ),
        )

        holdings: list[Holding] = []
        for balance in account.balances:
            if balance.total <= 0 or self.is_wrapped_asset(balance.asset):
                continue
            holdings.append(
                self.holding(
                    id=f"binance-{balance.asset}",
                    ticker=balance.asset,
                    name=balance.asset,
                    asset_type="Crypto",
                    sector="Cryptocurrency",
                    quantity=balance.total,
                    price=prices.price_for(balance.asset),
                    currency="USD",
                )
            )
        for row in (flexible or {}).get("rows") or []:
            position = BinanceFlexiblePosition.model_validate(row)
            holdings.append(
                self.holding(
                    id=f"binance-earn-flex-{position.asset}",
                    broker=self.earn_display_name,
                    ticker=position.asset,
                    name=f"{position.asset} (Flexible)",
                    asset_type="Crypto",
                    sector="Staking",
                    quantity=to_float(position.total_amount),
                    price=prices.price_for(position.asset),
                    currency="USD",
                    earn_type="flexible",
                )
            )
        for row in (locked or {}).get("rows") or []:
            position = BinanceLockedPosition.model_validate(row)
            holdings.append(
                self.holding(
                    id=f"binance-earn-locked-{position.asset}-{position.position_id}",
                    broker=self.earn_display_name,
                    ticker=position.asset,
                    name=f"{position.asset} (Locked)",
                    asset_type="Crypto",
                    sector="Staking",
                    quantity=to_float(position.amount),
                    price=prices.price_for(position.asset),
                    currency="USD",
                    earn_type="locked",
                )
            )
        if failures:
            raise PartialFailure(holdings, failures, provider=self.provider.value)
        return holdings

    def is_wrapped_asset(self, asset: str) -> bool:
        """Spot balances like ``LDBTC`` mirror an earn position listed separately.

        The remainder after the prefix must look like a ticker of its own, so
        ``LDO`` is still treated as a regular asset.
        """

        return any(
            asset.startswith(prefix) and len(asset) - len(prefix) >= 2
            for prefix in self._settings.binance_wrapper_prefixes
        )

    # Income

    async def fetch_income_events(self, credentials: Mapping[str, Any]) -> list[IncomeEvent]:
        fields = self.require(credentials)
        prices = await self._price_book()
        failures: list[AggregatorError] = []
        events: list[IncomeEvent] = []

        dividends = await self._isolated("asset dividends", partial(self._asset_dividends, fields, prices), failures)
        events.extend(dividends or [])

        for kind, path in REWARD_ENDPOINTS.items():
            for reward_type in self._settings.binance_reward_types:
                rewards = await self._isolated(
                    f"{kind} {reward_type} rewards",
                    partial(self._rewards, fields, prices, kind, path, reward_type),
                    failures,
                )
                events.extend(rewards or [])

        subresources = 1 + len(REWARD_ENDPOINTS) * len(self._settings.binance_reward_types)
        if len(failures) == subresources:
            raise failures[0]
        if failures:
            raise PartialFailure(events, failures, provider=self.provider.value)
        return events

    async def _asset_dividends(self, fields: Mapping[str, str], prices: PriceBook) -> list[IncomeEvent]:
        payload = await self._signed(fields, "/sapi/v1/asset/assetDividend", {"limit": DIVIDEND_LIMIT})
        earn_keywords = [keyword.lower() for keyword in self._settings.binance_earn_keywords]
        events = []
        for row in payload.get("rows") or []:
            dividend = BinanceAssetDividend.model_validate(row)
            info = dividend.en_info.lower()
            # Earn rewards come from the rewardsRecord endpoints; matches here are principal.
            if not self._classifier.is_income(info) or any(keyword in info for keyword in earn_keywords):
                continue
            quantity = to_float(dividend.amount)
            when = parse_timestamp(dividend.div_time)
            if when is None:
                continue
            events.append(
                self.income_event(
                    id=f"binance-div-{dividend.id or dividend.tran_id}",
                    date=when,
                    ticker=dividend.asset,
                    name=dividend.asset,
                    amount=quantity * prices.price_for(dividend.asset),
                    currency="USD",
                    category=self._classifier.classify(info or "distribution"),
                    description=dividend.en_info or f"{quantity:g} {dividend.asset}",
                )
            )
        return events

    async def _rewards(
        self,
        fields: Mapping[str, str],
        prices: PriceBook,
        kind: str,
        path: str,
        reward_type: str,
    ) -> list[IncomeEvent]:
        async def fetch_page(page: int) -> Mapping[str, Any]:
            return await self._signed(
                fields,
                path,
                {"size": REWARD_PAGE_SIZE, "type": reward_type, "current": page},
            )

        rows = await paginate_pages(fetch_page, REWARD_PAGE_SIZE, provider=self.provider.value)
        description = f"Simple Earn {kind} {reward_type.lower()} reward"
        events = []
        for row in rows:
            reward = BinanceReward.model_validate(row)
            quantity = to_float(reward.rewards)
            when = parse_timestamp(reward.time)
            if when is None:
                continue
            events.append(
                self.income_event(
                    id=f"binance-earn-{kind}-reward-{reward.asset}-{reward.time}-{reward_type}",
                    date=when,
                    ticker=reward.asset,
                    name=reward.asset,
                    amount=quantity * prices.price_for(reward.asset),
                    currency="USD",
                    category=self._classifier.classify(description),
                    broker=self.earn_display_name,
                    description=description,
                )
            )
        return events

    # Transport

    async def _price_book(self) -> PriceBook:
        request = ProviderRequest(
            "GET",
            f"{self._base_url}/api/v3/ticker/price",
            provider=self.provider.value,
            throttle_statuses=THROTTLE_STATUSES,
        )
        payload = await self._fetcher.call_json(request)
        prices: dict[str, float] = {}
        for row in payload if isinstance(payload, list) else []:
            if isinstance(row, dict) and row.get("symbol"):
                prices[row["symbol"]] = to_float(row.get("price"))
        return PriceBook(
            prices,
            stablecoins=self._settings.binance_stablecoins,
            quote_suffixes=self._settings.binance_quote_suffixes,
        )

    async def _signed(
        self,
        fields: Mapping[str, str],
        path: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        request = ProviderRequest(
            "GET",
            f"{self._base_url}{path}",
            provider=self.provider.value,
            params=params,
            throttle_statuses=THROTTLE_STATUSES,
        )
        signer = BinanceSigner(fields["api_key"], fields["api_secret"], self._settings.binance_recv_window_ms)
        try:
            payload = await self._fetcher.call_json(signer.sign(request, timestamp_ms=self._clock()))
        except ProviderError as exc:
            if exc.http_status == 401 or exc.provider_code == INVALID_KEY_CODE:
                raise InvalidCredentials("Invalid Binance API key or secret", provider=self.provider.value) from exc
            raise
        return payload if isinstance(payload, dict) else {}

    async def _isolated(
        self,
        label: str,
        call: Callable[[], Awaitable[T]],
        failures: list[AggregatorError],
    ) -> T | None:
        try:
            return await call()
        except AggregatorError as exc:
            logger.warning("Binance %s unavailable: %s", label, exc.message)
            failures.append(exc)
            return None

    @property
    def _base_url(self) -> str:
        return self._settings.binance_base_url.rstrip("/")


__all__ = ["BinanceAdapter"]
