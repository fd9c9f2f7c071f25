"""Crypto.com Exchange adapter using HMAC-signed JSON bodies."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

from pydantic import BaseModel

from portfolio_hub.core.errors import InvalidCredentials, ProviderError
from portfolio_hub.models.connection import ProviderName
from portfolio_hub.schemas import Holding, IncomeEvent

from .base import AuthResult, PriceBook, ProviderAdapter, parse_timestamp, to_float
from .http import ProviderRequest
from .signing import CryptoComSigner

AUTH_FAILURE_CODES = (10002, 10007)
TRADES_PAGE_SIZE = 200
USD_INSTRUMENT_SUFFIX = "_USD"


class CryptoComEnvelope(BaseModel):
    id: int | None = None
    method: str | None = None
    code: int = 0
    message: str | None = None
    result: dict[str, Any] | None = None


class CryptoComBalance(BaseModel):
    currency: str
    available: float | str | None = None
    staked: float | str | None = None


class CryptoComTicker(BaseModel):
    i: str = ""
    a: float | str | None = None


class CryptoComTrade(BaseModel):
    trade_id: str | int | None = None
    order_id: str | int | None = None
    create_time: int | None = None
    instrument_name: str = ""
    traded_quantity: float | str | None = None
    fees: float | str | None = None
    fee_currency: str | None = None
    description: str | None = None
    journal_type: str | None = None
    transaction_type: str | None = None

    def text(self) -> str:
        return " ".join(part for part in (self.description, self.journal_type, self.transaction_type) if part).lower()

    @property
    def asset(self) -> str:
        return self.fee_currency or self.instrument_name.split("_", 1)[0]


class CryptoComAdapter(ProviderAdapter):
    provider = ProviderName.CRYPTOCOM
    display_name = "Crypto.com"
    earn_display_name = "Crypto.com Earn"

    async def authenticate(self, credentials: Mapping[str, Any]) -> AuthResult:
        fields = self.require(credentials)
        result = await self._private(fields, "private/user-balance")
        balances = [CryptoComBalance.model_validate(row) for row in result.get("data") or []]
        positions = [b for b in balances if to_float(b.available) > 0 or to_float(b.staked) > 0]
        return AuthResult(credentials=fields, account={"asset_count": len(positions)})

    async def fetch_holdings(self, credentials: Mapping[str, Any]) -> list[Holding]:
        fields = self.require(credentials)
        result, prices = await asyncio.gather(self._private(fields, "private/user-balance"), self._price_book())
        holdings: list[Holding] = []
        for row in result.get("data") or []:
            balance = CryptoComBalance.model_validate(row)
            available = to_float(balance.available)
            staked = to_float(balance.staked)
            price = prices.price_for(balance.currency)
            if available > 0:
                holdings.append(
                    self.holding(
                        id=f"cryptocom-{balance.currency}",
                        ticker=balance.currency,
                        name=balance.currency,
                        asset_type="Crypto",
                        sector="Cryptocurrency",
                        quantity=available,
                        price=price,
                        currency="USD",
                    )
                )
            if staked > 0:
                holdings.append(
                    self.holding(
                        id=f"cryptocom-stake-{balance.currency}",
                        broker=self.earn_display_name,
                        ticker=balance.currency,
                        name=f"{balance.currency} (Staked)",
                        asset_type="Crypto",
                        sector="Staking",
                        quantity=staked,
                        price=price,
                        currency="USD",
                        earn_type="staking",
                    )
                )
        return holdings

    async def fetch_income_events(self, credentials: Mapping[str, Any]) -> list[IncomeEvent]:
        fields = self.require(credentials)
        result, prices = await asyncio.gather(
            self._private(fields, "private/get-trades", {"page_size": TRADES_PAGE_SIZE}),
            self._price_book(),
        )
        events = []
        for row in result.get("data") or []:
            trade = CryptoComTrade.model_validate(row)
            if not self.is_reward(trade):
                continue
            quantity = abs(to_float(trade.traded_quantity or trade.fees))
            when = parse_timestamp(trade.create_time)
            if when is None:
                continue
            events.append(
                self.income_event(
                    id=f"cryptocom-reward-{trade.trade_id or trade.order_id}-{trade.create_time}",
                    date=when,
                    ticker=trade.asset,
                    name=trade.instrument_name or trade.asset,
                    amount=quantity * prices.price_for(trade.asset),
                    currency="USD",
                    category=self._classifier.classify(trade.text()),
                    description=trade.text(),
                )
            )
        return events

    def is_reward(self, trade: CryptoComTrade) -> bool:
        text = trade.text()
        if not self._classifier.is_income(text):
            return False
        return any(keyword in text for keyword in self._settings.cryptocom_reward_keywords)

    async def _price_book(self) -> PriceBook:
        request = ProviderRequest("GET", f"{self._base_url}/public/get-tickers", provider=self.provider.value)
        envelope = self._unwrap(await self._fetcher.call_json(request))
        prices: dict[str, float] = {}
        for row in envelope.get("data") or []:
            ticker = CryptoComTicker.model_validate(row)
            if ticker.i.endswith(USD_INSTRUMENT_SUFFIX):
                prices[ticker.i[: -len(USD_INSTRUMENT_SUFFIX)]] = to_float(ticker.a)
        return PriceBook(prices, stablecoins=self._settings.cryptocom_stablecoins)

    async def _private(
        self,
        fields: Mapping[str, str],
        method: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        request = ProviderRequest(
            "POST",
            f"{self._base_url}/{method}",
            provider=self.provider.value,
            json={"method": method, "params": dict(params or {})},
        )
        signed = CryptoComSigner(fields["api_key"], fields["api_secret"]).sign(request, timestamp_ms=self._clock())
        try:
            return self._unwrap(await self._fetcher.call_json(signed))
        except ProviderError as exc:
            if exc.http_status == 401 or exc.provider_code in AUTH_FAILURE_CODES:
                raise InvalidCredentials("Invalid Crypto.com API key or secret", provider=self.provider.value) from exc
            raise

    def _unwrap(self, payload: Any) -> dict[str, Any]:
        envelope = CryptoComEnvelope.model_validate(payload if isinstance(payload, dict) else {})
        if envelope.code != 0:
            raise ProviderError(
                envelope.message or f"Crypto.com error code {envelope.code}",
                provider_code=envelope.code,
                provider=self.provider.value,
            )
        return envelope.result or {}

    @property
    def _base_url(self) -> str:
        return self._settings.cryptocom_base_url.rstrip("/")


__all__ = ["CryptoComAdapter", "CryptoComTrade"]
