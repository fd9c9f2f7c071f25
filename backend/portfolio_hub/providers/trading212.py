"""Trading 212 adapter using API key/secret basic auth."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, Field

from portfolio_hub.core.errors import InvalidCredentials, ProviderError
from portfolio_hub.models.connection import ProviderName
from portfolio_hub.schemas import Holding, IncomeEvent

from .base import AuthResult, ProviderAdapter, parse_timestamp, to_float
from .http import ProviderRequest
from .pagination import paginate_cursor
from .signing import BasicAuthSigner

DIVIDEND_PAGE_LIMIT = 50


class T212AccountSummary(BaseModel):
    total: float | None = None
    free: float | None = None
    invested: float | None = None
    ppl: float | None = None


class T212Position(BaseModel):
    ticker: str = ""
    quantity: float | None = None
    average_price: float | None = Field(default=None, alias="averagePrice")
    current_price: float | None = Field(default=None, alias="currentPrice")
    ppl: float | None = None
    type: str | None = None


class T212Dividend(BaseModel):
    ticker: str = ""
    reference: str | None = None
    amount: float | str | None = None
    paid_on: str | None = Field(default=None, alias="paidOn")
    type: str | None = None


class Trading212Adapter(ProviderAdapter):
    provider = ProviderName.TRADING212
    display_name = "Trading 212"

    async def authenticate(self, credentials: Mapping[str, Any]) -> AuthResult:
        fields = self.require(credentials)
        try:
            payload = await self._get(fields, "/equity/account/summary")
        except ProviderError as exc:
            if exc.http_status in (401, 403):
                raise InvalidCredentials("Invalid Trading 212 credentials", provider=self.provider.value) from exc
            raise
        summary = T212AccountSummary.model_validate(payload if isinstance(payload, dict) else {})
        return AuthResult(
            credentials=fields,
            account={
                "total_value": summary.total,
                "cash": summary.free,
                "invested": summary.invested,
                "result": summary.ppl,
            },
        )

    async def fetch_holdings(self, credentials: Mapping[str, Any]) -> list[Holding]:
        fields = self.require(credentials)
        payload = await self._get(fields, "/equity/positions")
        if not isinstance(payload, list):
            return []
        holdings = []
        for row in payload:
            position = T212Position.model_validate(row)
            crypto = position.type == "CRYPTO"
            quantity = to_float(position.quantity)
            price = to_float(position.current_price)
            average = to_float(position.average_price)
            holdings.append(
                self.holding(
                    id=f"t212-{position.ticker}",
                    ticker=position.ticker,
                    name=position.ticker,
                    asset_type="Crypto" if crypto else "Stock",
                    sector="Cryptocurrency" if crypto else "Equities",
                    quantity=quantity,
                    price=price,
                    currency="USD",
                    cost_basis=quantity * average,
                    unrealized_pnl=to_float(position.ppl),
                    unrealized_pnl_pct=((price - average) / average) * 100 if average else 0.0,
                )
            )
        return holdings

    async def fetch_income_events(self, credentials: Mapping[str, Any]) -> list[IncomeEvent]:
        fields = self.require(credentials)

        async def fetch_page(cursor: str | None) -> Mapping[str, Any]:
            params: dict[str, Any] = {"limit": DIVIDEND_PAGE_LIMIT}
            if cursor:
                params["cursor"] = cursor
            payload = await self._get(fields, "/equity/history/dividends", params=params)
            return payload if isinstance(payload, dict) else {}

        rows = await paginate_cursor(fetch_page, provider=self.provider.value)
        events = []
        for row in rows:
            dividend = T212Dividend.model_validate(row)
            text = f"dividend {dividend.type or ''}".strip()
            if not self._classifier.is_income(text):
                continue
            when = parse_timestamp(dividend.paid_on)
            if when is None:
                continue
            events.append(
                self.income_event(
                    id=f"t212-div-{dividend.reference or dividend.ticker}-{dividend.paid_on}",
                    date=when,
                    ticker=dividend.ticker,
                    name=dividend.ticker,
                    amount=to_float(dividend.amount),
                    currency="USD",
                    category=self._classifier.classify(text),
                    description=text,
                )
            )
        return events

    async def _get(self, fields: Mapping[str, str], path: str, *, params: Mapping[str, Any] | None = None) -> Any:
        request = ProviderRequest(
            "GET",
            f"{self._settings.trading212_base_url.rstrip('/')}{path}",
            provider=self.provider.value,
            params=params,
            headers={"Content-Type": "application/json"},
            retry_after_header="x-ratelimit-reset",
        )
        signed = BasicAuthSigner(fields["api_key"], fields["api_secret"]).sign(request)
        return await self._fetcher.call_json(signed)


__all__ = ["Trading212Adapter"]
