"""DeGiro adapter: username/password login, session cookie, optional TOTP."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pydantic import BaseModel, Field

from portfolio_hub.core.errors import (
    InvalidCredentials,
    ProviderError,
    ProviderUnavailable,
    SecondFactorRequired,
    SessionExpired,
    ValidationError,
)
from portfolio_hub.models.connection import ProviderName
from portfolio_hub.schemas import Holding, IncomeEvent

from .base import AuthResult, ProviderAdapter, parse_timestamp, to_float
from .http import ProviderRequest, decode_json, looks_like_html
from .signing import (
    DEGIRO_STATUS_SESSION_EXPIRED,
    DegiroLoginOutcome,
    SessionCookieSigner,
    degiro_login_body,
    degiro_login_outcome,
    degiro_login_path,
    extract_session_id,
)

logger = logging.getLogger(__name__)

AUTOMATED_ACCESS_BLOCKED = "automated-access-blocked"
DIVIDEND_MOVEMENT_TYPES = ("DIVIDEND", "DIVIDEND_TAX")
PRODUCT_TYPES = {"STOCK": "Stock", "ETF": "ETF", "BOND": "Bond", "FUND": "Fund"}
_DEFAULT_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class DegiroConfig(BaseModel):
    trading_url: str | None = Field(default=None, alias="tradingUrl")
    product_search_url: str | None = Field(default=None, alias="productSearchUrl")
    reporting_url: str | None = Field(default=None, alias="reportingUrl")
    pa_url: str | None = Field(default=None, alias="paUrl")


class DegiroClientInfo(BaseModel):
    int_account: int | None = Field(default=None, alias="intAccount")
    id: int | str | None = None
    username: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    first_contact: dict[str, Any] | None = Field(default=None, alias="firstContact")


class DegiroPosition(BaseModel):
    """Portfolio row encoded as a ``[{"name": ..., "value": ...}]`` list."""

    value: list[dict[str, Any]] = Field(default_factory=list)

    def fields(self) -> dict[str, Any]:
        return {item.get("name"): item.get("value") for item in self.value if "name" in item}


class DegiroProduct(BaseModel):
    symbol: str | None = None
    isin: str | None = None
    name: str | None = None
    product_type: str | None = Field(default=None, alias="productType")
    category: str | None = None
    currency: str | None = None


class DegiroCashMovement(BaseModel):
    id: int | str | None = None
    date: str | None = None
    product: str | None = None
    product_id: int | str | None = Field(default=None, alias="productId")
    change: float | str | None = None
    currency: str | None = None
    type: str | None = None
    description: str | None = None


def degiro_date(moment: datetime) -> str:
    return moment.strftime("%d/%m/%Y")


class DegiroAdapter(ProviderAdapter):
    provider = ProviderName.DEGIRO
    display_name = "DeGiro"
    required_fields = ("username", "password")

    @property
    def base_url(self) -> str:
        return self._settings.degiro_base_url.rstrip("/")

    # Authentication

    async def authenticate(self, credentials: Mapping[str, Any]) -> AuthResult:
        fields = self.require(credentials)
        one_time_password = str(credentials.get("one_time_password") or "").strip() or None
        request = ProviderRequest(
            "POST",
            f"{self.base_url}{degiro_login_path(one_time_password)}",
            provider=self.provider.value,
            headers=_DEFAULT_HEADERS,
            json=degiro_login_body(fields["username"], fields["password"], one_time_password),
        )
        response = await self._fetcher.call(request, raise_for_status=False)
        if looks_like_html(response):
            logger.warning("DeGiro login returned an HTML page; automated access appears blocked")
            raise ProviderUnavailable(
                AUTOMATED_ACCESS_BLOCKED,
                message="DeGiro blocked the automated login, supply a session id from the browser instead",
                provider=self.provider.value,
            )
        try:
            body = decode_json(response)
        except ValueError as exc:
            raise ProviderError(
                "DeGiro login returned malformed JSON",
                http_status=response.status_code,
                provider=self.provider.value,
            ) from exc
        if not isinstance(body, dict):
            body = {}

        outcome = degiro_login_outcome(body)
        if outcome is DegiroLoginOutcome.SECOND_FACTOR:
            raise SecondFactorRequired(provider=self.provider.value)
        if outcome is DegiroLoginOutcome.REJECTED or response.status_code in (401, 403):
            raise InvalidCredentials("DeGiro rejected the username or password", provider=self.provider.value)
        if outcome is DegiroLoginOutcome.SESSION_EXPIRED:
            raise SessionExpired(provider=self.provider.value)
        if not response.is_success:
            raise ProviderError(
                str(body.get("message") or body.get("statusText") or "DeGiro login failed"),
                http_status=response.status_code,
                provider_code=body.get("status"),
                provider=self.provider.value,
            )

        session_id = extract_session_id(response.headers.get_list("set-cookie"), body)
        if not session_id:
            raise ProviderError("DeGiro login response carried no session id", provider=self.provider.value)
        return await self._resolve_session(session_id, username=fields["username"])

    async def authenticate_with_session(self, session_id: str) -> AuthResult:
        """Accept a pre-authenticated JSESSIONID copied from the browser."""

        session_id = (session_id or "").strip()
        if not session_id:
            raise ValidationError("session_id required", provider=self.provider.value)
        try:
            return await self._resolve_session(session_id)
        except SessionExpired as exc:
            raise InvalidCredentials("DeGiro did not accept the supplied session", provider=self.provider.value) from exc

    async def _resolve_session(self, session_id: str, *, username: str | None = None) -> AuthResult:
        config = await self._config(session_id)
        pa_url = config.pa_url or f"{self.base_url}/pa/secure/"
        payload = await self._get_json(f"{pa_url}client", session_id, params={"sessionId": session_id})
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        client = DegiroClientInfo.model_validate(data or {})
        if client.int_account is None:
            raise ProviderError("DeGiro client response did not include an account", provider=self.provider.value)
        first_name = (client.first_contact or {}).get("firstName") or client.display_name or username
        return AuthResult(
            credentials={
                "session_id": session_id,
                "int_account": client.int_account,
                "username": username or client.username,
            },
            account={"int_account": client.int_account, "first_name": first_name},
        )

    # Data

    async def fetch_holdings(self, credentials: Mapping[str, Any]) -> list[Holding]:
        session_id, int_account = self._session(credentials)
        config = await self._config(session_id)
        trading_url = config.trading_url or f"{self.base_url}/trading/secure/"
        payload = await self._get_json(
            f"{trading_url}v5/update/{int_account};jsessionid={session_id}",
            session_id,
            params={"portfolio": 0, "cashFunds": 0},
        )
        rows = ((payload.get("portfolio") or {}).get("value")) or []
        positions = [DegiroPosition.model_validate(row).fields() for row in rows]
        positions = [fields for fields in positions if fields.get("positionType") == "PRODUCT"]
        product_ids = [str(fields["id"]) for fields in positions if fields.get("id") is not None]

        products: dict[str, DegiroProduct] = {}
        if product_ids:
            search_url = config.product_search_url or f"{self.base_url}/product_search/secure/"
            info = await self._request_json(
                ProviderRequest(
                    "POST",
                    f"{search_url}v5/products/info",
                    provider=self.provider.value,
                    params={"intAccount": int_account, "sessionId": session_id},
                    headers=_DEFAULT_HEADERS,
                    json=product_ids,
                ),
                session_id,
            )
            raw = info.get("data", info) if isinstance(info, dict) else {}
            products = {str(key): DegiroProduct.model_validate(value) for key, value in raw.items() if isinstance(value, dict)}

        return [self._map_position(fields, products.get(str(fields.get("id")), DegiroProduct())) for fields in positions]

    def _map_position(self, fields: dict[str, Any], product: DegiroProduct) -> Holding:
        product_id = fields.get("id")
        quantity = to_float(fields.get("size"))
        price = to_float(fields.get("price"))
        break_even = to_float(fields.get("breakEvenPrice"))
        product_type = product.product_type or "STOCK"
        return self.holding(
            id=f"degiro-{product_id}",
            ticker=product.symbol or product.isin or f"ID-{product_id}",
            name=product.name or product.symbol or f"Product {product_id}",
            isin=product.isin or "",
            asset_type=PRODUCT_TYPES.get(product_type, product_type.title()),
            sector=product.category or "Equities",
            quantity=quantity,
            price=price,
            currency=product.currency or "EUR",
            cost_basis=quantity * break_even if break_even else 0.0,
            unrealized_pnl=to_float(fields.get("todayPlBase")),
            unrealized_pnl_pct=((price - break_even) / break_even) * 100 if break_even > 0 else 0.0,
        )

    async def fetch_income_events(self, credentials: Mapping[str, Any]) -> list[IncomeEvent]:
        session_id, int_account = self._session(credentials)
        config = await self._config(session_id)
        reporting_url = config.reporting_url or f"{self.base_url}/reporting/secure/"
        now = datetime.now(timezone.utc)
        payload = await self._get_json(
            f"{reporting_url}v4/accountoverview",
            session_id,
            params={
                "fromDate": degiro_date(now - timedelta(days=self._settings.income_lookback_days)),
                "toDate": degiro_date(now),
                "intAccount": int_account,
                "sessionId": session_id,
            },
        )
        container = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        movements = [DegiroCashMovement.model_validate(row) for row in container.get("cashMovements") or []]

        events: list[IncomeEvent] = []
        for movement in movements:
            if movement.type not in DIVIDEND_MOVEMENT_TYPES:
                continue
            description = movement.description or movement.type.replace("_", " ").title()
            text = f"{movement.type} {description}"
            if not self._classifier.is_income(text):
                continue
            when = parse_timestamp(movement.date)
            if when is None:
                continue
            events.append(
                self.income_event(
                    id=f"degiro-div-{movement.id or movement.date}-{movement.product_id}",
                    date=when,
                    ticker=movement.product or "",
                    name=movement.product or "",
                    amount=abs(to_float(movement.change)),
                    currency=movement.currency or "EUR",
                    category=self._classifier.classify(text),
                    description=description,
                )
            )
        return events

    # Helpers

    def _session(self, credentials: Mapping[str, Any]) -> tuple[str, str]:
        fields = self.require(credentials, ("session_id", "int_account"))
        return fields["session_id"], fields["int_account"]

    async def _config(self, session_id: str) -> DegiroConfig:
        payload = await self._get_json(f"{self.base_url}/login/secure/config", session_id)
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        return DegiroConfig.model_validate(data or {})

    async def _get_json(self, url: str, session_id: str, *, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        request = ProviderRequest("GET", url, provider=self.provider.value, params=params, headers=_DEFAULT_HEADERS)
        return await self._request_json(request, session_id)

    async def _request_json(self, request: ProviderRequest, session_id: str) -> dict[str, Any]:
        signed = SessionCookieSigner(session_id).sign(request)
        try:
            payload = await self._fetcher.call_json(signed)
        except ProviderError as exc:
            if exc.http_status in (401, 403):
                raise SessionExpired(provider=self.provider.value) from exc
            raise
        if isinstance(payload, dict) and payload.get("status") == DEGIRO_STATUS_SESSION_EXPIRED:
            raise SessionExpired(provider=self.provider.value)
        return payload if isinstance(payload, dict) else {"data": payload}


__all__ = ["AUTOMATED_ACCESS_BLOCKED", "DegiroAdapter", "degiro_date"]
