import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from portfolio_hub.core.errors import InvalidCredentials, ProviderUnavailable, RateLimited, SecondFactorRequired
from portfolio_hub.main import create_app
from portfolio_hub.models import ProviderName
from portfolio_hub.providers.registry import ProviderRegistry

USER_HEADERS = {"X-User-Id": "user-1"}
RATES = {"rates": {"USD": 1, "EUR": 0.9, "GBP": 0.8}}


def _upstream(request: httpx.Request) -> httpx.Response:
    if request.url.host == "open.exchangerate-api.com":
        return httpx.Response(200, json=RATES)
    if request.url.path == "/login/secure/config":
        return httpx.Response(200, json={"data": {"paUrl": "https://trader.degiro.nl/pa/secure/"}})
    if request.url.path == "/pa/secure/client":
        return httpx.Response(200, json={"data": {"intAccount": 42, "displayName": "Sam"}})
    return httpx.Response(404)


def _client(settings, database, registry=None):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(_upstream))
    app = create_app(settings, database=database, http_client=http_client, registry=registry)

    @asynccontextmanager
    async def _manager():
        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                yield client

    return _manager


def test_health(settings, database):
    client_manager = _client(settings, database)

    async def _scenario():
        async with client_manager() as api_client:
            response = await api_client.get("/health")
            assert response.status_code == 200
            assert response.json()["status"] == "ok"

            categories = await api_client.get("/income/categories")
            assert categories.json() == ["Dividend", "Yield", "Staking", "Distribution"]

    asyncio.run(_scenario())


def test_user_header_is_required(settings, database):
    client_manager = _client(settings, database)

    async def _scenario():
        async with client_manager() as api_client:
            assert (await api_client.get("/portfolio")).status_code == 401
            assert (await api_client.get("/income")).status_code == 401
            assert (await api_client.get("/connections")).status_code == 401

    asyncio.run(_scenario())


def test_internal_token(settings, database):
    settings = settings.model_copy(update={"internal_auth_token": "s3cret"})
    client_manager = _client(settings, database)

    async def _scenario():
        async with client_manager() as api_client:
            denied = await api_client.get("/portfolio", headers=USER_HEADERS)
            assert denied.status_code == 401

            allowed = await api_client.get("/portfolio", headers={**USER_HEADERS, "X-Internal-Token": "s3cret"})
            assert allowed.status_code == 200
            assert allowed.json()["no_connections"] is True

    asyncio.run(_scenario())


def test_connect_aggregate_and_disconnect(settings, database, static_adapter, holding_factory, event_factory):
    t212 = static_adapter(
        ProviderName.TRADING212,
        holdings=[holding_factory(ProviderName.TRADING212, "AAPL", 2, 100)],
        events=[event_factory(ProviderName.TRADING212, "AAPL", 1.5, datetime.now(timezone.utc))],
    )
    registry = ProviderRegistry([t212, static_adapter(ProviderName.BINANCE)])
    client_manager = _client(settings, database, registry)

    async def _scenario():
        async with client_manager() as api_client:
            connected = await api_client.post(
                "/connections/trading212/connect",
                json={"api_key": "key", "api_secret": "secret"},
                headers=USER_HEADERS,
            )
            assert connected.status_code == 200
            assert connected.json()["connected"] is True
            assert connected.json()["provider"] == "trading212"

            statuses = {row["provider"]: row for row in (await api_client.get("/connections", headers=USER_HEADERS)).json()}
            assert statuses["trading212"]["connected"] is True
            assert statuses["binance"]["status"] == "disconnected"

            portfolio = (await api_client.get("/portfolio", headers=USER_HEADERS)).json()
            assert portfolio["total_value"] == 200
            assert portfolio["sources"] == ["trading212"]
            assert portfolio["cached"] is False

            again = (await api_client.get("/portfolio", headers=USER_HEADERS)).json()
            assert again["cached"] is True

            invalidated = await api_client.post("/portfolio", headers=USER_HEADERS)
            assert invalidated.json() == {"invalidated": True, "resource": "portfolio"}
            assert (await api_client.get("/portfolio", headers=USER_HEADERS)).json()["cached"] is False

            in_gbp = (await api_client.get("/portfolio", params={"currency": "GBP"}, headers=USER_HEADERS)).json()
            assert in_gbp["reporting_currency"] == "GBP"
            assert in_gbp["total_value"] == pytest.approx(160)

            income = (await api_client.get("/income", headers=USER_HEADERS)).json()
            assert income["count"] == 1
            assert income["by_category"] == {"Dividend": 1.5}

            removed = await api_client.delete("/connections/trading212", headers=USER_HEADERS)
            assert removed.json() == {"disconnected": True, "removed": True}
            status = (await api_client.get("/connections/trading212/status", headers=USER_HEADERS)).json()
            assert status["connected"] is False

            portfolio = (await api_client.get("/portfolio", headers=USER_HEADERS)).json()
            assert portfolio["no_connections"] is True

    asyncio.run(_scenario())


def test_connect_error_responses(settings, database, static_adapter):
    registry = ProviderRegistry(
        [
            static_adapter(ProviderName.DEGIRO, auth_error=SecondFactorRequired(provider="degiro")),
            static_adapter(ProviderName.TRADING212, auth_error=InvalidCredentials("bad key", provider="trading212")),
            static_adapter(ProviderName.BINANCE, auth_error=RateLimited(30, provider="binance")),
            static_adapter(
                ProviderName.CRYPTOCOM,
                auth_error=ProviderUnavailable("maintenance", provider="cryptocom"),
            ),
        ]
    )
    client_manager = _client(settings, database, registry)

    async def _scenario():
        async with client_manager() as api_client:
            totp = await api_client.post(
                "/connections/degiro/connect", json={"username": "sam", "password": "pw"}, headers=USER_HEADERS
            )
            assert totp.status_code == 200
            assert totp.json()["requires_totp"] is True

            invalid = await api_client.post("/connections/trading212/connect", json={}, headers=USER_HEADERS)
            assert invalid.status_code == 401
            assert invalid.json()["code"] == "invalid_credentials"

            limited = await api_client.post("/connections/binance/connect", json={}, headers=USER_HEADERS)
            assert limited.status_code == 429
            assert limited.headers["Retry-After"] == "30"

            unavailable = await api_client.post("/connections/cryptocom/connect", headers=USER_HEADERS)
            assert unavailable.status_code == 503
            assert unavailable.json()["manual_session_supported"] is False

            unknown = await api_client.post("/connections/robinhood/connect", json={}, headers=USER_HEADERS)
            assert unknown.status_code == 400

            statuses = (await api_client.get("/connections", headers=USER_HEADERS)).json()
            assert all(row["connected"] is False for row in statuses)

    asyncio.run(_scenario())


def test_degiro_manual_session_and_validation(settings, database):
    client_manager = _client(settings, database)

    async def _scenario():
        async with client_manager() as api_client:
            response = await api_client.post(
                "/connections/degiro/session", json={"session_id": "browser-session"}, headers=USER_HEADERS
            )
            assert response.status_code == 200
            assert response.json()["account"] == {"int_account": 42, "first_name": "Sam"}

            status = (await api_client.get("/connections/degiro/status", headers=USER_HEADERS)).json()
            assert status["connected"] is True

            missing = await api_client.post(
                "/connections/binance/connect", json={"api_key": "only-key"}, headers=USER_HEADERS
            )
            assert missing.status_code == 400
            assert missing.json()["code"] == "validation_error"

    asyncio.run(_scenario())


def test_rates_and_currency_validation(settings, database):
    client_manager = _client(settings, database)

    async def _scenario():
        async with client_manager() as api_client:
            rates = (await api_client.get("/rates")).json()
            assert rates["base"] == "USD"
            assert rates["rates"]["EUR"] == 0.9
            assert rates["supported"] == ["USD", "EUR", "GBP"]
            assert rates["stale"] is False

            unsupported = await api_client.get("/portfolio", params={"currency": "JPY"}, headers=USER_HEADERS)
            assert unsupported.status_code == 400

    asyncio.run(_scenario())
