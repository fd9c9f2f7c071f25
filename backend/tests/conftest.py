import asyncio
import inspect
import pathlib
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

import httpx
import pytest
from sqlalchemy.pool import NullPool

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_hub.config import AppSettings  # noqa: E402
from portfolio_hub.core.errors import AggregatorError  # noqa: E402
from portfolio_hub.db import Database  # noqa: E402
from portfolio_hub.models import ProviderName  # noqa: E402
from portfolio_hub.providers.base import AuthResult, ProviderAdapter  # noqa: E402
from portfolio_hub.providers.http import ResilientFetcher  # noqa: E402
from portfolio_hub.schemas import Holding, IncomeEvent  # noqa: E402

TEST_KEY = "0f" * 32
FIXED_MS = 1_700_000_000_000


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        arguments = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        try:
            asyncio.set_event_loop(loop)
            loop.run_until_complete(test_function(**arguments))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> AppSettings:
    return AppSettings(
        credential_encryption_key=TEST_KEY,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'portfolio_hub.db'}",
        telemetry_enabled=False,
    )


@pytest.fixture
def database(settings: AppSettings) -> Database:
    """SQLite database without pooling so each test loop opens fresh connections."""

    return Database(settings.database_url, poolclass=NullPool)


class Recorder:
    """``httpx.MockTransport`` handler that records requests and replies via a callback."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def mock_fetcher(settings: AppSettings) -> Callable[[Callable[[httpx.Request], httpx.Response]], tuple[ResilientFetcher, Recorder]]:
    def build(respond: Callable[[httpx.Request], httpx.Response]) -> tuple[ResilientFetcher, Recorder]:
        recorder = Recorder(respond)
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        return ResilientFetcher(client, timeout=5, max_in_flight=4), recorder

    return build


class StaticAdapter(ProviderAdapter):
    """Adapter returning canned data, or raising ``error`` from every call."""

    def __init__(
        self,
        provider: ProviderName,
        settings: AppSettings,
        *,
        holdings: list[Holding] | None = None,
        events: list[IncomeEvent] | None = None,
        error: Exception | None = None,
        auth_error: AggregatorError | None = None,
    ) -> None:
        unused = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        super().__init__(ResilientFetcher(unused, timeout=1, max_in_flight=1), settings)
        self.provider = provider
        self.display_name = provider.value.title()
        self._holdings = holdings or []
        self._events = events or []
        self._error = error
        self._auth_error = auth_error
        self.calls = 0

    async def authenticate(self, credentials: Mapping[str, Any]) -> AuthResult:
        if self._auth_error is not None:
            raise self._auth_error
        return AuthResult(credentials=dict(credentials), account={"provider": self.provider.value})

    async def fetch_holdings(self, credentials: Mapping[str, Any]) -> list[Holding]:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._holdings)

    async def fetch_income_events(self, credentials: Mapping[str, Any]) -> list[IncomeEvent]:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._events)


@pytest.fixture
def static_adapter(settings: AppSettings) -> Callable[..., StaticAdapter]:
    def build(provider: ProviderName, **kwargs: Any) -> StaticAdapter:
        return StaticAdapter(provider, settings, **kwargs)

    return build


def make_holding(provider: ProviderName, ticker: str, quantity: float, price: float, currency: str = "USD") -> Holding:
    return Holding(
        id=f"{provider.value}-{ticker}",
        source=provider.value,
        broker=provider.value.title(),
        ticker=ticker,
        name=ticker,
        quantity=quantity,
        price=price,
        value=quantity * price,
        currency=currency,
    )


def make_event(provider: ProviderName, ticker: str, amount: float, when: datetime, category: str = "Dividend") -> IncomeEvent:
    return IncomeEvent(
        id=f"{provider.value}-{ticker}-{when.isoformat()}",
        date=when if when.tzinfo else when.replace(tzinfo=timezone.utc),
        ticker=ticker,
        name=ticker,
        amount=amount,
        currency="USD",
        category=category,
        source=provider.value,
        broker=provider.value.title(),
    )


@pytest.fixture
def holding_factory() -> Callable[..., Holding]:
    return make_holding


@pytest.fixture
def event_factory() -> Callable[..., IncomeEvent]:
    return make_event
