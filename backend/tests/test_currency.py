from datetime import datetime, timedelta, timezone

import httpx
import pytest

from portfolio_hub.services.currency import CurrencyConverter, RateSnapshot

RATES = {"result": "success", "base_code": "USD", "rates": {"USD": 1, "EUR": 0.9, "GBP": 0.8, "JPY": 150}}


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _converter(mock_fetcher, settings, respond):
    fetcher, recorder = mock_fetcher(respond)
    clock = Clock()
    return CurrencyConverter(fetcher, settings, clock=clock), recorder, clock


@pytest.mark.asyncio
async def test_rates_are_reused_until_ttl_expires(mock_fetcher, settings):
    converter, recorder, clock = _converter(mock_fetcher, settings, lambda request: httpx.Response(200, json=RATES))

    first = await converter.get_rates()
    assert first.rates == {"USD": 1.0, "EUR": 0.9, "GBP": 0.8}
    assert not first.stale

    clock.advance(settings.exchange_rate_ttl_seconds - 1)
    assert await converter.get_rates() is first
    assert len(recorder.requests) == 1

    clock.advance(2)
    await converter.get_rates()
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_failed_refresh_serves_previous_snapshot(mock_fetcher, settings):
    responses = [httpx.Response(200, json=RATES), httpx.Response(503)]
    converter, _, clock = _converter(mock_fetcher, settings, lambda request: responses.pop(0))

    fresh = await converter.get_rates()
    clock.advance(settings.exchange_rate_ttl_seconds + 1)
    stale = await converter.get_rates()

    assert stale.stale
    assert stale.rates == fresh.rates
    assert stale.fetched_at == fresh.fetched_at


@pytest.mark.asyncio
async def test_failure_without_snapshot_uses_identity_rates(mock_fetcher, settings):
    converter, _, _ = _converter(mock_fetcher, settings, lambda request: httpx.Response(200, json={"result": "error"}))

    snapshot = await converter.get_rates()
    assert snapshot.stale
    assert snapshot.rates == {"USD": 1.0}
    assert await converter.convert(10.0, "EUR", "USD") == 10.0


@pytest.mark.asyncio
async def test_convert_through_base(mock_fetcher, settings):
    converter, recorder, _ = _converter(mock_fetcher, settings, lambda request: httpx.Response(200, json=RATES))

    assert await converter.convert(90.0, "EUR", "USD") == pytest.approx(100.0)
    assert await converter.convert(90.0, "eur", "GBP") == pytest.approx(80.0)
    assert await converter.convert(5.0, "GBP", "GBP") == 5.0
    assert len(recorder.requests) == 1


def test_unknown_currency_passes_through():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    snapshot = RateSnapshot("USD", {"USD": 1.0, "EUR": 0.9}, now, now + timedelta(hours=1))
    assert snapshot.convert(12.5, "CHF", "USD") == 12.5
    assert snapshot.convert(12.5, "USD", "CHF") == 12.5
    assert snapshot.is_fresh(now)
    assert not snapshot.is_fresh(now + timedelta(hours=1))
    assert snapshot.to_dict()["base"] == "USD"
