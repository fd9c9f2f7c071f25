"""Secret redaction in log output and provider call spans."""

import logging

import httpx

from portfolio_hub.core.logging import RedactSecretsFilter, redact
from portfolio_hub.core.telemetry import redact_span_url


class RecordingSpan:
    def __init__(self, recording: bool = True) -> None:
        self.recording = recording
        self.attributes: dict[str, str] = {}

    def is_recording(self) -> bool:
        return self.recording

    def set_attribute(self, key: str, value: str) -> None:
        self.attributes[key] = value


def test_redact_masks_signed_and_session_urls():
    signed = "https://api.binance.com/api/v3/account?timestamp=1700000000000&recvWindow=5000&signature=abcdef0123"
    assert redact(signed) == "https://api.binance.com/api/v3/account?timestamp=1700000000000&recvWindow=5000&signature=***"

    degiro = "https://trader.degiro.nl/trading/secure/v5/update/1234567;jsessionid=ABC.prod_b_112_1?sessionId=ABC.prod_b_112_1"
    assert "ABC.prod" not in redact(degiro)
    assert redact("Cookie: JSESSIONID=abc123;") == "Cookie: JSESSIONID=***;"
    assert redact("no secrets here") == "no secrets here"


def test_filter_rewrites_formatted_message():
    record = logging.LogRecord(
        "portfolio_hub.providers.http",
        logging.WARNING,
        __file__,
        1,
        "%s throttled request to %s",
        ("binance", "https://api.binance.com/sapi/v1/asset/assetDividend?signature=deadbeef"),
        None,
    )

    assert RedactSecretsFilter().filter(record)

    assert record.getMessage() == "binance throttled request to https://api.binance.com/sapi/v1/asset/assetDividend?signature=***"


def test_filter_leaves_clean_records_untouched():
    record = logging.LogRecord("portfolio_hub", logging.INFO, __file__, 1, "cached %s", ("portfolio",), None)

    assert RedactSecretsFilter().filter(record)

    assert record.args == ("portfolio",)


def test_span_url_is_redacted():
    span = RecordingSpan()
    request = httpx.Request("GET", "https://trader.degiro.nl/pa/secure/client?sessionId=secret-session")

    redact_span_url(span, request)

    assert span.attributes == {
        "http.url": "https://trader.degiro.nl/pa/secure/client?sessionId=***",
        "url.full": "https://trader.degiro.nl/pa/secure/client?sessionId=***",
    }


def test_span_hook_skips_unsampled_spans():
    span = RecordingSpan(recording=False)

    redact_span_url(span, httpx.Request("GET", "https://api.binance.com/api/v3/account?signature=abc"))

    assert span.attributes == {}
