"""Request signer tests: pure functions, no network."""

from __future__ import annotations

import hashlib
import hmac
from urllib.parse import parse_qsl

import pytest

from portfolio_hub.providers.http import ProviderRequest
from portfolio_hub.providers.signing import (
    BasicAuthSigner,
    BinanceSigner,
    CryptoComSigner,
    DegiroLoginOutcome,
    SessionCookieSigner,
    basic_auth_header,
    binance_query_string,
    cryptocom_body,
    cryptocom_param_string,
    cryptocom_signature,
    degiro_login_body,
    degiro_login_outcome,
    degiro_login_path,
    extract_session_id,
)

BINANCE_DOC_SECRET = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"


def test_binance_matches_published_example():
    params = {
        "symbol": "LTCBTC",
        "side": "BUY",
        "type": "LIMIT",
        "timeInForce": "GTC",
        "quantity": 1,
        "price": "0.1",
        "recvWindow": 5000,
    }
    query = binance_query_string(params, BINANCE_DOC_SECRET, 1499827319559, recv_window=5000)
    assert query == (
        "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC&quantity=1&price=0.1"
        "&recvWindow=5000&timestamp=1499827319559"
        "&signature=c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"
    )


def test_binance_keeps_insertion_order_and_appends_signature_last():
    query = binance_query_string({"size": 100, "type": "REWARDS", "current": 2}, "secret", 1700000000000)
    keys = [key for key, _ in parse_qsl(query)]
    assert keys == ["size", "type", "current", "timestamp", "recvWindow", "signature"]

    unsigned, signature = query.rsplit("&signature=", 1)
    expected = hmac.new(b"secret", unsigned.encode(), hashlib.sha256).hexdigest()
    assert signature == expected


def test_binance_signature_is_deterministic_and_parameter_sensitive():
    first = binance_query_string({"limit": 500}, "secret", 1)
    assert first == binance_query_string({"limit": 500}, "secret", 1)
    assert first != binance_query_string({"limit": 501}, "secret", 1)
    assert first != binance_query_string({"limit": 500}, "secret", 2)
    assert first != binance_query_string({"limit": 500}, "other", 1)


def test_binance_signer_builds_url_and_header():
    request = ProviderRequest("GET", "https://api.binance.com/api/v3/account", provider="binance")
    signed = BinanceSigner("key", "secret").sign(request, timestamp_ms=1700000000000)

    assert signed.params is None
    assert signed.headers["X-MBX-APIKEY"] == "key"
    assert signed.url.startswith("https://api.binance.com/api/v3/account?timestamp=1700000000000&recvWindow=10000&signature=")
    assert request.url == "https://api.binance.com/api/v3/account"


def test_binance_signer_requires_timestamp():
    request = ProviderRequest("GET", "https://api.binance.com/api/v3/account", provider="binance")
    with pytest.raises(ValueError):
        BinanceSigner("key", "secret").sign(request)


def test_cryptocom_param_string_sorts_keys():
    assert cryptocom_param_string({"page_size": 200, "instrument_name": "CRO_USD"}) == "instrument_nameCRO_USDpage_size200"
    assert cryptocom_param_string({}) == ""
    assert cryptocom_param_string(None) == ""


def test_cryptocom_signature_covers_method_id_key_params_nonce():
    payload = "private/get-trades" + "11" + "api-key" + "page_size200" + "22"
    expected = hmac.new(b"secret", payload.encode(), hashlib.sha256).hexdigest()
    assert cryptocom_signature("private/get-trades", 11, "api-key", "secret", {"page_size": 200}, 22) == expected


def test_cryptocom_body_and_signer():
    body = cryptocom_body("private/user-balance", 5, "api-key", "secret", {}, 5)
    assert set(body) == {"id", "method", "api_key", "params", "sig", "nonce"}
    assert body["params"] == {}

    request = ProviderRequest(
        "POST",
        "https://api.crypto.com/exchange/v1/private/user-balance",
        provider="cryptocom",
        json={"method": "private/user-balance", "params": {}},
    )
    signed = CryptoComSigner("api-key", "secret").sign(request, timestamp_ms=5)
    assert signed.json == body
    assert signed.headers["Content-Type"] == "application/json"


def test_basic_auth_header():
    assert basic_auth_header("user", "pass") == "Basic dXNlcjpwYXNz"
    request = ProviderRequest("GET", "https://live.trading212.com/api/v0/equity/positions", provider="trading212")
    assert BasicAuthSigner("user", "pass").sign(request).headers["Authorization"] == "Basic dXNlcjpwYXNz"


def test_degiro_login_body_and_path():
    body = degiro_login_body("alice", "pw")
    assert body == {
        "username": "alice",
        "password": "pw",
        "isPassCodeReset": False,
        "isRedirectToMobile": False,
        "queryParams": {},
    }
    assert degiro_login_path() == "/login/secure/login"
    assert degiro_login_body("alice", "pw", "123456")["oneTimePassword"] == "123456"
    assert degiro_login_path("123456") == "/login/secure/login/totp"


@pytest.mark.parametrize(
    ("body", "outcome"),
    [
        ({"status": 0}, DegiroLoginOutcome.SUCCESS),
        ({}, DegiroLoginOutcome.SUCCESS),
        ({"status": 6}, DegiroLoginOutcome.SECOND_FACTOR),
        ({"statusCode": 6}, DegiroLoginOutcome.SECOND_FACTOR),
        ({"status": 1, "statusText": "totpNeeded"}, DegiroLoginOutcome.SECOND_FACTOR),
        ({"status": 3}, DegiroLoginOutcome.SESSION_EXPIRED),
        ({"status": 9}, DegiroLoginOutcome.REJECTED),
    ],
)
def test_degiro_login_outcome(body, outcome):
    assert degiro_login_outcome(body) is outcome


def test_extract_session_id_prefers_cookie_then_body():
    cookies = ["other=1; Path=/", "JSESSIONID=ABC123.prod_b_112_1; Path=/; Secure; HttpOnly"]
    assert extract_session_id(cookies, {"sessionId": "body"}) == "ABC123.prod_b_112_1"
    assert extract_session_id([], {"sessionId": "body"}) == "body"
    assert extract_session_id(None, None) is None
    assert extract_session_id("JSESSIONID=single; Path=/") == "single"


def test_session_cookie_signer():
    request = ProviderRequest("GET", "https://trader.degiro.nl/login/secure/config", provider="degiro")
    assert SessionCookieSigner("abc").sign(request).headers["Cookie"] == "JSESSIONID=abc;"
