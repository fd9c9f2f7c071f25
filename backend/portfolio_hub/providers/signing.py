"""Request signing strategies for the supported providers.

Every signer is a pure function of its inputs: timestamps and nonces are
passed in by the caller so signatures can be reproduced without a network.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol
from urllib.parse import urlencode

from .http import ProviderRequest

DEGIRO_LOGIN_PATH = "/login/secure/login"
DEGIRO_TOTP_PATH = "/login/secure/login/totp"
BINANCE_RECV_WINDOW_MS = 10000

_JSESSIONID = re.compile(r"JSESSIONID=([^;]+)")


class RequestSigner(Protocol):
    def sign(self, request: ProviderRequest, *, timestamp_ms: int | None = None) -> ProviderRequest:
        ...


def hmac_sha256_hex(secret: str, payload: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# Basic auth


def basic_auth_header(api_key: str, api_secret: str) -> str:
    token = base64.b64encode(f"{api_key}:{api_secret}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


@dataclass(frozen=True)
class BasicAuthSigner:
    api_key: str
    api_secret: str

    def sign(self, request: ProviderRequest, *, timestamp_ms: int | None = None) -> ProviderRequest:
        headers = {**request.headers, "Authorization": basic_auth_header(self.api_key, self.api_secret)}
        return replace(request, headers=headers)


# Binance: insertion-ordered query string


def binance_query_string(
    params: Mapping[str, Any] | None,
    secret: str,
    timestamp_ms: int,
    recv_window: int = BINANCE_RECV_WINDOW_MS,
) -> str:
    """Return the signed query string with ``signature`` as the final parameter."""

    ordered: dict[str, Any] = {k: v for k, v in (params or {}).items() if v is not None}
    ordered["timestamp"] = timestamp_ms
    ordered["recvWindow"] = recv_window
    query = urlencode([(key, _stringify(value)) for key, value in ordered.items()])
    return f"{query}&signature={hmac_sha256_hex(secret, query)}"


@dataclass(frozen=True)
class BinanceSigner:
    api_key: str
    api_secret: str
    recv_window: int = BINANCE_RECV_WINDOW_MS

    def sign(self, request: ProviderRequest, *, timestamp_ms: int | None = None) -> ProviderRequest:
        if timestamp_ms is None:
            raise ValueError("Binance signing requires a timestamp")
        query = binance_query_string(request.params, self.api_secret, timestamp_ms, self.recv_window)
        headers = {**request.headers, "X-MBX-APIKEY": self.api_key}
        return replace(request, url=f"{request.url}?{query}", params=None, headers=headers)


# Crypto.com: lexicographically sorted key+value concatenation, signature in body


def cryptocom_param_string(params: Mapping[str, Any] | None) -> str:
    if not params:
        return ""
    return "".join(f"{key}{_stringify(params[key])}" for key in sorted(params))


def cryptocom_signature(
    method: str,
    request_id: int,
    api_key: str,
    secret: str,
    params: Mapping[str, Any] | None,
    nonce: int,
) -> str:
    payload = f"{method}{request_id}{api_key}{cryptocom_param_string(params)}{nonce}"
    return hmac_sha256_hex(secret, payload)


def cryptocom_body(
    method: str,
    request_id: int,
    api_key: str,
    secret: str,
    params: Mapping[str, Any] | None,
    nonce: int,
) -> dict[str, Any]:
    return {
        "id": request_id,
        "method": method,
        "api_key": api_key,
        "params": dict(params or {}),
        "sig": cryptocom_signature(method, request_id, api_key, secret, params, nonce),
        "nonce": nonce,
    }


@dataclass(frozen=True)
class CryptoComSigner:
    """Sign a request whose JSON payload is ``{"method": ..., "params": {...}}``."""

    api_key: str
    api_secret: str

    def sign(self, request: ProviderRequest, *, timestamp_ms: int | None = None) -> ProviderRequest:
        if timestamp_ms is None:
            raise ValueError("Crypto.com signing requires a nonce")
        payload = request.json or {}
        body = cryptocom_body(
            payload["method"],
            timestamp_ms,
            self.api_key,
            self.api_secret,
            payload.get("params"),
            timestamp_ms,
        )
        headers = {**request.headers, "Content-Type": "application/json"}
        return replace(request, json=body, headers=headers)


# DeGiro: login call followed by a session cookie


class DegiroLoginOutcome(str, Enum):
    SUCCESS = "success"
    SECOND_FACTOR = "second_factor"
    SESSION_EXPIRED = "session_expired"
    REJECTED = "rejected"


DEGIRO_STATUS_SUCCESS = 0
DEGIRO_STATUS_SESSION_EXPIRED = 3
DEGIRO_STATUS_TOTP_NEEDED = 6
DEGIRO_STATUS_AUTH_FAILED = 9


def degiro_login_body(username: str, password: str, one_time_password: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "username": username,
        "password": password,
        "isPassCodeReset": False,
        "isRedirectToMobile": False,
        "queryParams": {},
    }
    if one_time_password:
        body["oneTimePassword"] = one_time_password
    return body


def degiro_login_path(one_time_password: str | None = None) -> str:
    return DEGIRO_TOTP_PATH if one_time_password else DEGIRO_LOGIN_PATH


def degiro_login_outcome(body: Mapping[str, Any] | None) -> DegiroLoginOutcome:
    """Interpret the status fields of a DeGiro login response body."""

    body = body or {}
    status = body.get("status")
    if status == DEGIRO_STATUS_TOTP_NEEDED or body.get("statusCode") == DEGIRO_STATUS_TOTP_NEEDED:
        return DegiroLoginOutcome.SECOND_FACTOR
    if "totp" in str(body.get("statusText") or "").lower():
        return DegiroLoginOutcome.SECOND_FACTOR
    if status == DEGIRO_STATUS_SESSION_EXPIRED:
        return DegiroLoginOutcome.SESSION_EXPIRED
    if status == DEGIRO_STATUS_AUTH_FAILED:
        return DegiroLoginOutcome.REJECTED
    return DegiroLoginOutcome.SUCCESS


def extract_session_id(set_cookie: Iterable[str] | str | None, body: Mapping[str, Any] | None = None) -> str | None:
    """Find the session id in ``Set-Cookie`` headers, falling back to the body."""

    if isinstance(set_cookie, str):
        set_cookie = [set_cookie]
    for cookie in set_cookie or ():
        match = _JSESSIONID.search(cookie)
        if match:
            return match.group(1)
    if body and body.get("sessionId"):
        return str(body["sessionId"])
    return None


def degiro_session_cookie(session_id: str) -> dict[str, str]:
    return {"Cookie": f"JSESSIONID={session_id};"}


@dataclass(frozen=True)
class SessionCookieSigner:
    session_id: str

    def sign(self, request: ProviderRequest, *, timestamp_ms: int | None = None) -> ProviderRequest:
        headers = {**request.headers, **degiro_session_cookie(self.session_id)}
        return replace(request, headers=headers)


__all__ = [
    "BINANCE_RECV_WINDOW_MS",
    "BasicAuthSigner",
    "BinanceSigner",
    "CryptoComSigner",
    "DegiroLoginOutcome",
    "RequestSigner",
    "SessionCookieSigner",
    "basic_auth_header",
    "binance_query_string",
    "cryptocom_body",
    "cryptocom_param_string",
    "cryptocom_signature",
    "degiro_login_body",
    "degiro_login_outcome",
    "degiro_login_path",
    "degiro_session_cookie",
    "extract_session_id",
    "hmac_sha256_hex",
]
