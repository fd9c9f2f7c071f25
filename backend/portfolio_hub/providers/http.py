"""Single-shot HTTP calls against provider APIs with uniform error mapping."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Mapping

import httpx

from portfolio_hub.config import get_settings
from portfolio_hub.core.errors import ProviderError, RateLimited, Unreachable

logger = logging.getLogger(__name__)

# Values above this are epoch timestamps rather than a number of seconds.
_EPOCH_THRESHOLD = 1_000_000_000
_MESSAGE_KEYS = ("msg", "message", "error", "statusText")
_HTML_PREFIXES = ("<!doctype", "<html")


@dataclass(frozen=True)
class ProviderRequest:
    """Description of one outbound provider call."""

    method: str
    url: str
    provider: str
    params: Mapping[str, Any] | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    json: Any = None
    throttle_statuses: tuple[int, ...] = (429,)
    retry_after_header: str = "retry-after"
    timeout: float | None = None


def looks_like_html(response: httpx.Response) -> bool:
    """Return ``True`` when a response carries an HTML page instead of JSON."""

    content_type = response.headers.get("content-type", "").lower()
    if "text/html" in content_type:
        return True
    head = response.content[:512].lstrip().lower()
    return any(head.startswith(prefix.encode()) for prefix in _HTML_PREFIXES)


def parse_retry_after(value: str | None, *, now: float | None = None) -> float | None:
    """Convert a retry header value into a delay in seconds."""

    if value is None or not value.strip():
        return None
    now = time.time() if now is None else now
    try:
        number = float(value)
    except ValueError:
        try:
            moment = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        return max(moment.timestamp() - now, 0.0)
    if number > _EPOCH_THRESHOLD:
        return max(number - now, 0.0)
    return max(number, 0.0)


def decode_json(response: httpx.Response) -> Any:
    """Decode a response body, treating an empty body as an empty object."""

    text = response.text
    if not text.strip():
        return {}
    return json.loads(text)


def _error_details(response: httpx.Response) -> tuple[str | None, Any]:
    try:
        payload = decode_json(response)
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    message = next((str(payload[key]) for key in _MESSAGE_KEYS if payload.get(key)), None)
    return message, payload.get("code")


class ResilientFetcher:
    """Issue provider calls with a bounded timeout and a global in-flight limit.

    The fetcher never retries and never caches. Throttling surfaces as
    :class:`RateLimited`, other non-2xx statuses as :class:`ProviderError` and
    transport failures (including timeouts) as :class:`Unreachable`.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float | None = None,
        max_in_flight: int | None = None,
    ) -> None:
        settings = get_settings()
        self._timeout = timeout or settings.provider_timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = client is None
        self._semaphore = asyncio.Semaphore(max_in_flight or settings.max_in_flight_requests)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def call(self, request: ProviderRequest, *, raise_for_status: bool = True) -> httpx.Response:
        async with self._semaphore:
            try:
                response = await self._client.request(
                    request.method,
                    request.url,
                    params=request.params,
                    headers=dict(request.headers),
                    json=request.json,
                    timeout=request.timeout or self._timeout,
                )
            except httpx.TimeoutException as exc:
                raise Unreachable(f"{request.provider} did not respond in time", provider=request.provider) from exc
            except httpx.TransportError as exc:
                raise Unreachable(f"{request.provider} is unreachable: {exc}", provider=request.provider) from exc

        if response.status_code in request.throttle_statuses:
            retry_after = parse_retry_after(response.headers.get(request.retry_after_header))
            logger.warning("%s throttled request to %s", request.provider, request.url)
            raise RateLimited(retry_after, provider=request.provider)

        if raise_for_status and not response.is_success:
            message, code = _error_details(response)
            raise ProviderError(
                message or f"{request.provider} returned {response.status_code}",
                http_status=response.status_code,
                provider_code=code,
                provider=request.provider,
            )
        return response

    async def call_json(self, request: ProviderRequest) -> Any:
        response = await self.call(request)
        if looks_like_html(response):
            raise ProviderError(
                f"{request.provider} returned an HTML page instead of JSON",
                http_status=response.status_code,
                provider=request.provider,
            )
        try:
            return decode_json(response)
        except ValueError as exc:
            raise ProviderError(
                f"{request.provider} returned malformed JSON",
                http_status=response.status_code,
                provider=request.provider,
            ) from exc


__all__ = [
    "ProviderRequest",
    "ResilientFetcher",
    "decode_json",
    "looks_like_html",
    "parse_retry_after",
]
