"""Translate engine errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from portfolio_hub.core.errors import (
    AggregatorError,
    IntegrityError,
    InvalidCredentials,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    SecondFactorRequired,
    SessionExpired,
    Unreachable,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: tuple[tuple[type[AggregatorError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidCredentials, status.HTTP_401_UNAUTHORIZED),
    (SessionExpired, status.HTTP_401_UNAUTHORIZED),
    (RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
    (ProviderUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (Unreachable, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (IntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: AggregatorError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def aggregator_error_handler(request: Request, exc: AggregatorError) -> JSONResponse:
    if isinstance(exc, SecondFactorRequired):
        return JSONResponse({"requires_totp": True, "provider": exc.provider, "message": exc.message})

    code = status_for(exc)
    body = exc.to_dict()
    headers: dict[str, str] = {}
    if isinstance(exc, ProviderUnavailable):
        body["manual_session_supported"] = exc.provider == "degiro"
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(round(exc.retry_after)))
    if isinstance(exc, IntegrityError):
        logger.error("Credential integrity failure on %s %s", request.method, request.url.path)
    return JSONResponse(body, status_code=code, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AggregatorError, aggregator_error_handler)  # type: ignore[arg-type]


__all__ = ["register_error_handlers", "status_for"]
