"""Shared FastAPI dependencies for the aggregation API."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status

from portfolio_hub.config import get_settings
from portfolio_hub.services.aggregator import PortfolioAggregator
from portfolio_hub.services.connections import ConnectionService
from portfolio_hub.services.currency import CurrencyConverter


def verify_internal_token(request: Request, x_internal_token: str | None = Header(default=None)) -> None:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    if settings.internal_auth_token is None:
        return
    if x_internal_token != settings.internal_auth_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal token")


InternalAuth = Depends(verify_internal_token)


@dataclass
class RequestContext:
    user_id: str


def get_request_context(x_user_id: str | None = Header(default=None)) -> RequestContext:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user context")
    return RequestContext(user_id=x_user_id)


def get_aggregator(request: Request) -> PortfolioAggregator:
    return request.app.state.aggregator


def get_connection_service(request: Request) -> ConnectionService:
    return request.app.state.connections


def get_converter(request: Request) -> CurrencyConverter:
    return request.app.state.converter


__all__ = [
    "InternalAuth",
    "RequestContext",
    "get_aggregator",
    "get_connection_service",
    "get_converter",
    "get_request_context",
]
