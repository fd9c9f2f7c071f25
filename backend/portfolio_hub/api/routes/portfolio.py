"""Aggregated holdings endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from portfolio_hub.schemas import InvalidateResponse, PortfolioResult
from portfolio_hub.services.aggregator import PORTFOLIO_KEY, PortfolioAggregator

from ..dependencies import InternalAuth, RequestContext, get_aggregator, get_request_context

router = APIRouter(dependencies=[InternalAuth])


@router.get("", response_model=PortfolioResult)
async def get_portfolio(
    refresh: bool = Query(default=False, description="Bypass the cache"),
    currency: str | None = Query(default=None, description="Reporting currency"),
    context: RequestContext = Depends(get_request_context),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> PortfolioResult:
    return await aggregator.get_portfolio(context.user_id, refresh=refresh, reporting_currency=currency)


@router.post("", response_model=InvalidateResponse)
async def invalidate_portfolio(
    context: RequestContext = Depends(get_request_context),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> InvalidateResponse:
    await aggregator.invalidate(context.user_id, PORTFOLIO_KEY)
    return InvalidateResponse(resource=PORTFOLIO_KEY)
