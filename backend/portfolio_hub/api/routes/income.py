"""Aggregated income endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from portfolio_hub.schemas import IncomeResult, InvalidateResponse
from portfolio_hub.services.aggregator import INCOME_KEY, PortfolioAggregator
from portfolio_hub.services.income import IncomeClassifier

from ..dependencies import InternalAuth, RequestContext, get_aggregator, get_request_context

router = APIRouter(dependencies=[InternalAuth])


@router.get("/categories", response_model=list[str])
async def list_income_categories() -> list[str]:
    return IncomeClassifier.describe_categories()


@router.get("", response_model=IncomeResult)
async def get_income(
    refresh: bool = Query(default=False, description="Bypass the cache"),
    currency: str | None = Query(default=None, description="Reporting currency"),
    context: RequestContext = Depends(get_request_context),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> IncomeResult:
    return await aggregator.get_income(context.user_id, refresh=refresh, reporting_currency=currency)


@router.post("", response_model=InvalidateResponse)
async def invalidate_income(
    context: RequestContext = Depends(get_request_context),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> InvalidateResponse:
    await aggregator.invalidate(context.user_id, INCOME_KEY)
    return InvalidateResponse(resource=INCOME_KEY)
