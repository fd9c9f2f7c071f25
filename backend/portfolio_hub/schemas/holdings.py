"""Normalized holding schema and portfolio aggregate response."""

from __future__ import annotations

import math
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .errors import ProviderFailureSchema


def non_negative_finite(value: float | int | str | None) -> float:
    """Coerce ``value`` to a finite float >= 0, falling back to 0."""

    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def finite_or_zero(value: float | int | str | None) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


class Holding(BaseModel):
    id: str
    source: str
    broker: str
    ticker: str
    name: str
    isin: str = ""
    asset_type: str = Field(default="Stock", examples=["Stock", "ETF", "Crypto"])
    sector: str = "Equities"
    quantity: float = 0.0
    price: float = 0.0
    value: float = 0.0
    currency: str = "USD"
    reporting_value: float = 0.0
    reporting_currency: str = "USD"
    cost_basis: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0
    annual_income: float = 0.0
    yield_percent: float = 0.0
    frequency: str = "Unknown"
    next_pay_date: str | None = None
    safety_rating: str | None = None
    earn_type: str | None = None

    @field_validator("price", "value", "reporting_value", mode="before")
    @classmethod
    def _non_negative(cls, value: float | int | str | None) -> float:
        return non_negative_finite(value)

    @field_validator(
        "quantity",
        "cost_basis",
        "unrealized_pnl",
        "unrealized_pnl_pct",
        "annual_income",
        "yield_percent",
        mode="before",
    )
    @classmethod
    def _finite(cls, value: float | int | str | None) -> float:
        return finite_or_zero(value)


class PortfolioResult(BaseModel):
    holdings: list[Holding] = Field(default_factory=list)
    total_value: float = 0.0
    reporting_currency: str = "USD"
    sources: list[str] = Field(default_factory=list)
    errors: list[ProviderFailureSchema] = Field(default_factory=list)
    count: int = 0
    fetched_at: datetime
    no_connections: bool = False
    cached: bool = False


__all__ = ["Holding", "PortfolioResult", "finite_or_zero", "non_negative_finite"]
