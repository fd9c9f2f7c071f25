"""Normalized income event schema and income aggregate response."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .errors import ProviderFailureSchema
from .holdings import non_negative_finite


class IncomeCategory(str, enum.Enum):
    DIVIDEND = "Dividend"
    YIELD = "Yield"
    STAKING = "Staking"
    DISTRIBUTION = "Distribution"


class IncomeEvent(BaseModel):
    id: str
    date: datetime
    ticker: str
    name: str = ""
    amount: float = 0.0
    currency: str = "USD"
    reporting_amount: float = 0.0
    reporting_currency: str = "USD"
    category: IncomeCategory
    source: str
    broker: str
    description: str = ""

    @field_validator("amount", "reporting_amount", mode="before")
    @classmethod
    def _non_negative(cls, value: float | int | str | None) -> float:
        return non_negative_finite(value)


class IncomeResult(BaseModel):
    events: list[IncomeEvent] = Field(default_factory=list)
    total_income: float = 0.0
    trailing_12m_income: float = 0.0
    monthly_average: float = 0.0
    by_category: dict[str, float] = Field(default_factory=dict)
    reporting_currency: str = "USD"
    sources: list[str] = Field(default_factory=list)
    errors: list[ProviderFailureSchema] = Field(default_factory=list)
    count: int = 0
    fetched_at: datetime
    no_connections: bool = False
    cached: bool = False


__all__ = ["IncomeCategory", "IncomeEvent", "IncomeResult"]
