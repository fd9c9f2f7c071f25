"""Pydantic schema exports."""

from .connections import ConnectResponse, ConnectionStatusSchema, InvalidateResponse, ManualSessionRequest
from .errors import ProviderFailureSchema
from .holdings import Holding, PortfolioResult
from .income import IncomeCategory, IncomeEvent, IncomeResult

__all__ = [
    "ConnectResponse",
    "ConnectionStatusSchema",
    "Holding",
    "IncomeCategory",
    "IncomeEvent",
    "IncomeResult",
    "InvalidateResponse",
    "ManualSessionRequest",
    "PortfolioResult",
    "ProviderFailureSchema",
]
