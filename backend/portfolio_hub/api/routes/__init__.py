"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .connections import router as connections_router
from .income import router as income_router
from .portfolio import router as portfolio_router
from .rates import router as rates_router

api_router = APIRouter()
api_router.include_router(portfolio_router, prefix="/portfolio", tags=["portfolio"])
api_router.include_router(income_router, prefix="/income", tags=["income"])
api_router.include_router(connections_router, prefix="/connections", tags=["connections"])
api_router.include_router(rates_router, prefix="/rates", tags=["rates"])

__all__ = ["api_router"]
