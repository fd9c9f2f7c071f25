"""Exchange rate snapshot endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from portfolio_hub.services.currency import CurrencyConverter

from ..dependencies import InternalAuth, get_converter

router = APIRouter(dependencies=[InternalAuth])


@router.get("")
async def get_rates(converter: CurrencyConverter = Depends(get_converter)) -> dict[str, Any]:
    snapshot = await converter.get_rates()
    return {**snapshot.to_dict(), "supported": converter.supported}
