"""Per-provider failure annotations attached to aggregate results."""

from __future__ import annotations

from pydantic import BaseModel


class ProviderFailureSchema(BaseModel):
    provider: str
    error: str
    code: str = "provider_error"
    retry_after: float | None = None


__all__ = ["ProviderFailureSchema"]
