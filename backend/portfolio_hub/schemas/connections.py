"""Request and response schemas for provider connection management."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ManualSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Pre-authenticated JSESSIONID from the browser")


class ConnectResponse(BaseModel):
    connected: bool
    provider: str
    requires_totp: bool = False
    account: dict[str, Any] = Field(default_factory=dict)


class ConnectionStatusSchema(BaseModel):
    provider: str
    connected: bool
    status: str
    last_sync_at: datetime | None = None
    last_error: str | None = None


class InvalidateResponse(BaseModel):
    invalidated: bool = True
    resource: str


__all__ = [
    "ConnectResponse",
    "ConnectionStatusSchema",
    "InvalidateResponse",
    "ManualSessionRequest",
]
