"""Per-user TTL cache rows for aggregated results."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_hub.db.base import Base

CACHE_KEYS = ("portfolio", "income")


class PortfolioCacheEntry(Base):
    __tablename__ = "portfolio_cache"
    __table_args__ = (UniqueConstraint("user_id", "cache_key", name="uq_portfolio_cache_user_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    cache_key: Mapped[str] = mapped_column(String(32))
    data: Mapped[dict[str, Any]] = mapped_column(JSON().with_variant(JSONB, "postgresql"))
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


__all__ = ["CACHE_KEYS", "PortfolioCacheEntry"]
