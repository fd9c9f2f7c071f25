"""Provider connection model: one row per (user, provider) pair."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_hub.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderName(str, enum.Enum):
    DEGIRO = "degiro"
    TRADING212 = "trading212"
    BINANCE = "binance"
    CRYPTOCOM = "cryptocom"


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    EXPIRED = "expired"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class ProviderConnection(Base):
    __tablename__ = "provider_connection"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_provider_connection_user_provider"),
        Index("ix_provider_connection_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    provider: Mapped[ProviderName] = mapped_column(
        Enum(ProviderName, name="provider_name", values_callable=_enum_values)
    )
    status: Mapped[ConnectionStatus] = mapped_column(
        Enum(ConnectionStatus, name="connection_status", values_callable=_enum_values),
        default=ConnectionStatus.CONNECTED,
    )
    encrypted_credentials: Mapped[str] = mapped_column(Text)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


__all__ = ["ConnectionStatus", "ProviderConnection", "ProviderName"]
