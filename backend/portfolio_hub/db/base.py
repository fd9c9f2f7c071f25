"""SQLAlchemy declarative base shared by the connection and cache tables."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base for ORM models."""


__all__ = ["Base"]
