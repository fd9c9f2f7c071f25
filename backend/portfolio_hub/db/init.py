"""Database schema initialization helpers."""

from __future__ import annotations

from portfolio_hub.db.session import Database, get_database


async def init_database(database: Database | None = None) -> None:
    """Ensure the connection and cache tables exist for the running application."""

    await (database or get_database()).create_all()


__all__ = ["init_database"]
