"""FastAPI application factory."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portfolio_hub import __version__
from portfolio_hub.api.errors import register_error_handlers
from portfolio_hub.api.routes import api_router
from portfolio_hub.config import AppSettings, get_settings
from portfolio_hub.core.logging import setup_logging
from portfolio_hub.core.telemetry import setup_telemetry
from portfolio_hub.db import Database, get_database, init_database
from portfolio_hub.providers.http import ResilientFetcher
from portfolio_hub.providers.registry import ProviderRegistry, build_registry
from portfolio_hub.services.aggregator import PortfolioAggregator
from portfolio_hub.services.cache import CacheStore
from portfolio_hub.services.connections import ConnectionService, ConnectionStore
from portfolio_hub.services.currency import CurrencyConverter
from portfolio_hub.services.vault import CredentialVault

logger = logging.getLogger(__name__)


def _get_allowed_origins() -> List[str]:
    """Read allowed origins from ``BACKEND_CORS_ORIGINS`` (comma-separated)."""

    env_val = os.getenv("BACKEND_CORS_ORIGINS")
    if not env_val:
        return ["http://localhost:4200"]
    return [o.strip() for o in env_val.split(",") if o.strip()]


@asynccontextmanager
async def _lifespan(app: FastAPI, settings: AppSettings, database: Database, fetcher: ResilientFetcher) -> AsyncIterator[None]:
    await init_database(database)
    logger.info("Portfolio Hub configuration", extra={"settings": settings.dict_for_logging()})
    try:
        yield
    finally:
        await fetcher.aclose()
        await database.dispose()


def create_app(
    settings: AppSettings | None = None,
    *,
    database: Database | None = None,
    http_client: httpx.AsyncClient | None = None,
    registry: ProviderRegistry | None = None,
) -> FastAPI:
    """Wire the services together and attach the routers.

    ``database``, ``http_client`` and ``registry`` may be injected, which is how
    the test-suite swaps in SQLite and stubbed provider transports.
    """

    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.provider_log_level)
    database = database or get_database()
    fetcher = ResilientFetcher(http_client, timeout=settings.provider_timeout_seconds, max_in_flight=settings.max_in_flight_requests)
    registry = registry or build_registry(fetcher, settings)
    vault = CredentialVault(settings.credential_encryption_key)
    cache = CacheStore(database, ttl_seconds=settings.cache_ttl_seconds)
    store = ConnectionStore(database)
    converter = CurrencyConverter(fetcher, settings)

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lambda app: _lifespan(app, settings, database, fetcher),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.database = database
    app.state.fetcher = fetcher
    app.state.converter = converter
    app.state.aggregator = PortfolioAggregator(store, registry, vault, cache, converter, settings)
    app.state.connections = ConnectionService(store, registry, vault, cache)

    setup_telemetry(app, settings, engine=database.engine)
    register_error_handlers(app)
    app.include_router(api_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        """Return service readiness metadata."""

        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


__all__ = ["create_app"]
