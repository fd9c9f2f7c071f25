"""Connection persistence and the connect / disconnect / status flows."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy import delete, select, update
from sqlalchemy import exc as sa_exc

from portfolio_hub.core.errors import ValidationError
from portfolio_hub.db import Database
from portfolio_hub.models import ConnectionStatus, ProviderConnection, ProviderName
from portfolio_hub.providers.base import AuthResult
from portfolio_hub.providers.degiro import DegiroAdapter
from portfolio_hub.providers.registry import ProviderRegistry
from portfolio_hub.schemas import ConnectResponse, ConnectionStatusSchema

from .cache import CacheStore
from .vault import CredentialVault

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 512


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionStore:
    """Row-level access to ``provider_connection`` records."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def get(self, user_id: str, provider: ProviderName) -> ProviderConnection | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(ProviderConnection).where(
                    ProviderConnection.user_id == user_id,
                    ProviderConnection.provider == provider,
                )
            )
            return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[ProviderConnection]:
        async with self._database.session() as session:
            result = await session.execute(
                select(ProviderConnection)
                .where(ProviderConnection.user_id == user_id)
                .order_by(ProviderConnection.provider)
            )
            return list(result.scalars())

    async def upsert(self, user_id: str, provider: ProviderName, encrypted_credentials: str) -> ProviderConnection:
        try:
            return await self._upsert(user_id, provider, encrypted_credentials)
        except sa_exc.IntegrityError:
            return await self._upsert(user_id, provider, encrypted_credentials)

    async def _upsert(self, user_id: str, provider: ProviderName, encrypted_credentials: str) -> ProviderConnection:
        now = _utcnow()
        async with self._database.session() as session:
            result = await session.execute(
                select(ProviderConnection).where(
                    ProviderConnection.user_id == user_id,
                    ProviderConnection.provider == provider,
                )
            )
            connection = result.scalar_one_or_none()
            if connection is None:
                connection = ProviderConnection(user_id=user_id, provider=provider)
                session.add(connection)
            connection.status = ConnectionStatus.CONNECTED
            connection.encrypted_credentials = encrypted_credentials
            connection.last_sync_at = now
            connection.last_error = None
            await session.commit()
            await session.refresh(connection)
            return connection

    async def delete(self, user_id: str, provider: ProviderName) -> bool:
        async with self._database.session() as session:
            result = await session.execute(
                delete(ProviderConnection).where(
                    ProviderConnection.user_id == user_id,
                    ProviderConnection.provider == provider,
                )
            )
            await session.commit()
            return bool(result.rowcount)

    async def mark_expired(self, user_id: str, provider: ProviderName, error: str) -> None:
        await self._update(
            user_id,
            provider,
            status=ConnectionStatus.EXPIRED,
            last_error=error[:LAST_ERROR_MAX_LENGTH],
        )

    async def mark_synced(self, user_id: str, provider: ProviderName) -> None:
        await self._update(user_id, provider, last_sync_at=_utcnow(), last_error=None)

    async def _update(self, user_id: str, provider: ProviderName, **values: Any) -> None:
        values["updated_at"] = _utcnow()
        async with self._database.session() as session:
            await session.execute(
                update(ProviderConnection)
                .where(
                    ProviderConnection.user_id == user_id,
                    ProviderConnection.provider == provider,
                )
                .values(**values)
            )
            await session.commit()


def status_schema(provider: ProviderName, connection: ProviderConnection | None) -> ConnectionStatusSchema:
    if connection is None:
        return ConnectionStatusSchema(
            provider=provider.value,
            connected=False,
            status=ConnectionStatus.DISCONNECTED.value,
        )
    return ConnectionStatusSchema(
        provider=provider.value,
        connected=connection.status == ConnectionStatus.CONNECTED,
        status=connection.status.value,
        last_sync_at=connection.last_sync_at,
        last_error=connection.last_error,
    )


class ConnectionService:
    """Authenticate against a provider and persist the encrypted credentials.

    ``InvalidCredentials``, ``SecondFactorRequired`` and ``ProviderUnavailable``
    raised by an adapter propagate unchanged to the caller.
    """

    def __init__(
        self,
        store: ConnectionStore,
        registry: ProviderRegistry,
        vault: CredentialVault,
        cache: CacheStore,
    ) -> None:
        self._store = store
        self._registry = registry
        self._vault = vault
        self._cache = cache

    async def connect(self, user_id: str, provider: ProviderName | str, credentials: Mapping[str, Any]) -> ConnectResponse:
        adapter = self._registry.get(provider)
        result = await adapter.authenticate(credentials)
        return await self._persist(user_id, adapter.provider, result)

    async def connect_with_session(self, user_id: str, session_id: str) -> ConnectResponse:
        adapter = self._registry.get(ProviderName.DEGIRO)
        if not isinstance(adapter, DegiroAdapter):
            raise ValidationError("Manual session login is not supported", provider=ProviderName.DEGIRO.value)
        result = await adapter.authenticate_with_session(session_id)
        return await self._persist(user_id, adapter.provider, result)

    async def _persist(self, user_id: str, provider: ProviderName, result: AuthResult) -> ConnectResponse:
        envelope = self._vault.encrypt_json(result.credentials)
        await self._store.upsert(user_id, provider, envelope)
        await self._cache.invalidate(user_id)
        logger.info("User %s connected %s", user_id, provider.value)
        return ConnectResponse(connected=True, provider=provider.value, account=result.account)

    async def disconnect(self, user_id: str, provider: ProviderName | str) -> bool:
        name = self._registry.get(provider).provider
        removed = await self._store.delete(user_id, name)
        await self._cache.invalidate(user_id)
        logger.info("User %s disconnected %s", user_id, name.value)
        return removed

    async def status(self, user_id: str, provider: ProviderName | str) -> ConnectionStatusSchema:
        name = self._registry.get(provider).provider
        return status_schema(name, await self._store.get(user_id, name))

    async def list_statuses(self, user_id: str) -> list[ConnectionStatusSchema]:
        existing = {connection.provider: connection for connection in await self._store.list_for_user(user_id)}
        return [status_schema(name, existing.get(name)) for name in self._registry.providers]


__all__ = ["ConnectionService", "ConnectionStore", "status_schema"]
