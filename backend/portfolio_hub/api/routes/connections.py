"""Provider connect, disconnect and status endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from portfolio_hub.schemas import ConnectResponse, ConnectionStatusSchema, ManualSessionRequest
from portfolio_hub.services.connections import ConnectionService

from ..dependencies import InternalAuth, RequestContext, get_connection_service, get_request_context

router = APIRouter(dependencies=[InternalAuth])


@router.get("", response_model=list[ConnectionStatusSchema])
async def list_connections(
    context: RequestContext = Depends(get_request_context),
    service: ConnectionService = Depends(get_connection_service),
) -> list[ConnectionStatusSchema]:
    return await service.list_statuses(context.user_id)


@router.post("/degiro/session", response_model=ConnectResponse)
async def connect_degiro_session(
    payload: ManualSessionRequest,
    context: RequestContext = Depends(get_request_context),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectResponse:
    return await service.connect_with_session(context.user_id, payload.session_id)


@router.post("/{provider}/connect", response_model=ConnectResponse)
async def connect_provider(
    provider: str,
    credentials: dict[str, Any] | None = Body(default=None),
    context: RequestContext = Depends(get_request_context),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectResponse:
    """Authenticate and store credentials.

    DeGiro expects ``username``/``password`` (plus ``one_time_password`` once a
    second factor is requested); the other providers expect ``api_key`` and
    ``api_secret``.
    """

    return await service.connect(context.user_id, provider, credentials or {})


@router.delete("/{provider}")
async def disconnect_provider(
    provider: str,
    context: RequestContext = Depends(get_request_context),
    service: ConnectionService = Depends(get_connection_service),
) -> dict[str, bool]:
    removed = await service.disconnect(context.user_id, provider)
    return {"disconnected": True, "removed": removed}


@router.get("/{provider}/status", response_model=ConnectionStatusSchema)
async def provider_status(
    provider: str,
    context: RequestContext = Depends(get_request_context),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionStatusSchema:
    return await service.status(context.user_id, provider)
