"""Live notification endpoint.

Relays a principal's Redis pub/sub channel to a WebSocket. Events published
by the notification fan-out arrive as ``{"event": ..., "data": ...}``.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from redis.asyncio.client import PubSub

from clinichub.core.exceptions import AppException, NotFound
from clinichub.core.permissions import Operation, Principal, authorize
from clinichub.core.redis_client import get_async_redis_client, user_channel
from clinichub.database import AsyncSessionLocal
from clinichub.dependencies import get_cache_manager, principal_from_token, resolve_principal
from clinichub.schemas.appointments import AppointmentResponse
from clinichub.schemas.notifications import LiveMessage
from clinichub.services.appointment_repository import AppointmentRepository
from clinichub.services.user_service import UserService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])

AppointmentLookup = Callable[[UUID], Awaitable[dict[str, Any] | None]]


def _message(event: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    return LiveMessage(event=event, data=data or {}).model_dump(mode="json")


async def handle_client_message(
    principal: Principal,
    raw: str,
    lookup: AppointmentLookup,
) -> dict[str, Any]:
    """
    Answer one message sent by a connected client.

    Supported messages are ``ping`` (plain or ``{"type": "ping"}``) and
    ``{"type": "request_appointment_status", "appointment_id": ...}``.

    Returns:
        The reply to send back
    """
    try:
        message = json.loads(raw)
    except ValueError:
        message = {"type": raw.strip()}
    if not isinstance(message, dict):
        message = {"type": str(message)}

    kind = message.get("type")
    if kind == "ping":
        return _message("pong")

    if kind == "request_appointment_status":
        try:
            appointment_id = UUID(str(message.get("appointment_id")))
        except ValueError:
            return _message("error", {"message": "Invalid appointment ID"})

        try:
            appointment = await lookup(appointment_id)
            if appointment is None:
                raise NotFound("Appointment not found")
            authorize(principal, Operation.READ, appointment)
        except AppException as e:
            return _message("error", {"code": e.code, "message": e.message})

        return _message(
            "appointment_status",
            AppointmentResponse.model_validate(appointment).model_dump(mode="json"),
        )

    return _message("error", {"message": f"Unsupported message type: {kind}"})


async def _lookup_appointment(appointment_id: UUID) -> dict[str, Any] | None:
    async with AsyncSessionLocal() as db:
        return await AppointmentRepository(db).get(appointment_id)


async def _authenticate(token: str | None) -> Principal:
    user_id = principal_from_token(token)
    async with AsyncSessionLocal() as db:
        return await resolve_principal(user_id, UserService(db, get_cache_manager()))


async def _relay(websocket: WebSocket, pubsub: PubSub) -> None:
    async for message in pubsub.listen():
        if message["type"] == "message":
            await websocket.send_text(message["data"])


async def _answer(websocket: WebSocket, principal: Principal) -> None:
    while True:
        raw = await websocket.receive_text()
        await websocket.send_json(await handle_client_message(principal, raw, _lookup_appointment))


@router.websocket("/ws")
async def notifications_socket(
    websocket: WebSocket,
    token: str | None = Query(None),
) -> None:
    """
    Stream live appointment events to the authenticated principal.

    The bearer token is passed as the ``token`` query parameter since
    browsers cannot set headers on WebSocket requests.
    """
    try:
        principal = await _authenticate(token)
    except AppException as e:
        logger.info("websocket_rejected", reason=e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    await websocket.send_json(
        _message(
            "connected",
            {"user_id": str(principal.id), "role": principal.role.value},
        )
    )
    logger.info("websocket_connected", user_id=str(principal.id))

    pubsub = get_async_redis_client().pubsub()
    await pubsub.subscribe(user_channel(principal.id))

    tasks = [
        asyncio.create_task(_relay(websocket, pubsub)),
        asyncio.create_task(_answer(websocket, principal)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(
                    "websocket_stream_failed",
                    user_id=str(principal.id),
                    error=str(error),
                )
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await pubsub.unsubscribe()
        await pubsub.aclose()
        logger.info("websocket_disconnected", user_id=str(principal.id))
