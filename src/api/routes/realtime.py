"""
WebSocket endpoint
==================

WS /api/v1/ws?user_id=<id>

On connect the socket is subscribed to the caller's user room.  Drivers also
join the ``drivers`` room, where new ride requests are announced.  The
client then manages ride rooms with JSON commands:

    {"action": "join_ride", "rideId": 7}
    {"action": "leave_ride", "rideId": 7}
    {"action": "join_user_room", "userId": 3}

Each command is acknowledged with ``subscribed`` / ``unsubscribed`` before
any event of that room can arrive.  Events are sent as
``{"event": ..., "room": ..., "data": ...}``.

Disconnecting only closes the subscription; ride transitions in flight are
not affected.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from src.api.dependencies import get_user_directory
from src.infrastructure.repositories import UserDirectory
from src.realtime.broadcaster import DRIVERS_ROOM, Subscription, ride_room, user_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

POLL_SECONDS = 1.0


async def _send_control(websocket: WebSocket, event: str, room: str, **data) -> None:
    await websocket.send_json({"event": event, "room": room, "data": data})


async def _handle_command(
    websocket: WebSocket, subscription: Subscription, message: dict
) -> None:
    action = message.get("action")
    try:
        if action == "join_ride":
            room = ride_room(int(message["rideId"]))
            await subscription.join(room)
            await _send_control(websocket, "subscribed", room)
        elif action == "leave_ride":
            room = ride_room(int(message["rideId"]))
            await subscription.leave(room)
            await _send_control(websocket, "unsubscribed", room)
        elif action == "join_user_room":
            room = user_room(int(message["userId"]))
            await subscription.join(room)
            await _send_control(websocket, "subscribed", room)
        else:
            await _send_control(websocket, "error", "", detail=f"Unknown action {action!r}")
    except (KeyError, TypeError, ValueError):
        await _send_control(websocket, "error", "", detail=f"Malformed {action!r} command")


async def _receive_commands(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        try:
            message = await websocket.receive_json()
        except ValueError:
            await _send_control(websocket, "error", "", detail="Commands must be JSON")
            continue
        if not isinstance(message, dict):
            await _send_control(websocket, "error", "", detail="Commands must be objects")
            continue
        await _handle_command(websocket, subscription, message)


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await subscription.next_event(timeout=POLL_SECONDS)
        if event is not None:
            await websocket.send_json(event.to_message())


@router.websocket("/ws")
async def ride_events(
    websocket: WebSocket,
    user_id: Optional[int] = None,
    users: UserDirectory = Depends(get_user_directory),
):
    subscription = websocket.app.state.broadcaster.subscribe()
    try:
        if user_id is not None:
            await subscription.join(user_room(user_id))
            user = await users.get_user(user_id)
            if user is not None and user.is_driver:
                await subscription.join(DRIVERS_ROOM)
        await websocket.accept()

        tasks = {
            asyncio.create_task(_receive_commands(websocket, subscription)),
            asyncio.create_task(_forward_events(websocket, subscription)),
        }
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("WebSocket for user %s closed: %r", user_id, exc)
    finally:
        await subscription.close()
