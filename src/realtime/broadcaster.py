"""
Real-time fan-out of ride events.

Addressable scopes
-----------------
* ``ride:<id>`` -- everyone currently viewing a ride.
* ``user:<id>`` -- one user, wherever they are in the app (e.g. a join
  request arriving while they look at a different screen).
* ``drivers``   -- every connected driver (new ride requests).

Ordering: events published to the same room are delivered to each
subscriber in publish order (FIFO per room).  Nothing is promised across
rooms.

A subscription is owned by one client connection.  Closing it only stops
delivery; it never affects a ride transition in flight.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


def ride_room(ride_id: int) -> str:
    return f"ride:{ride_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


DRIVERS_ROOM = "drivers"


@dataclass(frozen=True)
class Event:
    name: str
    room: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"event": self.name, "room": self.room, "data": self.payload}

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> Event:
        return cls(
            name=message["event"],
            room=message["room"],
            payload=message.get("data") or {},
        )


class Subscription(ABC):
    @abstractmethod
    async def join(self, room: str) -> None: ...

    @abstractmethod
    async def leave(self, room: str) -> None: ...

    @abstractmethod
    async def next_event(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next delivered event, or ``None`` if *timeout* expires first."""

    @abstractmethod
    async def close(self) -> None: ...

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


class Broadcaster(ABC):
    @abstractmethod
    async def publish(self, event: Event) -> None: ...

    @abstractmethod
    def subscribe(self) -> Subscription: ...

    async def close(self) -> None:
        pass

    async def broadcast_to_ride(
        self, ride_id: int, name: str, payload: dict[str, Any]
    ) -> None:
        await self.publish(Event(name, ride_room(ride_id), payload))

    async def notify_user(
        self, user_id: int, name: str, payload: dict[str, Any]
    ) -> None:
        await self.publish(Event(name, user_room(user_id), payload))

    async def notify_drivers(self, name: str, payload: dict[str, Any]) -> None:
        await self.publish(Event(name, DRIVERS_ROOM, payload))


# ── Single-process implementation ─────────────────────────────────────


class _MemorySubscription(Subscription):
    def __init__(self, hub: InMemoryBroadcaster):
        self._hub = hub
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self.rooms: set[str] = set()

    def deliver(self, event: Event) -> None:
        self._queue.put_nowait(event)

    async def join(self, room: str) -> None:
        self.rooms.add(room)
        self._hub._rooms.setdefault(room, set()).add(self)

    async def leave(self, room: str) -> None:
        self.rooms.discard(room)
        members = self._hub._rooms.get(room)
        if members is not None:
            members.discard(self)
            if not members:
                del self._hub._rooms[room]

    async def next_event(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        for room in list(self.rooms):
            await self.leave(room)


class InMemoryBroadcaster(Broadcaster):
    """Rooms map to subscriber queues.  ``publish`` enqueues synchronously."""

    def __init__(self):
        self._rooms: dict[str, set[_MemorySubscription]] = {}

    async def publish(self, event: Event) -> None:
        subscribers = self._rooms.get(event.room, ())
        for subscription in list(subscribers):
            subscription.deliver(event)
        logger.debug(
            "Published %s to %s (%d subscribers)",
            event.name, event.room, len(subscribers),
        )

    def subscribe(self) -> Subscription:
        return _MemorySubscription(self)

    def subscriber_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))
