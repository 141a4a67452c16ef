"""
In-process repositories.

Same contract as the SQL repositories (copies out, versioned compare-and-set
in) for single-instance deployments, the seed script and the test-suite.
``save`` never awaits, so under asyncio the version check and the write
happen as one step.
"""

from __future__ import annotations

import copy
import itertools
from datetime import datetime, timezone
from typing import Iterable, Optional

from .repositories import RideRepository, UserDirectory
from src.domain.entities import Ride, UserIdentity
from src.domain.enums import RideStatus
from src.domain.errors import ConflictError, RideNotFound


class InMemoryRideRepository(RideRepository):
    def __init__(self):
        self._rides: dict[int, Ride] = {}
        self._ids = itertools.count(1)

    async def get(self, ride_id: int) -> Ride:
        ride = self._rides.get(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return copy.deepcopy(ride)

    async def add(self, ride: Ride) -> Ride:
        stored = copy.deepcopy(ride)
        stored.id = next(self._ids)
        stored.version = 0
        stored.created_at = stored.updated_at = datetime.now(timezone.utc)
        self._rides[stored.id] = stored
        return copy.deepcopy(stored)

    async def save(self, ride: Ride) -> Ride:
        current = self._rides.get(ride.id)
        if current is None:
            raise RideNotFound(f"Ride {ride.id} not found")
        if current.version != ride.version:
            raise ConflictError(
                f"Ride {ride.id} was modified concurrently (version {ride.version} is stale)"
            )
        stored = copy.deepcopy(ride)
        stored.version = current.version + 1
        stored.updated_at = datetime.now(timezone.utc)
        self._rides[stored.id] = stored
        return copy.deepcopy(stored)

    async def list_by_status(
        self, statuses: Iterable[RideStatus], limit: int = 100
    ) -> list[Ride]:
        wanted = set(statuses)
        rides = [r for r in self._rides.values() if r.status in wanted]
        rides.sort(key=lambda r: r.id, reverse=True)
        return [copy.deepcopy(r) for r in rides[:limit]]

    async def find_by_driver(
        self, driver_id: int, statuses: Iterable[RideStatus]
    ) -> Optional[Ride]:
        wanted = set(statuses)
        for ride in sorted(self._rides.values(), key=lambda r: r.id, reverse=True):
            if ride.driver_id == driver_id and ride.status in wanted:
                return copy.deepcopy(ride)
        return None


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Iterable[UserIdentity] = ()):
        self._users = {u.id: u for u in users}

    def add(self, user: UserIdentity) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: int) -> Optional[UserIdentity]:
        return self._users.get(user_id)
