"""
Ride Service  (state machine orchestration)
===========================================

Every write follows the same cycle, with the per-ride lock held:

    load -> validate & mutate -> recompute fares -> save (version check)

Concurrency safety
------------------
* ``RideRepository.save`` is a compare-and-set on ``Ride.version``.  If two
  handlers loaded the same version, the second save raises
  ``ConflictError`` and the *whole* cycle is re-run against the fresh ride
  (up to ``max_attempts``).  A passenger added by the first writer is
  therefore never overwritten.
* The per-ride lock (local, Redis or none) serialises writers on the same
  ride so conflicts stay rare.

Failure policy
--------------
* Domain errors are raised by the mutate step, before the save, so nothing
  partial is ever persisted.
* Broadcasts run after the save and are best-effort: failures are logged
  and swallowed, the saved ride stays the source of truth.
"""

from __future__ import annotations

import contextlib
import logging
import secrets
from typing import Any, AsyncContextManager, Callable, Optional, TypeVar

from src.domain.distance import distance_km
from src.domain.entities import (
    Approval,
    GeoPoint,
    Passenger,
    Pricing,
    Ride,
    Route,
    Safety,
    UserIdentity,
)
from src.domain.enums import (
    ACTIVE_STATUSES,
    ApprovalStatus,
    PassengerStatus,
    RideStatus,
)
from src.domain.errors import (
    AlreadyAccepted,
    AlreadyRequested,
    ConflictError,
    InvalidOtp,
    InvalidSeatCount,
    InvalidStateTransition,
    NotAuthorized,
    RequestNotFound,
    RideFull,
)
from src.domain.pricing import FareAllocation, FareAllocationEngine
from src.infrastructure.repositories import RideRepository, UserDirectory
from src.realtime.broadcaster import Broadcaster
from src.services import events
from src.services.events import money, ride_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")

LockFactory = Callable[[int], AsyncContextManager]


def generate_otp() -> str:
    """Uniform 4-digit code, 1000-9999."""
    return str(1000 + secrets.randbelow(9000))


class RideService:
    def __init__(
        self,
        rides: RideRepository,
        users: UserDirectory,
        broadcaster: Broadcaster,
        fare_engine: Optional[FareAllocationEngine] = None,
        locks: Optional[LockFactory] = None,
        max_attempts: int = 3,
        max_passengers: int = 3,
        default_base_fare: float = 50.0,
    ):
        self.rides = rides
        self.users = users
        self.broadcaster = broadcaster
        self.fare_engine = fare_engine or FareAllocationEngine()
        self.locks = locks or (lambda ride_id: contextlib.nullcontext())
        self.max_attempts = max_attempts
        self.max_passengers = max_passengers
        self.default_base_fare = default_base_fare

    # ── Internals ─────────────────────────────────────────────────────

    def _recalculate(self, ride: Ride) -> FareAllocation:
        allocation = self.fare_engine.allocate(ride.passengers, ride.pricing.base_fare)
        ride.apply_allocation(allocation)
        return allocation

    async def _transition(
        self, ride_id: int, mutate: Callable[[Ride], T]
    ) -> tuple[Ride, T]:
        """Run load -> mutate -> save, retrying the full cycle on conflict."""
        attempt = 1
        while True:
            try:
                async with self.locks(ride_id):
                    ride = await self.rides.get(ride_id)
                    outcome = mutate(ride)
                    saved = await self.rides.save(ride)
                return saved, outcome
            except ConflictError:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Ride %s: giving up after %d conflicting attempts",
                        ride_id, attempt,
                    )
                    raise
                logger.info(
                    "Ride %s: version conflict (attempt %d/%d), retrying",
                    ride_id, attempt, self.max_attempts,
                )
                attempt += 1

    async def _broadcast(self, ride_id: int, name: str, payload: dict[str, Any]) -> None:
        try:
            await self.broadcaster.broadcast_to_ride(ride_id, name, payload)
        except Exception:
            logger.exception("Failed to broadcast %s to ride %s", name, ride_id)

    async def _notify(self, user_id: int, name: str, payload: dict[str, Any]) -> None:
        try:
            await self.broadcaster.notify_user(user_id, name, payload)
        except Exception:
            logger.exception("Failed to notify user %s of %s", user_id, name)

    async def _notify_drivers(self, name: str, payload: dict[str, Any]) -> None:
        try:
            await self.broadcaster.notify_drivers(name, payload)
        except Exception:
            logger.exception("Failed to notify drivers of %s", name)

    async def _display_name(self, user_id: int) -> str:
        user = await self.users.get_user(user_id)
        return user.name if user else f"User {user_id}"

    async def _identities(self, ride: Ride) -> dict[int, UserIdentity]:
        user_ids = {p.user_id for p in ride.passengers}
        user_ids.update(a.user_id for a in ride.approvals)
        if ride.driver_id is not None:
            user_ids.add(ride.driver_id)
        identities = {}
        for user_id in sorted(user_ids):
            user = await self.users.get_user(user_id)
            if user is not None:
                identities[user_id] = user
        return identities

    async def describe(self, ride: Ride) -> dict[str, Any]:
        """Presented ride with driver, passenger and requester names filled in."""
        return ride_payload(ride, await self._identities(ride))

    # ── Transitions ───────────────────────────────────────────────────

    async def create_ride(
        self,
        creator_id: int,
        pickup: Any,
        drop: Any,
        seats_requested: Optional[int] = 1,
    ) -> Ride:
        start = GeoPoint.parse(pickup, "Start Location")
        end = GeoPoint.parse(drop, "Destination")
        if seats_requested is None:
            seats_requested = 1
        if (
            not isinstance(seats_requested, int)
            or isinstance(seats_requested, bool)
            or seats_requested < 1
        ):
            raise InvalidSeatCount(
                f"seats_requested must be a positive integer, got {seats_requested!r}"
            )

        ride = Ride(
            route=Route(start, end, total_distance=distance_km(start, end)),
            passengers=[
                Passenger(user_id=creator_id, pickup=start, drop=end, seat_number=1)
            ],
            status=RideStatus.SEARCHING,
            pricing=Pricing(base_fare=0.0),
            safety=Safety(otp=generate_otp()),
            seats_requested=seats_requested,
            max_passengers=self.max_passengers,
        )
        self._recalculate(ride)
        saved = await self.rides.add(ride)
        logger.info("Ride %s created by user %s", saved.id, creator_id)
        await self._notify_drivers(events.NEW_RIDE_REQUEST, await self.describe(saved))
        return saved

    async def accept_ride(
        self,
        ride_id: int,
        driver_id: int,
        base_fare: Optional[float] = None,
        scheduled: bool = False,
    ) -> Ride:
        driver = await self.users.get_user(driver_id)
        if driver is None or not driver.is_driver:
            raise NotAuthorized(f"User {driver_id} is not a driver")

        fare = self.default_base_fare if base_fare is None else float(base_fare)
        target = RideStatus.SCHEDULED if scheduled else RideStatus.ONGOING

        def mutate(ride: Ride) -> None:
            if ride.status != RideStatus.SEARCHING:
                raise AlreadyAccepted(f"Ride {ride.id} is already {ride.status.value}")
            ride.driver_id = driver_id
            ride.pricing.base_fare = fare
            ride.transition_to(target)
            self._recalculate(ride)

        ride, _ = await self._transition(ride_id, mutate)
        logger.info(
            "Ride %s accepted by driver %s (base fare %.2f)", ride.id, driver_id, fare
        )

        presented = await self.describe(ride)
        await self._broadcast(ride.id, events.RIDE_UPDATED, presented)
        creator = ride.passengers[0]
        await self._notify(
            creator.user_id,
            events.RIDE_ACCEPTED,
            {
                "rideId": ride.id,
                "driverId": driver.id,
                "driverName": driver.name,
                "vehicle": driver.vehicle,
                "baseFare": money(fare),
                "fare": money(creator.fare_share),
                "ride": presented,
            },
        )
        return ride

    async def request_join(
        self, ride_id: int, requester_id: int, pickup: Any, drop: Any
    ) -> dict[str, bool]:
        pickup_point = GeoPoint.parse(pickup, "Join Loc")
        drop_point = GeoPoint.parse(drop, "Drop Loc")

        def mutate(ride: Ride) -> None:
            if not ride.is_active:
                raise InvalidStateTransition(
                    f"Ride {ride.id} is {ride.status.value} and cannot be joined"
                )
            if ride.driver_id == requester_id:
                raise NotAuthorized("Drivers cannot join their own ride")
            if ride.is_member(requester_id):
                raise AlreadyRequested("Already requested or joined")
            ride.add_approval(Approval(requester_id, pickup_point, drop_point))

        ride, _ = await self._transition(ride_id, mutate)
        requester_name = await self._display_name(requester_id)
        logger.info("User %s requested to join ride %s", requester_id, ride.id)

        # speculative: stored fares stay untouched until the request is approved
        candidate = Passenger(
            user_id=requester_id,
            pickup=pickup_point,
            drop=drop_point,
            seat_number=ride.next_seat_number(),
        )
        preview = self.fare_engine.preview(
            ride.passengers, candidate, ride.pricing.base_fare
        )
        for passenger in ride.passengers:
            await self._notify(
                passenger.user_id,
                events.JOIN_REQUEST,
                events.join_request_payload(
                    ride,
                    requester_id,
                    requester_name,
                    pickup_point,
                    drop_point,
                    current_fare=passenger.fare_share,
                    preview_fare=preview.fare_for(passenger.user_id),
                    preview_total=preview.current_total,
                ),
            )
        return {"accepted": True}

    async def approve_join(
        self,
        ride_id: int,
        requester_id: int,
        approver_id: int,
        approve: bool = True,
    ) -> Ride:
        def mutate(ride: Ride) -> Optional[Passenger]:
            approval = ride.pending_approval(requester_id)
            if approval is None:
                raise RequestNotFound("Join request not found or already processed")
            if ride.passenger(approver_id) is None and ride.driver_id != approver_id:
                raise NotAuthorized(
                    f"User {approver_id} cannot approve requests for ride {ride.id}"
                )
            if not ride.is_active:
                raise InvalidStateTransition(
                    f"Ride {ride.id} is {ride.status.value}; fares are frozen"
                )
            if not approve:
                approval.status = ApprovalStatus.REJECTED
                return None
            if ride.is_full:
                raise RideFull(f"Ride {ride.id} has no free seats")
            passenger = ride.admit(approval)
            self._recalculate(ride)
            return passenger

        ride, admitted = await self._transition(ride_id, mutate)

        if admitted is None:
            logger.info(
                "User %s rejected join request of %s on ride %s",
                approver_id, requester_id, ride.id,
            )
            await self._notify(
                requester_id,
                events.JOIN_REJECTED,
                {"rideId": ride.id, "requesterId": requester_id},
            )
            return ride

        logger.info(
            "User %s joined ride %s in seat %d (total %.2f)",
            requester_id, ride.id, admitted.seat_number, ride.pricing.current_total,
        )
        name = await self._display_name(requester_id)
        await self._broadcast(ride.id, events.RIDE_UPDATED, await self.describe(ride))
        for passenger in ride.passengers:
            await self._notify(
                passenger.user_id,
                events.FARE_UPDATED,
                events.fare_updated_payload(
                    ride,
                    passenger.user_id,
                    passenger.fare_share,
                    message=f"{name} joined! Fares optimized.",
                ),
            )
        return ride

    async def verify_otp(self, ride_id: int, driver_id: int, otp: str) -> Ride:
        def mutate(ride: Ride) -> None:
            if ride.driver_id is None or ride.driver_id != driver_id:
                raise NotAuthorized("Only the assigned driver can verify the OTP")
            if ride.status not in (RideStatus.SCHEDULED, RideStatus.ONGOING):
                raise InvalidStateTransition(
                    f"Ride {ride.id} is {ride.status.value}; nothing to verify"
                )
            if not secrets.compare_digest(str(otp).encode(), ride.safety.otp.encode()):
                raise InvalidOtp("OTP does not match")
            ride.safety.is_verified = True
            creator = ride.passengers[0]
            if creator.status == PassengerStatus.APPROVED:
                creator.status = PassengerStatus.PICKED_UP
            if ride.status == RideStatus.SCHEDULED:
                ride.transition_to(RideStatus.ONGOING)

        ride, _ = await self._transition(ride_id, mutate)
        logger.info("Ride %s: OTP verified by driver %s", ride.id, driver_id)
        await self._broadcast(ride.id, events.RIDE_UPDATED, await self.describe(ride))
        return ride

    async def complete_ride(self, ride_id: int, caller_id: int) -> Ride:
        def mutate(ride: Ride) -> None:
            if ride.driver_id is None or ride.driver_id != caller_id:
                raise NotAuthorized("Only the assigned driver can complete this ride")
            ride.transition_to(RideStatus.COMPLETED)
            for passenger in ride.passengers:
                if passenger.status in (
                    PassengerStatus.APPROVED,
                    PassengerStatus.PICKED_UP,
                ):
                    passenger.status = PassengerStatus.DROPPED_OFF

        ride, _ = await self._transition(ride_id, mutate)
        logger.info(
            "Ride %s completed (total %.2f)", ride.id, ride.pricing.current_total
        )
        await self._broadcast(ride.id, events.RIDE_UPDATED, await self.describe(ride))
        for passenger in ride.passengers:
            await self._notify(
                passenger.user_id,
                events.RIDE_COMPLETED,
                {
                    "rideId": ride.id,
                    "userId": passenger.user_id,
                    "finalFare": money(passenger.fare_share),
                    "totalFare": money(ride.pricing.current_total),
                },
            )
        return ride

    async def cancel_ride(self, ride_id: int, caller_id: int) -> Ride:
        def mutate(ride: Ride) -> None:
            if caller_id != ride.creator_id and caller_id != ride.driver_id:
                raise NotAuthorized(
                    "Only the ride's creator or its driver can cancel it"
                )
            ride.transition_to(RideStatus.CANCELLED)

        ride, _ = await self._transition(ride_id, mutate)
        logger.info("Ride %s cancelled by user %s", ride.id, caller_id)
        await self._broadcast(ride.id, events.RIDE_UPDATED, await self.describe(ride))
        return ride

    # ── Queries (no locking) ──────────────────────────────────────────

    async def get_ride(self, ride_id: int) -> Ride:
        return await self.rides.get(ride_id)

    async def list_available_rides(self) -> list[Ride]:
        return await self.rides.list_by_status([RideStatus.SEARCHING])

    async def list_joinable_rides(self, user_id: int) -> list[Ride]:
        rides = await self.rides.list_by_status(ACTIVE_STATUSES)
        return [
            r
            for r in rides
            if not r.is_full and not r.is_member(user_id) and r.driver_id != user_id
        ]

    async def get_active_ride(self, user_id: int) -> Optional[Ride]:
        for ride in await self.rides.list_by_status(ACTIVE_STATUSES):
            if ride.passenger(user_id) is not None:
                return ride
        return None

    async def get_active_driver_ride(self, driver_id: int) -> Optional[Ride]:
        return await self.rides.find_by_driver(
            driver_id, [RideStatus.SCHEDULED, RideStatus.ONGOING]
        )
