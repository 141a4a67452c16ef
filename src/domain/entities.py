"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (SEARCHING -> SCHEDULED | ONGOING -> COMPLETED, any live state -> CANCELLED).
- ``Ride`` is the aggregate root.  Passengers and approvals are embedded and
  only ever change through the ride, so one versioned save covers them all.
- ``to_document`` / ``from_document`` produce the persisted shape, which keeps
  GeoJSON ``[longitude, latitude]`` ordering.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .enums import (
    ACTIVE_STATUSES,
    RIDE_TRANSITIONS,
    ApprovalStatus,
    PassengerStatus,
    RideStatus,
    UserRole,
)
from .errors import InvalidLocation, InvalidStateTransition


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class GeoPoint:
    """A named point; ``coordinates`` is ``(longitude, latitude)``."""

    name: str
    coordinates: Optional[tuple[float, float]]

    @property
    def longitude(self) -> Optional[float]:
        return self.coordinates[0] if self.coordinates else None

    @property
    def latitude(self) -> Optional[float]:
        return self.coordinates[1] if self.coordinates else None

    @classmethod
    def parse(cls, raw: Any, default_name: str) -> GeoPoint:
        """Strict constructor for client input.  Raises ``InvalidLocation``."""
        if isinstance(raw, GeoPoint):
            raw = raw.to_document()
        if not isinstance(raw, dict):
            raise InvalidLocation(f"{default_name}: map coordinates required")

        coords = raw.get("coordinates")
        if (
            not isinstance(coords, (list, tuple))
            or len(coords) != 2
            or not all(_is_number(c) and math.isfinite(c) for c in coords)
        ):
            raise InvalidLocation(
                f"{default_name}: coordinates must be [longitude, latitude]"
            )
        lng, lat = float(coords[0]), float(coords[1])
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise InvalidLocation(
                f"{default_name}: [{lng}, {lat}] is outside [longitude, latitude] range"
            )
        return cls(name=raw.get("name") or default_name, coordinates=(lng, lat))

    @classmethod
    def from_document(cls, doc: Optional[dict]) -> GeoPoint:
        """Lenient constructor for stored data; bad coordinates become ``None``."""
        doc = doc or {}
        coords = doc.get("coordinates")
        if coords is None and isinstance(doc.get("location"), dict):
            coords = doc["location"].get("coordinates")
        if (
            isinstance(coords, (list, tuple))
            and len(coords) == 2
            and all(_is_number(c) for c in coords)
        ):
            parsed: Optional[tuple[float, float]] = (float(coords[0]), float(coords[1]))
        else:
            parsed = None
        return cls(name=doc.get("name") or "", coordinates=parsed)

    def to_document(self) -> dict:
        return {
            "name": self.name,
            "coordinates": list(self.coordinates) if self.coordinates else None,
        }

    def to_location_document(self) -> dict:
        """GeoJSON flavour used for ``route.start`` / ``route.end``."""
        return {
            "name": self.name,
            "location": {
                "type": "Point",
                "coordinates": list(self.coordinates) if self.coordinates else None,
            },
        }


@dataclass(frozen=True)
class UserIdentity:
    id: int
    name: str
    role: UserRole = UserRole.PASSENGER
    vehicle: Optional[dict] = None

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER


# ── Embedded parts ────────────────────────────────────────────────────


@dataclass
class Passenger:
    user_id: int
    pickup: GeoPoint
    drop: GeoPoint
    seat_number: int
    status: PassengerStatus = PassengerStatus.APPROVED
    distance_traveled: float = 0.0
    fare_share: float = 0.0

    def to_document(self) -> dict:
        return {
            "user": self.user_id,
            "pickup": self.pickup.to_document(),
            "drop": self.drop.to_document(),
            "seatNumber": self.seat_number,
            "status": self.status.value,
            "distanceTraveled": self.distance_traveled,
            "fareShare": self.fare_share,
        }

    @classmethod
    def from_document(cls, doc: dict) -> Passenger:
        return cls(
            user_id=int(doc["user"]),
            pickup=GeoPoint.from_document(doc.get("pickup")),
            drop=GeoPoint.from_document(doc.get("drop")),
            seat_number=int(doc.get("seatNumber") or 0),
            status=PassengerStatus(doc.get("status", PassengerStatus.APPROVED.value)),
            distance_traveled=float(doc.get("distanceTraveled") or 0.0),
            fare_share=float(doc.get("fareShare") or 0.0),
        )


@dataclass
class Approval:
    user_id: int
    pickup: GeoPoint
    drop: GeoPoint
    status: ApprovalStatus = ApprovalStatus.PENDING

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def to_document(self) -> dict:
        return {
            "user": self.user_id,
            "pickup": self.pickup.to_document(),
            "drop": self.drop.to_document(),
            "status": self.status.value,
        }

    @classmethod
    def from_document(cls, doc: dict) -> Approval:
        return cls(
            user_id=int(doc["user"]),
            pickup=GeoPoint.from_document(doc.get("pickup")),
            drop=GeoPoint.from_document(doc.get("drop")),
            status=ApprovalStatus(doc.get("status", ApprovalStatus.PENDING.value)),
        )


@dataclass
class Route:
    start: GeoPoint
    end: GeoPoint
    total_distance: float = 0.0

    def to_document(self) -> dict:
        return {
            "start": self.start.to_location_document(),
            "end": self.end.to_location_document(),
            "totalDistance": self.total_distance,
        }

    @classmethod
    def from_document(cls, doc: dict) -> Route:
        return cls(
            start=GeoPoint.from_document(doc.get("start")),
            end=GeoPoint.from_document(doc.get("end")),
            total_distance=float(doc.get("totalDistance") or 0.0),
        )


@dataclass
class Pricing:
    base_fare: float = 0.0
    current_total: float = 0.0


@dataclass
class Safety:
    otp: str = ""
    is_verified: bool = False


# ── Aggregate ─────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    driver_id: Optional[int] = None
    route: Route = field(
        default_factory=lambda: Route(GeoPoint("", None), GeoPoint("", None))
    )
    passengers: list[Passenger] = field(default_factory=list)
    approvals: list[Approval] = field(default_factory=list)
    status: RideStatus = RideStatus.SEARCHING
    pricing: Pricing = field(default_factory=Pricing)
    safety: Safety = field(default_factory=Safety)
    seats_requested: int = 1
    max_passengers: int = 3
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    # ── membership queries ──

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def creator_id(self) -> int:
        return self.passengers[0].user_id

    @property
    def is_full(self) -> bool:
        return len(self.passengers) >= self.max_passengers

    def passenger(self, user_id: int) -> Optional[Passenger]:
        return next((p for p in self.passengers if p.user_id == user_id), None)

    def pending_approval(self, user_id: int) -> Optional[Approval]:
        return next(
            (a for a in self.approvals if a.user_id == user_id and a.is_pending),
            None,
        )

    def is_member(self, user_id: int) -> bool:
        """Passenger, or waiting on a pending join request."""
        return (
            self.passenger(user_id) is not None
            or self.pending_approval(user_id) is not None
        )

    def next_seat_number(self) -> int:
        return max((p.seat_number for p in self.passengers), default=0) + 1

    # ── membership changes ──

    def add_approval(self, approval: Approval) -> None:
        # a previously rejected request is replaced, never duplicated
        self.approvals = [a for a in self.approvals if a.user_id != approval.user_id]
        self.approvals.append(approval)

    def admit(self, approval: Approval) -> Passenger:
        """Move a pending approval into the passenger list."""
        passenger = Passenger(
            user_id=approval.user_id,
            pickup=approval.pickup,
            drop=approval.drop,
            seat_number=self.next_seat_number(),
        )
        self.approvals.remove(approval)
        self.passengers.append(passenger)
        return passenger

    def apply_allocation(self, allocation) -> None:
        """Copy a ``FareAllocation`` (same passenger order) onto the ride."""
        for passenger, fare in zip(self.passengers, allocation.fares):
            passenger.distance_traveled = fare.distance_km
            passenger.fare_share = fare.fare_share
        self.pricing.current_total = allocation.current_total

    # ── persistence shape ──

    def to_document(self) -> dict:
        return {
            "id": self.id,
            "driver": self.driver_id,
            "route": self.route.to_document(),
            "passengers": [p.to_document() for p in self.passengers],
            "approvals": [a.to_document() for a in self.approvals],
            "status": self.status.value,
            "pricing": {
                "baseFare": self.pricing.base_fare,
                "currentTotal": self.pricing.current_total,
            },
            "safety": {
                "otp": self.safety.otp,
                "isVerified": self.safety.is_verified,
            },
            "seatsRequested": self.seats_requested,
            "maxPassengers": self.max_passengers,
            "version": self.version,
        }
