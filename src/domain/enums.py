"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    SEARCHING = "searching"
    SCHEDULED = "scheduled"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {
        RideStatus.SCHEDULED,
        RideStatus.ONGOING,
        RideStatus.CANCELLED,
    },
    RideStatus.SCHEDULED: {
        RideStatus.ONGOING,
        RideStatus.COMPLETED,
        RideStatus.CANCELLED,
    },
    RideStatus.ONGOING: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

ACTIVE_STATUSES = frozenset(
    {RideStatus.SEARCHING, RideStatus.SCHEDULED, RideStatus.ONGOING}
)


class PassengerStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PICKED_UP = "picked_up"
    DROPPED_OFF = "dropped_off"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    REJECTED = "rejected"


class UserRole(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
