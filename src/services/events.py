"""
Event names and payload builders for the real-time channel.

This is the presentation boundary: money is rounded to the currency's minor
unit here and nowhere earlier.
"""

from __future__ import annotations

from typing import Any, Optional

from src.domain.entities import GeoPoint, Ride, UserIdentity

RIDE_UPDATED = "ride_updated"
RIDE_ACCEPTED = "ride_accepted"
FARE_UPDATED = "fare_updated"
JOIN_REQUEST = "join_request"
JOIN_REJECTED = "join_rejected"
RIDE_COMPLETED = "ride_completed"
NEW_RIDE_REQUEST = "new_ride_request"


def money(value: Optional[float]) -> float:
    return round(value or 0.0, 2)


def _name(identities: dict[int, UserIdentity], user_id: int) -> Optional[str]:
    user = identities.get(user_id)
    return user.name if user else None


def ride_payload(
    ride: Ride, identities: Optional[dict[int, UserIdentity]] = None
) -> dict[str, Any]:
    """Presented ride.  *identities* fills in display names and the vehicle."""
    identities = identities or {}
    doc = ride.to_document()
    for passenger in doc["passengers"]:
        passenger["name"] = _name(identities, passenger["user"])
        passenger["fareShare"] = money(passenger["fareShare"])
        passenger["distanceTraveled"] = round(passenger["distanceTraveled"], 3)
    doc["pricing"] = {
        "baseFare": money(ride.pricing.base_fare),
        "currentTotal": money(ride.pricing.current_total),
    }
    for approval in doc["approvals"]:
        approval["name"] = _name(identities, approval["user"])
    driver = identities.get(ride.driver_id)
    doc["driverName"] = driver.name if driver else None
    doc["vehicle"] = driver.vehicle if driver else None
    doc["route"]["totalDistance"] = round(ride.route.total_distance, 3)
    doc["createdAt"] = ride.created_at.isoformat() if ride.created_at else None
    doc["updatedAt"] = ride.updated_at.isoformat() if ride.updated_at else None
    return doc


def fare_updated_payload(
    ride: Ride, user_id: int, fare: float, message: str = ""
) -> dict[str, Any]:
    return {
        "rideId": ride.id,
        "userId": user_id,
        "newFare": money(fare),
        "totalFare": money(ride.pricing.current_total),
        "message": message,
    }


def join_request_payload(
    ride: Ride,
    requester_id: int,
    requester_name: str,
    pickup: GeoPoint,
    drop: GeoPoint,
    current_fare: float,
    preview_fare: Optional[float],
    preview_total: float,
) -> dict[str, Any]:
    return {
        "rideId": ride.id,
        "requesterId": requester_id,
        "requesterName": requester_name,
        "pickup": pickup.to_document(),
        "drop": drop.to_document(),
        "currentFare": money(current_fare),
        "previewFare": money(preview_fare),
        "previewTotal": money(preview_total),
    }
