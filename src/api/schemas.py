"""
Pydantic request / response schemas for the REST API.

Wire format is camelCase (``seatNumber``, ``fareShare``, ...) to match the
stored ride document; snake_case field names are accepted on input too.
Coordinates are always ``[longitude, latitude]``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(CamelModel):
    name: Optional[str] = None
    coordinates: Optional[list[float]] = Field(
        None, description="[longitude, latitude]"
    )


class RideCreateRequest(CamelModel):
    pickup: Optional[LocationIn] = None
    drop: Optional[LocationIn] = None
    seats_requested: int = Field(1, ge=1, le=6)


class AcceptRideRequest(CamelModel):
    base_fare: Optional[float] = Field(
        None, ge=0, description="Flat component quoted by the driver."
    )
    scheduled: bool = False


class JoinRideRequest(CamelModel):
    pickup: Optional[LocationIn] = None
    drop: Optional[LocationIn] = None


class ApprovalDecisionRequest(CamelModel):
    approve: bool = True


class VerifyOtpRequest(CamelModel):
    otp: str = Field(..., min_length=4, max_length=4)


# ── Responses ─────────────────────────────────────────────────────────


class PointOut(CamelModel):
    name: str = ""
    coordinates: Optional[list[float]] = None


class GeoJsonPointOut(CamelModel):
    type: str = "Point"
    coordinates: Optional[list[float]] = None


class RouteStopOut(CamelModel):
    name: str = ""
    location: GeoJsonPointOut


class RouteOut(CamelModel):
    start: RouteStopOut
    end: RouteStopOut
    total_distance: float = 0.0


class PassengerOut(CamelModel):
    user: int
    name: Optional[str] = None
    pickup: PointOut
    drop: PointOut
    seat_number: int
    status: str
    distance_traveled: float
    fare_share: float


class ApprovalOut(CamelModel):
    user: int
    name: Optional[str] = None
    pickup: PointOut
    drop: PointOut
    status: str


class PricingOut(CamelModel):
    base_fare: float
    current_total: float


class SafetyOut(CamelModel):
    otp: str
    is_verified: bool


class RideResponse(CamelModel):
    id: int
    driver: Optional[int] = None
    driver_name: Optional[str] = None
    vehicle: Optional[dict] = None
    route: RouteOut
    passengers: list[PassengerOut]
    approvals: list[ApprovalOut] = []
    status: str
    pricing: PricingOut
    safety: SafetyOut
    seats_requested: int
    max_passengers: int
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JoinRequestAccepted(BaseModel):
    accepted: bool = True


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    error: str
