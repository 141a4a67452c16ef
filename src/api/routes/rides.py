"""
Ride endpoints
==============

POST /api/v1/rides                                -- create a ride (creator = caller)
GET  /api/v1/rides/available                      -- rides still searching for a driver
GET  /api/v1/rides/joinable                       -- live rides with a free seat
GET  /api/v1/rides/active                         -- caller's live ride as a passenger
GET  /api/v1/rides/active-driver                  -- caller's live ride as a driver
GET  /api/v1/rides/{ride_id}                      -- ride state, fares and approvals
POST /api/v1/rides/{ride_id}/accept               -- driver accepts, quotes base fare
POST /api/v1/rides/{ride_id}/join                 -- ask to join (pending approval)
POST /api/v1/rides/{ride_id}/approvals/{user_id}  -- approve / reject a join request
POST /api/v1/rides/{ride_id}/verify-otp           -- driver verifies the passenger OTP
POST /api/v1/rides/{ride_id}/complete             -- driver completes the ride
POST /api/v1/rides/{ride_id}/cancel               -- creator or driver cancels

The caller is identified by the ``X-User-Id`` header.  Domain errors are
rendered by the handler registered in ``src.api.app``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_current_user, get_ride_service
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import (
    AcceptRideRequest,
    ApprovalDecisionRequest,
    ErrorResponse,
    JoinRequestAccepted,
    JoinRideRequest,
    LocationIn,
    RideCreateRequest,
    RideResponse,
    VerifyOtpRequest,
)
from src.domain.entities import Ride, UserIdentity
from src.services.ride_service import RideService

router = APIRouter(prefix="/rides", tags=["rides"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _location(loc: Optional[LocationIn]) -> Optional[dict]:
    return loc.model_dump() if loc is not None else None


async def _present(service: RideService, ride: Ride) -> RideResponse:
    return RideResponse.model_validate(await service.describe(ride))


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Create a ride request",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.create_ride(
        user.id,
        _location(body.pickup),
        _location(body.drop),
        seats_requested=body.seats_requested,
    )
    return await _present(service, ride)


@router.get(
    "/available",
    response_model=list[RideResponse],
    summary="Rides waiting for a driver",
)
@limiter.limit(RATE_LIMIT)
async def list_available_rides(
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    rides = await service.list_available_rides()
    return [await _present(service, r) for r in rides]


@router.get(
    "/joinable",
    response_model=list[RideResponse],
    summary="Live rides the caller can ask to join",
)
@limiter.limit(RATE_LIMIT)
async def list_joinable_rides(
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    rides = await service.list_joinable_rides(user.id)
    return [await _present(service, r) for r in rides]


@router.get(
    "/active",
    response_model=Optional[RideResponse],
    summary="Caller's live ride as a passenger",
)
@limiter.limit(RATE_LIMIT)
async def get_active_ride(
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.get_active_ride(user.id)
    return await _present(service, ride) if ride else None


@router.get(
    "/active-driver",
    response_model=Optional[RideResponse],
    summary="Caller's live ride as a driver",
)
@limiter.limit(RATE_LIMIT)
async def get_active_driver_ride(
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.get_active_driver_ride(user.id)
    return await _present(service, ride) if ride else None


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride state, fares and pending approvals",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def get_ride(
    request: Request,
    ride_id: int,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.get_ride(ride_id)
    return await _present(service, ride)


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Driver accepts a searching ride",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def accept_ride(
    request: Request,
    ride_id: int,
    body: AcceptRideRequest,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.accept_ride(
        ride_id, user.id, base_fare=body.base_fare, scheduled=body.scheduled
    )
    return await _present(service, ride)


@router.post(
    "/{ride_id}/join",
    status_code=202,
    response_model=JoinRequestAccepted,
    summary="Request to join a ride",
    description=(
        "Stores a pending approval and sends every current passenger a "
        "``join_request`` event with a preview of their new fare.  Fares "
        "only change once the request is approved."
    ),
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def request_join(
    request: Request,
    ride_id: int,
    body: JoinRideRequest,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    result = await service.request_join(
        ride_id, user.id, _location(body.pickup), _location(body.drop)
    )
    return JoinRequestAccepted(**result)


@router.post(
    "/{ride_id}/approvals/{requester_id}",
    response_model=RideResponse,
    summary="Approve or reject a join request",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def approve_join(
    request: Request,
    ride_id: int,
    requester_id: int,
    body: ApprovalDecisionRequest,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.approve_join(
        ride_id, requester_id, user.id, approve=body.approve
    )
    return await _present(service, ride)


@router.post(
    "/{ride_id}/verify-otp",
    response_model=RideResponse,
    summary="Driver verifies the passenger's OTP",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def verify_otp(
    request: Request,
    ride_id: int,
    body: VerifyOtpRequest,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.verify_otp(ride_id, user.id, body.otp)
    return await _present(service, ride)


@router.post(
    "/{ride_id}/complete",
    response_model=RideResponse,
    summary="Driver completes the ride; fares are frozen",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def complete_ride(
    request: Request,
    ride_id: int,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.complete_ride(ride_id, user.id)
    return await _present(service, ride)


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a live ride",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def cancel_ride(
    request: Request,
    ride_id: int,
    user: UserIdentity = Depends(get_current_user),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.cancel_ride(ride_id, user.id)
    return await _present(service, ride)
