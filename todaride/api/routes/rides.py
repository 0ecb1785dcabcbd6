"""
Ride endpoints
==============

POST /api/v1/rides                         -- book a ride (201)
GET  /api/v1/rides                         -- list rides by status / TODA
GET  /api/v1/rides/available               -- pending rides for the caller's TODA
GET  /api/v1/rides/user/{user_id}          -- a passenger's ride history
GET  /api/v1/rides/estimate                -- fare and route estimate
GET  /api/v1/rides/{ride_id}               -- ride with passenger / driver details
PUT  /api/v1/rides/{ride_id}/assign-driver -- accept (atomic, one winner)
PUT  /api/v1/rides/{ride_id}/status        -- advance the state machine
PUT  /api/v1/rides/{ride_id}/cancel        -- cancel
PUT  /api/v1/rides/{ride_id}/reject        -- driver declines
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from todaride.api.dependencies import get_current_user, get_db, get_directions
from todaride.api.middleware import limiter
from todaride.api.schemas import (
    AssignDriverRequest,
    FareEstimateResponse,
    RideCancelRequest,
    RideCreateRequest,
    RideListResponse,
    RideResponse,
    RideStatusUpdateRequest,
)
from todaride.config import settings
from todaride.domain.enums import CancelledBy, PassengerType, UserRole
from todaride.domain.errors import InvalidRoleError
from todaride.domain.pricing import FareEngine
from todaride.infrastructure.directions import DirectionsClient
from todaride.infrastructure.models import UserModel
from todaride.services.read_models import ReadModelAssembler
from todaride.services.rides import RideService

router = APIRouter(prefix="/rides", tags=["rides"])


async def _ride_list(db: AsyncSession, rides, total: int, page: int, limit: int) -> dict:
    return {
        "count": len(rides),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if total else 0,
        "rides": await ReadModelAssembler(db).rides(rides),
    }


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Book a ride",
    responses={201: {"description": "Ride created in status pending."}},
)
@limiter.limit(settings.rate_limit)
async def book_ride(
    request: Request,
    body: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    ride = await RideService(db).book_ride(
        passenger_id=user.id,
        first_name=body.first_name,
        last_name=body.last_name,
        pickup=body.pickup_location,
        dropoff=body.dropoff_location,
        distance=body.distance,
        fare=body.fare,
        toda_name=body.toda_name,
    )
    return await ReadModelAssembler(db).ride(ride)


@router.get("", response_model=RideListResponse, summary="List rides by filter")
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    status: Optional[str] = None,
    toda_name: Optional[str] = Query(None, alias="todaName"),
    passenger_id: Optional[str] = Query(None, alias="passengerId"),
    driver_id: Optional[str] = Query(None, alias="driverId"),
    page: int = 1,
    limit: int = 10,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    rides, total = await RideService(db).list_by_filter(
        status=status,
        toda_name=toda_name,
        passenger_id=passenger_id,
        driver_id=driver_id,
        page=page,
        limit=limit,
    )
    return await _ride_list(db, rides, total, page, limit)


@router.get(
    "/available",
    response_model=RideListResponse,
    summary="Pending rides for the calling driver's TODA",
)
@limiter.limit(settings.rate_limit)
async def list_available_rides(
    request: Request,
    page: int = 1,
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    rides, total = await RideService(db).list_available_for_driver(
        user, page=page, limit=limit
    )
    return await _ride_list(db, rides, total, page, limit)


@router.get(
    "/user/{user_id}",
    response_model=RideListResponse,
    summary="A passenger's ride history, newest first",
)
@limiter.limit(settings.rate_limit)
async def list_user_rides(
    request: Request,
    user_id: str,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    if user.id != user_id and UserRole(user.role) != UserRole.ADMIN:
        raise InvalidRoleError("Cannot view another user's rides")
    rides, total = await RideService(db).list_for_user(user_id, page=page, limit=limit)
    return await _ride_list(db, rides, total, page, limit)


@router.get(
    "/estimate",
    response_model=FareEstimateResponse,
    summary="Estimate fare and route between two points",
    description=(
        "Uses the directions provider when it answers in time, otherwise "
        "a straight line and the haversine distance."
    ),
)
@limiter.limit(settings.rate_limit)
async def estimate_fare(
    request: Request,
    pickup_lat: float = Query(..., ge=-90, le=90),
    pickup_lng: float = Query(..., ge=-180, le=180),
    dropoff_lat: float = Query(..., ge=-90, le=90),
    dropoff_lng: float = Query(..., ge=-180, le=180),
    passenger_type: PassengerType = PassengerType.REGULAR,
    directions: DirectionsClient = Depends(get_directions),
):
    route = await directions.route((pickup_lat, pickup_lng), (dropoff_lat, dropoff_lng))
    engine = FareEngine(settings.rate_per_km, settings.senior_pwd_discount)
    return FareEstimateResponse(
        distance_km=round(route.distance_km, 3),
        fare=engine.estimate(route.distance_km, passenger_type),
        passenger_type=passenger_type,
        polyline=route.polyline,
        duration_seconds=route.duration_seconds,
        fallback=route.fallback,
    )


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    ride = await RideService(db).get_by_id(ride_id)
    return await ReadModelAssembler(db).ride(ride)


@router.put(
    "/{ride_id}/assign-driver",
    response_model=RideResponse,
    summary="Accept a pending ride",
    description=(
        "Atomic: of several drivers accepting the same ride exactly one "
        "succeeds; the others get 409 'Ride no longer available'."
    ),
)
@limiter.limit(settings.rate_limit)
async def assign_driver(
    request: Request,
    ride_id: str,
    body: Optional[AssignDriverRequest] = None,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    driver_id = (body.driver_id if body else None) or user.id
    if driver_id != user.id and UserRole(user.role) != UserRole.ADMIN:
        raise InvalidRoleError("Drivers can only accept rides for themselves")
    ride = await RideService(db).assign_driver(ride_id, driver_id)
    return await ReadModelAssembler(db).ride(ride)


@router.put("/{ride_id}/status", response_model=RideResponse, summary="Advance ride status")
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    ride_id: str,
    body: RideStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    ride = await RideService(db).advance_status(ride_id, body.status, user)
    return await ReadModelAssembler(db).ride(ride)


@router.put("/{ride_id}/cancel", response_model=RideResponse, summary="Cancel a ride")
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: Optional[RideCancelRequest] = None,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    body = body or RideCancelRequest()
    cancelled_by = body.cancelled_by
    if cancelled_by is None:
        cancelled_by = CancelledBy.DRIVER if user.is_driver else CancelledBy.USER
    elif cancelled_by == CancelledBy.ADMIN.value and UserRole(user.role) != UserRole.ADMIN:
        raise InvalidRoleError("Only admins can cancel as admin")
    ride = await RideService(db).cancel(
        ride_id, cancelled_by, body.cancelled_reason, acting_user=user
    )
    return await ReadModelAssembler(db).ride(ride)


@router.put("/{ride_id}/reject", response_model=RideResponse, summary="Driver declines a ride")
@limiter.limit(settings.rate_limit)
async def reject_ride(
    request: Request,
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    ride = await RideService(db).reject(ride_id, user)
    return await ReadModelAssembler(db).ride(ride)
