"""
Ride lifecycle service
======================

The only writer of ``rides.status``.  Every mutation follows the same
shape:

1. Load the row and wrap it in the ``Ride`` entity.
2. Apply the transition on the entity (raises on an illegal move).
3. Persist with ``RideRepository.compare_and_set`` keyed on the status
   read in step 1.  Zero rows updated means a concurrent writer won;
   the caller gets ``ConflictError`` instead of a silent success.

``assign_driver`` is the acceptance entry point for drivers: its step 3
is ``UPDATE rides SET status='accepted', driver_id=:d WHERE id=:r AND
status='pending'`` so exactly one of several racing drivers wins.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from todaride.config import settings
from todaride.domain.entities import Location, Ride
from todaride.domain.enums import CancelledBy, RideStatus, UserRole
from todaride.domain.errors import (
    ConflictError,
    InvalidRoleError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from todaride.infrastructure.models import RideModel, UserModel
from todaride.infrastructure.repositories import RideRepository, UserRepository

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def parse_status(value: Any) -> RideStatus:
    try:
        return RideStatus(value)
    except ValueError:
        raise ValidationError("Invalid status value") from None


def _check_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


class RideService:
    def __init__(self, session: AsyncSession):
        self.rides = RideRepository(session)
        self.users = UserRepository(session)

    # ── Queries ───────────────────────────────────────────────────────

    async def get_by_id(self, ride_id: str) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise NotFoundError("Ride not found")
        return ride

    async def list_by_filter(
        self,
        *,
        status: Optional[str] = None,
        toda_name: Optional[str] = None,
        passenger_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[RideModel], int]:
        _check_page(page, limit)
        return await self.rides.list_by_filter(
            status=parse_status(status) if status else None,
            toda_name=toda_name,
            passenger_id=passenger_id,
            driver_id=driver_id,
            page=page,
            limit=limit,
        )

    async def list_for_user(
        self, user_id: str, *, page: int = 1, limit: int = 50
    ) -> tuple[list[RideModel], int]:
        _check_page(page, limit)
        return await self.rides.list_by_filter(
            passenger_id=user_id, page=page, limit=limit
        )

    async def list_available_for_driver(
        self, driver: UserModel, *, page: int = 1, limit: int = 20
    ) -> tuple[list[RideModel], int]:
        """Pending rides tagged with the driver's TODA."""
        if not driver.is_driver:
            raise InvalidRoleError("User is not a driver")
        _check_page(page, limit)
        return await self.rides.list_by_filter(
            status=RideStatus.PENDING,
            toda_name=driver.toda_name,
            page=page,
            limit=limit,
        )

    # ── Booking ───────────────────────────────────────────────────────

    async def book_ride(
        self,
        *,
        passenger_id: str,
        first_name: str,
        last_name: str,
        pickup: Any,
        dropoff: Any,
        distance: Any,
        fare: Any,
        toda_name: Optional[str] = None,
    ) -> RideModel:
        required = (passenger_id, first_name, last_name, pickup, dropoff, distance, fare)
        if any(value is None or value == "" for value in required):
            raise ValidationError("Please provide all required fields")

        pickup_loc = Location.parse(pickup, "pickup")
        dropoff_loc = Location.parse(dropoff, "dropoff")
        try:
            distance_km, fare_value = float(distance), float(fare)
        except (TypeError, ValueError):
            raise ValidationError("Distance and fare must be numeric") from None
        if distance_km <= 0 or fare_value <= 0:
            raise ValidationError("Distance and fare must be positive")

        passenger = await self.users.get_by_id(passenger_id)
        if passenger is None:
            raise ValidationError("User not found")
        if passenger.is_banned:
            raise UnauthorizedError("Account is banned", banned=True)

        ride = await self.rides.create(
            RideModel(
                passenger_id=passenger_id,
                passenger_first_name=first_name.strip(),
                passenger_last_name=last_name.strip(),
                pickup_name=pickup_loc.name,
                pickup_lat=pickup_loc.latitude,
                pickup_lng=pickup_loc.longitude,
                dropoff_name=dropoff_loc.name,
                dropoff_lat=dropoff_loc.latitude,
                dropoff_lng=dropoff_loc.longitude,
                distance_km=distance_km,
                fare=fare_value,
                toda_name=toda_name,
                status=RideStatus.PENDING,
                driver_id=None,
            )
        )
        logger.info("Ride %s booked by %s (toda=%s)", ride.id, passenger_id, toda_name)
        return ride

    # ── Transitions ───────────────────────────────────────────────────

    async def assign_driver(self, ride_id: str, driver_id: str) -> RideModel:
        if not driver_id:
            raise ValidationError("Driver ID is required")
        driver = await self.users.get_by_id(driver_id)
        if driver is None:
            raise NotFoundError("Driver not found")
        if not driver.is_driver:
            raise InvalidRoleError("User is not a driver")
        if driver.is_banned:
            raise UnauthorizedError("Account is banned", banned=True)

        ride = await self.get_by_id(ride_id)
        entity = Ride.from_model(ride)
        entity.assign(driver_id)

        won = await self.rides.compare_and_set(
            ride_id,
            RideStatus.PENDING,
            status=RideStatus.ACCEPTED,
            driver_id=driver_id,
        )
        if not won:
            logger.info("Driver %s lost the race for ride %s", driver_id, ride_id)
            raise ConflictError("Ride no longer available")

        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        return await self.rides.refresh(ride)

    async def advance_status(
        self, ride_id: str, requested_status: Any, acting_user: UserModel
    ) -> RideModel:
        """Generic transition entry point used by ``PUT /rides/{id}/status``.

        ``accepted`` and ``cancelled`` are routed to ``assign_driver`` and
        ``cancel`` so their extra rules always apply.  The driver's
        pickup / dropoff confirmations are accepted as reported.
        """
        target = parse_status(requested_status)
        if target == RideStatus.ACCEPTED:
            if not acting_user.is_driver:
                raise InvalidRoleError("Only drivers can accept rides")
            return await self.assign_driver(ride_id, acting_user.id)
        if target == RideStatus.CANCELLED:
            by = CancelledBy.DRIVER if acting_user.is_driver else CancelledBy.USER
            if UserRole(acting_user.role) == UserRole.ADMIN:
                by = CancelledBy.ADMIN
            return await self.cancel(ride_id, by, None, acting_user=acting_user)

        ride = await self.get_by_id(ride_id)
        entity = Ride.from_model(ride)
        seen = entity.status

        if target == RideStatus.IN_PROGRESS:
            entity.start()
        elif target == RideStatus.COMPLETED:
            entity.complete()
        else:
            entity.transition_to(target)

        is_admin = UserRole(acting_user.role) == UserRole.ADMIN
        if not is_admin and acting_user.id != ride.driver_id:
            raise InvalidRoleError("Only the assigned driver can update this ride")

        if not await self.rides.compare_and_set(ride_id, seen, **entity.mutable_fields()):
            raise ConflictError("Ride status changed; re-fetch and retry")

        logger.info("Ride %s moved %s -> %s", ride_id, seen.value, target.value)
        return await self.rides.refresh(ride)

    async def cancel(
        self,
        ride_id: str,
        cancelled_by: Any = CancelledBy.USER,
        reason: Optional[str] = None,
        *,
        acting_user: Optional[UserModel] = None,
    ) -> RideModel:
        try:
            by = CancelledBy(cancelled_by or CancelledBy.USER)
        except ValueError:
            raise ValidationError("Invalid cancelledBy value") from None

        ride = await self.get_by_id(ride_id)
        if acting_user is not None:
            self._authorize_cancel(ride, acting_user)

        entity = Ride.from_model(ride)
        seen = entity.status
        entity.cancel(by, (reason or "").strip() or settings.default_cancel_reason)

        if not await self.rides.compare_and_set(ride_id, seen, **entity.mutable_fields()):
            current = await self.rides.refresh(ride)
            raise ConflictError(
                f"Cannot cancel a ride that is already {RideStatus(current.status).value}"
            )

        logger.info("Ride %s cancelled by %s", ride_id, by.value)
        return await self.rides.refresh(ride)

    async def reject(self, ride_id: str, driver: UserModel) -> RideModel:
        """Driver declines a ride: a cancel attributed to the driver."""
        if not driver.is_driver:
            raise InvalidRoleError("User is not a driver")
        return await self.cancel(
            ride_id,
            CancelledBy.DRIVER,
            settings.driver_reject_reason,
            acting_user=driver,
        )

    @staticmethod
    def _authorize_cancel(ride: RideModel, user: UserModel) -> None:
        if UserRole(user.role) == UserRole.ADMIN:
            return
        if user.id in (ride.passenger_id, ride.driver_id):
            return
        if user.is_driver and RideStatus(ride.status) == RideStatus.PENDING:
            return
        raise InvalidRoleError("Not allowed to cancel this ride")
