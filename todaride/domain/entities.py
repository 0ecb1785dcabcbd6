"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (pending -> accepted -> in-progress -> completed | cancelled).
- ``Location`` validates the coordinates a booking must carry.
- ``canonical_pair`` gives every unordered chat member pair one lookup key.

Entities are pure: services load a row, apply the transition here, then
persist the result with a compare-and-swap on the status they read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import RIDE_TRANSITIONS, TERMINAL_STATUSES, CancelledBy, RideStatus
from .errors import ConflictError, InvalidTransitionError, ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    name: str
    latitude: float
    longitude: float

    @classmethod
    def parse(cls, raw: Any, label: str) -> "Location":
        """Build a location from a mapping, raising ``ValidationError``."""
        if isinstance(raw, Location):
            return raw
        if not isinstance(raw, dict):
            raise ValidationError(f"Invalid {label} location data")
        name = raw.get("name")
        lat = raw.get("latitude", raw.get("lat"))
        lng = raw.get("longitude", raw.get("lon"))
        if not name or lat is None or lng is None:
            raise ValidationError(f"Invalid {label} location data")
        try:
            lat, lng = float(lat), float(lng)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {label} coordinates") from None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise ValidationError(f"{label.capitalize()} coordinates out of range")
        return cls(name=str(name), latitude=lat, longitude=lng)

    def as_dict(self) -> dict:
        return {"name": self.name, "latitude": self.latitude, "longitude": self.longitude}


def canonical_pair(member_a: str, member_b: str) -> tuple[str, str]:
    """Order-independent key for a two-member chat."""
    if not member_a or not member_b:
        raise ValidationError("Exactly 2 members are required for 1:1 chat")
    if member_a == member_b:
        raise ValidationError("Cannot create chat with yourself")
    return (member_a, member_b) if member_a < member_b else (member_b, member_a)


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[str] = None
    passenger_id: str = ""
    status: RideStatus = RideStatus.PENDING
    driver_id: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    cancelled_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    toda_name: Optional[str] = None
    created_at: Optional[datetime] = field(default=None, compare=False)

    @classmethod
    def from_model(cls, model: Any) -> "Ride":
        return cls(
            id=model.id,
            passenger_id=model.passenger_id,
            status=RideStatus(model.status),
            driver_id=model.driver_id,
            cancelled_by=(
                CancelledBy(model.cancelled_by) if model.cancelled_by else None
            ),
            cancelled_reason=model.cancelled_reason,
            started_at=model.started_at,
            completed_at=model.completed_at,
            toda_name=model.toda_name,
            created_at=model.created_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def assign(self, driver_id: str) -> None:
        if self.status != RideStatus.PENDING:
            raise ConflictError("Ride no longer available")
        self.transition_to(RideStatus.ACCEPTED)
        self.driver_id = driver_id

    def start(self, now: Optional[datetime] = None) -> None:
        self.transition_to(RideStatus.IN_PROGRESS)
        self.started_at = now or utc_now()

    def complete(self, now: Optional[datetime] = None) -> None:
        self.transition_to(RideStatus.COMPLETED)
        self.completed_at = now or utc_now()

    def cancel(self, cancelled_by: CancelledBy, reason: str) -> None:
        if RideStatus.CANCELLED not in RIDE_TRANSITIONS[self.status]:
            raise ConflictError(
                f"Cannot cancel a ride that is already {self.status.value}"
            )
        self.transition_to(RideStatus.CANCELLED)
        self.cancelled_by = cancelled_by
        self.cancelled_reason = reason

    def mutable_fields(self) -> dict:
        """Columns a transition may change; persisted as one CAS update."""
        return {
            "status": self.status,
            "driver_id": self.driver_id,
            "cancelled_by": self.cancelled_by,
            "cancelled_reason": self.cancelled_reason,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    def is_consistent(self) -> bool:
        """Check the driver / cancellation invariants.

        A ride cancelled while still pending never had a driver, so the
        driver invariant only binds the non-cancelled states.
        """
        cancelled = self.status == RideStatus.CANCELLED
        if not cancelled and (self.driver_id is None) != (
            self.status == RideStatus.PENDING
        ):
            return False
        if cancelled != (self.cancelled_by is not None):
            return False
        if cancelled != bool(self.cancelled_reason):
            return False
        return True
