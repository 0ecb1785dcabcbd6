"""Unit tests for ride entity state transitions (State Pattern)."""

import itertools
import random

import pytest

from todaride.domain.entities import Location, Ride, canonical_pair
from todaride.domain.enums import RIDE_TRANSITIONS, CancelledBy, RideStatus
from todaride.domain.errors import ConflictError, InvalidTransitionError, ValidationError


class TestRideStateMachine:
    def test_initial_status_is_pending(self):
        ride = Ride()
        assert ride.status == RideStatus.PENDING
        assert ride.driver_id is None
        assert ride.is_consistent()

    # ── Valid transitions ─────────────────────────────────────────

    def test_pending_to_accepted_sets_driver(self):
        ride = Ride(status=RideStatus.PENDING)
        ride.assign("driver-1")
        assert ride.status == RideStatus.ACCEPTED
        assert ride.driver_id == "driver-1"

    def test_pending_to_cancelled(self):
        ride = Ride(status=RideStatus.PENDING)
        ride.cancel(CancelledBy.USER, "Changed plans")
        assert ride.status == RideStatus.CANCELLED
        assert ride.cancelled_by == CancelledBy.USER
        assert ride.cancelled_reason == "Changed plans"
        assert ride.is_consistent()

    def test_accepted_to_in_progress_stamps_start(self):
        ride = Ride(status=RideStatus.ACCEPTED, driver_id="d")
        ride.start()
        assert ride.status == RideStatus.IN_PROGRESS
        assert ride.started_at is not None

    def test_accepted_to_cancelled(self):
        ride = Ride(status=RideStatus.ACCEPTED, driver_id="d")
        ride.cancel(CancelledBy.DRIVER, "Flat tyre")
        assert ride.status == RideStatus.CANCELLED
        assert ride.driver_id == "d"

    def test_in_progress_to_completed_stamps_completion(self):
        ride = Ride(status=RideStatus.IN_PROGRESS, driver_id="d")
        ride.complete()
        assert ride.status == RideStatus.COMPLETED
        assert ride.completed_at is not None

    # ── Invalid transitions ───────────────────────────────────────

    def test_pending_to_completed_fails(self):
        ride = Ride(status=RideStatus.PENDING)
        with pytest.raises(InvalidTransitionError, match="Cannot transition from pending to completed"):
            ride.complete()

    def test_pending_to_in_progress_fails(self):
        with pytest.raises(InvalidTransitionError):
            Ride(status=RideStatus.PENDING).start()

    def test_completed_to_anything_fails(self):
        ride = Ride(status=RideStatus.COMPLETED, driver_id="d")
        for target in RideStatus:
            with pytest.raises(InvalidTransitionError):
                ride.transition_to(target)

    def test_cancelled_to_pending_fails(self):
        ride = Ride(status=RideStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            ride.transition_to(RideStatus.PENDING)

    def test_in_progress_cannot_be_cancelled(self):
        ride = Ride(status=RideStatus.IN_PROGRESS, driver_id="d")
        with pytest.raises(ConflictError, match="already in-progress"):
            ride.cancel(CancelledBy.USER, "late")
        assert ride.status == RideStatus.IN_PROGRESS

    def test_assign_non_pending_is_conflict(self):
        ride = Ride(status=RideStatus.ACCEPTED, driver_id="first")
        with pytest.raises(ConflictError, match="Ride no longer available"):
            ride.assign("second")
        assert ride.driver_id == "first"

    def test_invalid_transition_is_a_conflict(self):
        assert issubclass(InvalidTransitionError, ConflictError)

    def test_terminal_states(self):
        assert Ride(status=RideStatus.COMPLETED).is_terminal
        assert Ride(status=RideStatus.CANCELLED).is_terminal
        assert not Ride(status=RideStatus.ACCEPTED).is_terminal


class TestRideInvariants:
    """Random walks over the transition table never break the invariants."""

    def _step(self, ride: Ride, target: RideStatus) -> None:
        if target == RideStatus.ACCEPTED:
            ride.assign("driver")
        elif target == RideStatus.IN_PROGRESS:
            ride.start()
        elif target == RideStatus.COMPLETED:
            ride.complete()
        elif target == RideStatus.CANCELLED:
            ride.cancel(CancelledBy.ADMIN, "reason")
        else:
            ride.transition_to(target)

    def test_random_walks_preserve_invariants(self):
        rng = random.Random(7)
        for _ in range(300):
            ride = Ride()
            visited = [ride.status]
            for _ in range(6):
                target = rng.choice(list(RideStatus))
                before = ride.status
                try:
                    self._step(ride, target)
                except ConflictError:
                    assert ride.status == before
                else:
                    assert target in RIDE_TRANSITIONS[before]
                    visited.append(ride.status)
                assert ride.is_consistent()
            # no path leads back to pending
            assert RideStatus.PENDING not in visited[1:]

    def test_every_illegal_pair_is_rejected(self):
        for source, target in itertools.product(RideStatus, RideStatus):
            if target in RIDE_TRANSITIONS[source]:
                continue
            ride = Ride(status=source, driver_id=None if source == RideStatus.PENDING else "d")
            with pytest.raises(InvalidTransitionError):
                ride.transition_to(target)
            assert ride.status == source

    def test_inconsistent_rides_are_detected(self):
        assert not Ride(status=RideStatus.ACCEPTED, driver_id=None).is_consistent()
        assert not Ride(status=RideStatus.PENDING, driver_id="d").is_consistent()
        assert not Ride(status=RideStatus.CANCELLED, cancelled_by=CancelledBy.USER).is_consistent()


class TestValueObjects:
    def test_location_accepts_short_keys(self):
        loc = Location.parse({"name": "A", "lat": 14.88, "lon": 120.85}, "pickup")
        assert (loc.latitude, loc.longitude) == (14.88, 120.85)

    def test_location_without_coordinates_fails(self):
        with pytest.raises(ValidationError, match="Invalid pickup location data"):
            Location.parse({"name": "A"}, "pickup")

    def test_location_out_of_range_fails(self):
        with pytest.raises(ValidationError, match="out of range"):
            Location.parse({"name": "A", "latitude": 91, "longitude": 0}, "dropoff")

    def test_canonical_pair_is_order_independent(self):
        assert canonical_pair("b", "a") == canonical_pair("a", "b") == ("a", "b")

    def test_canonical_pair_rejects_self_chat(self):
        with pytest.raises(ValidationError):
            canonical_pair("a", "a")
