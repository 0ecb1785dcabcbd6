"""
Ride status polling for passenger and driver clients.

The agent re-reads ``GET /rides/{id}`` every ``poll_interval_seconds``
and stops once the status its role is waiting for shows up:

=========  ==========================================
role       stops on
=========  ==========================================
passenger  ``accepted``, ``completed``, ``cancelled``
driver     ``completed``, ``cancelled``
=========  ==========================================

A cancelled or completed ride is removed from the local cache; the
cancellation reason is kept on the agent for display.  Transport errors
and malformed payloads are logged and retried on the next tick; a 404
means the ride is gone, so tracking stops and the cache is cleared.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from todaride.config import settings
from todaride.domain.enums import RideStatus

from .cache import ActiveRideCache

logger = logging.getLogger(__name__)

PASSENGER = "passenger"
DRIVER = "driver"

STOP_STATUSES = {
    PASSENGER: {RideStatus.ACCEPTED, RideStatus.COMPLETED, RideStatus.CANCELLED},
    DRIVER: {RideStatus.COMPLETED, RideStatus.CANCELLED},
}


class RideSyncAgent:
    def __init__(
        self,
        role: str,
        user_id: str,
        cache: Optional[ActiveRideCache] = None,
        base_url: str | None = None,
        poll_interval: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if role not in STOP_STATUSES:
            raise ValueError(f"Unknown role: {role}")
        self.role = role
        self.user_id = user_id
        self.cache = cache or ActiveRideCache()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self._transport = transport
        self._sleep = sleep
        self.ride: Optional[dict] = None
        self.cancel_reason: Optional[str] = None

    @property
    def status(self) -> Optional[RideStatus]:
        return RideStatus(self.ride["status"]) if self.ride else None

    def restore(self) -> Optional[dict]:
        """Resume the ride left in the cache by a previous session."""
        entry = self.cache.load()
        self.ride = entry["ride"] if entry else None
        if self.ride:
            logger.info("Restored ride %s (%s)", self.ride.get("id"), entry.get("phase"))
        return self.ride

    def track(self, ride: dict) -> None:
        self.ride = ride
        self.cancel_reason = None
        self.cache.save(ride, ride.get("status", RideStatus.PENDING.value))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-User-Id": self.user_id},
            timeout=10.0,
            transport=self._transport,
        )

    async def poll_once(self, client: httpx.AsyncClient) -> Optional[dict]:
        """Fetch the ride once.  Returns ``None`` when the poll failed."""
        if not self.ride:
            return None
        ride_id = self.ride.get("id")
        try:
            response = await client.get(f"/rides/{ride_id}")
            if response.status_code == httpx.codes.NOT_FOUND:
                logger.warning("Ride %s no longer exists; stopped tracking", ride_id)
                self.ride = None
                self.cache.clear()
                return None
            response.raise_for_status()
            ride = response.json()
            current = RideStatus(ride["status"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Polling ride %s failed: %r", ride_id, exc)
            return None

        previous = self.status
        self.ride = ride
        if previous != current:
            logger.info(
                "Ride %s: %s -> %s",
                ride_id,
                previous.value if previous else None,
                current.value,
            )

        if current == RideStatus.CANCELLED:
            self.cancel_reason = ride.get("cancelled_reason") or "Your ride has been cancelled."
            self.cache.clear()
        elif current == RideStatus.COMPLETED:
            self.cache.clear()
        else:
            self.cache.save(ride, current.value)
        return ride

    def finished(self) -> bool:
        return self.status in STOP_STATUSES[self.role]

    async def run(self, max_polls: Optional[int] = None) -> Optional[dict]:
        """Poll until the role's stop status is seen (or ``max_polls`` ticks)."""
        polls = 0
        async with self._client() as client:
            while self.ride and (max_polls is None or polls < max_polls):
                await self.poll_once(client)
                polls += 1
                if not self.ride or self.finished():
                    break
                await self._sleep(self.poll_interval)
        return self.ride
