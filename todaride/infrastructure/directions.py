"""
Directions provider client (OSRM route API).

The returned polyline is treated as opaque.  Every call is bounded by
``directions_timeout_seconds``; on timeout, transport error or an
unusable response the client degrades to a straight line and the
haversine distance, so routing outages never block booking or
navigation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from todaride.config import settings
from todaride.domain.distance import haversine_km, straight_line
from todaride.domain.errors import UpstreamTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    polyline: list[tuple[float, float]]
    distance_km: float
    duration_seconds: Optional[float] = None
    fallback: bool = False


class DirectionsClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.directions_url).rstrip("/")
        self.timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.directions_timeout_seconds
        )
        self._transport = transport

    async def fetch_route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> Route:
        """Query the provider; raises ``UpstreamTimeoutError`` on any failure."""
        (olat, olng), (dlat, dlng) = origin, destination
        url = f"{self.base_url}/{olng},{olat};{dlng},{dlat}"
        params = {"overview": "full", "geometries": "geojson"}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamTimeoutError(f"Directions provider failed: {exc}") from exc

        try:
            return _parse_route(data)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise UpstreamTimeoutError(
                f"Malformed directions response: {exc!r}"
            ) from exc

    async def route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> Route:
        """Road route if available, otherwise the straight-line fallback."""
        try:
            return await self.fetch_route(origin, destination)
        except UpstreamTimeoutError as exc:
            logger.warning("Falling back to straight-line route: %s", exc.message)
            return Route(
                polyline=straight_line(*origin, *destination),
                distance_km=haversine_km(*origin, *destination),
                fallback=True,
            )


def _parse_route(data: dict) -> Route:
    routes = data.get("routes") or []
    if data.get("code") != "Ok" or not routes:
        raise UpstreamTimeoutError(f"Directions provider returned {data.get('code')!r}")
    route = routes[0]
    coordinates = route.get("geometry", {}).get("coordinates", [])
    return Route(
        polyline=[(float(lat), float(lng)) for lng, lat in coordinates],
        distance_km=float(route.get("distance", 0.0)) / 1000.0,
        duration_seconds=route.get("duration"),
    )
