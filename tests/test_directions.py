"""Directions client and the haversine fallback."""

import httpx
import pytest

from todaride.domain.distance import haversine_km, straight_line
from todaride.domain.errors import UpstreamTimeoutError
from todaride.infrastructure.directions import DirectionsClient

BASE_URL = "http://osrm.test/route/v1/driving"
ORIGIN = (14.8847, 120.8572)
DESTINATION = (14.8920, 120.8590)


def _client(handler) -> DirectionsClient:
    return DirectionsClient(BASE_URL, 1.0, transport=httpx.MockTransport(handler))


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_km(14.88, 120.85, 14.88, 120.85) == 0.0

    def test_one_degree_of_latitude(self):
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.01)

    def test_symmetry(self):
        a = haversine_km(*ORIGIN, *DESTINATION)
        b = haversine_km(*DESTINATION, *ORIGIN)
        assert a == pytest.approx(b)

    def test_straight_line_is_two_points(self):
        assert straight_line(*ORIGIN, *DESTINATION) == [ORIGIN, DESTINATION]


class TestDirectionsClient:
    @pytest.mark.asyncio
    async def test_route_parsed_as_lat_lng(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(
                200,
                json={
                    "code": "Ok",
                    "routes": [
                        {
                            "distance": 1234.0,
                            "duration": 300.0,
                            "geometry": {
                                "coordinates": [[120.8572, 14.8847], [120.8580, 14.8900]]
                            },
                        }
                    ],
                },
            )

        route = await _client(handler).route(ORIGIN, DESTINATION)

        assert route.fallback is False
        assert route.distance_km == pytest.approx(1.234)
        assert route.duration_seconds == 300.0
        assert route.polyline == [(14.8847, 120.8572), (14.8900, 120.8580)]
        # OSRM takes lng,lat pairs
        assert "/120.8572,14.8847;120.859,14.892" in seen["url"]

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_straight_line(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        route = await _client(handler).route(ORIGIN, DESTINATION)
        assert route.fallback is True
        assert route.polyline == [ORIGIN, DESTINATION]
        assert route.distance_km == pytest.approx(haversine_km(*ORIGIN, *DESTINATION))
        assert route.duration_seconds is None

    @pytest.mark.asyncio
    async def test_server_error_falls_back(self):
        route = await _client(lambda request: httpx.Response(502)).route(ORIGIN, DESTINATION)
        assert route.fallback is True

    @pytest.mark.asyncio
    async def test_no_route_falls_back(self):
        def handler(request):
            return httpx.Response(200, json={"code": "NoRoute", "routes": []})

        route = await _client(handler).route(ORIGIN, DESTINATION)
        assert route.fallback is True

    @pytest.mark.asyncio
    async def test_fetch_route_raises_upstream_error(self):
        def handler(request):
            return httpx.Response(200, text="not json")

        with pytest.raises(UpstreamTimeoutError):
            await _client(handler).fetch_route(ORIGIN, DESTINATION)

    @pytest.mark.asyncio
    async def test_non_object_body_falls_back(self):
        route = await _client(lambda request: httpx.Response(200, json=[])).route(
            ORIGIN, DESTINATION
        )
        assert route.fallback is True
        assert route.polyline == [ORIGIN, DESTINATION]

    @pytest.mark.asyncio
    async def test_bad_coordinate_pair_falls_back(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "code": "Ok",
                    "routes": [{"distance": 10.0, "geometry": {"coordinates": [[1]]}}],
                },
            )

        route = await _client(handler).route(ORIGIN, DESTINATION)
        assert route.fallback is True

    @pytest.mark.asyncio
    async def test_malformed_body_raises_upstream_error(self):
        def handler(request):
            return httpx.Response(200, json={"code": "Ok", "routes": ["oops"]})

        with pytest.raises(UpstreamTimeoutError):
            await _client(handler).fetch_route(ORIGIN, DESTINATION)
