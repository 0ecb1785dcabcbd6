"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from todaride.domain.enums import PassengerType


# ── Requests ──────────────────────────────────────────────────────────
# Mobile clients send camelCase; snake_case is accepted too.


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RideCreateRequest(RequestModel):
    """Location payloads are ``{name, latitude, longitude}`` (``lat``/``lon``
    accepted) and are validated by the ride service, which reports the
    specific reason on failure."""

    first_name: Optional[str] = Field(None, max_length=80)
    last_name: Optional[str] = Field(None, max_length=80)
    pickup_location: Optional[dict] = None
    dropoff_location: Optional[dict] = None
    distance: Optional[float] = Field(None, description="Route length in km.")
    fare: Optional[float] = None
    toda_name: Optional[str] = Field(
        None, max_length=120, description="Dispatch group that should see this ride."
    )


class AssignDriverRequest(RequestModel):
    driver_id: Optional[str] = Field(
        None, description="Defaults to the calling driver."
    )


class RideStatusUpdateRequest(RequestModel):
    status: str


class RideCancelRequest(RequestModel):
    cancelled_by: Optional[str] = None
    cancelled_reason: Optional[str] = Field(None, max_length=255)


class ChatCreateRequest(RequestModel):
    members: list[str] = Field(default_factory=list)


class MessageCreateRequest(RequestModel):
    chat_id: str
    text: str = Field(..., min_length=1, max_length=2000)
    type: str = "text"


# ── Responses ─────────────────────────────────────────────────────────


class LocationOut(BaseModel):
    name: str
    latitude: float
    longitude: float


class PartyResponse(BaseModel):
    id: str
    display_name: str
    phone: Optional[str] = None
    role: str
    toda_name: Optional[str] = None


class RideResponse(BaseModel):
    id: str
    passenger_id: str
    passenger_name: str
    passenger: Optional[PartyResponse] = None
    pickup: LocationOut
    dropoff: LocationOut
    distance: float
    fare: float
    toda_name: Optional[str] = None
    status: str
    driver_id: Optional[str] = None
    driver: Optional[PartyResponse] = None
    cancelled_by: Optional[str] = None
    cancelled_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RideListResponse(BaseModel):
    count: int
    total: int
    page: int
    pages: int
    rides: list[RideResponse]


class FareEstimateResponse(BaseModel):
    distance_km: float
    fare: int
    passenger_type: PassengerType
    polyline: list[tuple[float, float]]
    duration_seconds: Optional[float] = None
    fallback: bool = False


class MessageResponse(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    text: str
    type: str
    read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ChatResponse(BaseModel):
    id: str
    members: list[str]
    member_details: list[PartyResponse] = []
    last_message: Optional[MessageResponse] = None
    unread_message_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatCreateResponse(ChatResponse):
    created: bool


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class MessageListResponse(BaseModel):
    messages: list[MessageResponse]
    pagination: Pagination


class MarkReadResponse(BaseModel):
    modified_count: int


class HealthResponse(BaseModel):
    status: str = "ok"
    online_users: int = 0


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
