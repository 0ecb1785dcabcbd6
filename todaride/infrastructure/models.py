"""
SQLAlchemy ORM models.

Tables
------
* ``users``          -- directory of commuters, drivers and admins (read-only here)
* ``rides``          -- ride requests and their lifecycle status
* ``chats``          -- one row per unordered member pair
* ``messages``       -- chat messages, append-only except read state
* ``message_reads``  -- read-by set, one row per (message, reader)

Indexes
-------
* **B-Tree** on ``(status, toda_name)`` for the driver's pending list,
  ``passenger_id`` / ``driver_id`` for histories,
  ``(chat_id, created_at)`` for message pages.
* **Unique** on ``(member_a, member_b)``: the backstop that makes
  concurrent first contact converge on one chat.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base
from todaride.domain.entities import utc_now
from todaride.domain.enums import CancelledBy, MessageType, RideStatus, UserRole


def new_id() -> str:
    return uuid.uuid4().hex


def _values(enum_cls):
    return [member.value for member in enum_cls]


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    first_name = Column(String(80), nullable=False)
    last_name = Column(String(80), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(32), nullable=True)
    role = Column(
        Enum(UserRole, values_callable=_values), default=UserRole.COMMUTER, nullable=False
    )
    toda_name = Column(String(120), nullable=True)
    is_banned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_driver(self) -> bool:
        return UserRole(self.role) == UserRole.DRIVER


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(32), primary_key=True, default=new_id)
    passenger_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    passenger_first_name = Column(String(80), nullable=False)
    passenger_last_name = Column(String(80), nullable=False)

    pickup_name = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_name = Column(String(255), nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    distance_km = Column(Float, nullable=False)
    fare = Column(Float, nullable=False)
    toda_name = Column(String(120), nullable=True)

    status = Column(
        Enum(RideStatus, values_callable=_values),
        default=RideStatus.PENDING,
        nullable=False,
    )
    driver_id = Column(String(32), ForeignKey("users.id"), nullable=True)
    cancelled_by = Column(Enum(CancelledBy, values_callable=_values), nullable=True)
    cancelled_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_rides_status_toda", "status", "toda_name"),
        Index("idx_rides_passenger", "passenger_id", "created_at"),
        Index("idx_rides_driver", "driver_id", "created_at"),
    )

    @property
    def pickup(self) -> dict:
        return {"name": self.pickup_name, "latitude": self.pickup_lat, "longitude": self.pickup_lng}

    @property
    def dropoff(self) -> dict:
        return {"name": self.dropoff_name, "latitude": self.dropoff_lat, "longitude": self.dropoff_lng}


class ChatModel(Base):
    __tablename__ = "chats"

    id = Column(String(32), primary_key=True, default=new_id)
    member_a = Column(String(32), ForeignKey("users.id"), nullable=False)
    member_b = Column(String(32), ForeignKey("users.id"), nullable=False)
    last_message_id = Column(String(32), nullable=True)
    unread_message_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("member_a", "member_b", name="uq_chats_members"),
        Index("idx_chats_member_b", "member_b"),
    )

    @property
    def members(self) -> list[str]:
        return [self.member_a, self.member_b]

    def other_member(self, user_id: str) -> str:
        return self.member_b if user_id == self.member_a else self.member_a


class MessageModel(Base):
    __tablename__ = "messages"

    id = Column(String(32), primary_key=True, default=new_id)
    chat_id = Column(String(32), ForeignKey("chats.id"), nullable=False)
    sender_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=False)
    type = Column(
        Enum(MessageType, values_callable=_values), default=MessageType.TEXT, nullable=False
    )
    read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (Index("idx_messages_chat_created", "chat_id", "created_at"),)


class MessageReadModel(Base):
    __tablename__ = "message_reads"

    message_id = Column(String(32), ForeignKey("messages.id"), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), primary_key=True)
    read_at = Column(DateTime(timezone=True), default=utc_now)
