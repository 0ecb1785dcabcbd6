"""
Read-model assembly.

Stored rows keep only ids.  Display data (passenger / driver names,
phone numbers, chat members, last message) is joined here, at the
response boundary, with one batched user lookup per response.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from todaride.infrastructure.models import ChatModel, MessageModel, RideModel, UserModel
from todaride.infrastructure.repositories import MessageRepository, UserRepository


def party_view(user: Optional[UserModel]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "display_name": user.display_name,
        "phone": user.phone_number,
        "role": user.role.value if hasattr(user.role, "value") else user.role,
        "toda_name": user.toda_name,
    }


def _value(field):
    return field.value if hasattr(field, "value") else field


def ride_view(ride: RideModel, users: dict[str, UserModel]) -> dict:
    return {
        "id": ride.id,
        "passenger_id": ride.passenger_id,
        "passenger_name": f"{ride.passenger_first_name} {ride.passenger_last_name}".strip(),
        "passenger": party_view(users.get(ride.passenger_id)),
        "pickup": ride.pickup,
        "dropoff": ride.dropoff,
        "distance": ride.distance_km,
        "fare": ride.fare,
        "toda_name": ride.toda_name,
        "status": _value(ride.status),
        "driver_id": ride.driver_id,
        "driver": party_view(users.get(ride.driver_id)) if ride.driver_id else None,
        "cancelled_by": _value(ride.cancelled_by),
        "cancelled_reason": ride.cancelled_reason,
        "created_at": ride.created_at,
        "updated_at": ride.updated_at,
        "started_at": ride.started_at,
        "completed_at": ride.completed_at,
    }


def message_view(message: MessageModel) -> dict:
    return {
        "id": message.id,
        "chat_id": message.chat_id,
        "sender_id": message.sender_id,
        "text": message.text,
        "type": _value(message.type),
        "read": message.read,
        "read_at": message.read_at,
        "created_at": message.created_at,
    }


def chat_view(
    chat: ChatModel, users: dict[str, UserModel], last_message: Optional[MessageModel]
) -> dict:
    return {
        "id": chat.id,
        "members": chat.members,
        "member_details": [party_view(users.get(uid)) for uid in chat.members if uid in users],
        "last_message": message_view(last_message) if last_message else None,
        "unread_message_count": chat.unread_message_count,
        "created_at": chat.created_at,
        "updated_at": chat.updated_at,
    }


class ReadModelAssembler:
    def __init__(self, session: AsyncSession):
        self.users = UserRepository(session)
        self.messages = MessageRepository(session)

    async def rides(self, rides: Iterable[RideModel]) -> list[dict]:
        rides = list(rides)
        ids = [r.passenger_id for r in rides] + [r.driver_id for r in rides if r.driver_id]
        users = await self.users.get_many(ids)
        return [ride_view(r, users) for r in rides]

    async def ride(self, ride: RideModel) -> dict:
        return (await self.rides([ride]))[0]

    async def chats(self, chats: Iterable[ChatModel]) -> list[dict]:
        chats = list(chats)
        users = await self.users.get_many([uid for c in chats for uid in c.members])
        views = []
        for chat in chats:
            last = (
                await self.messages.get_by_id(chat.last_message_id)
                if chat.last_message_id
                else None
            )
            views.append(chat_view(chat, users, last))
        return views

    async def chat(self, chat: ChatModel) -> dict:
        return (await self.chats([chat]))[0]
