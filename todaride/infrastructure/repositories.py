"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Ride status writes go through
``RideRepository.compare_and_set``: a single conditional ``UPDATE`` whose
``WHERE`` clause repeats the status the caller read, so two concurrent
transitions on the same ride cannot both succeed.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ChatModel, MessageModel, MessageReadModel, RideModel, UserModel
from todaride.domain.entities import utc_now
from todaride.domain.enums import RideStatus


def _dialect_insert(session: AsyncSession):
    """``INSERT`` construct with ``ON CONFLICT`` support for the bound dialect."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class UserRepository:
    """User directory collaborator: role, ban flag and display data."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: str) -> Optional[UserModel]:
        if not user_id:
            return None
        return await self.session.get(UserModel, user_id)

    async def get_many(self, user_ids: Sequence[str]) -> dict[str, UserModel]:
        ids = {uid for uid in user_ids if uid}
        if not ids:
            return {}
        result = await self.session.execute(
            select(UserModel).where(UserModel.id.in_(ids))
        )
        return {u.id: u for u in result.scalars().all()}


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: str) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def refresh(self, ride: RideModel) -> RideModel:
        await self.session.refresh(ride)
        return ride

    async def compare_and_set(
        self, ride_id: str, expected_status: RideStatus, **values: Any
    ) -> bool:
        """Apply *values* only if the ride is still in *expected_status*.

        Returns False when zero rows matched, i.e. another writer got there
        first.
        """
        values.setdefault("updated_at", utc_now())
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _filtered(
        self,
        *,
        status: Optional[RideStatus] = None,
        toda_name: Optional[str] = None,
        passenger_id: Optional[str] = None,
        driver_id: Optional[str] = None,
    ):
        conditions = []
        if status is not None:
            conditions.append(RideModel.status == status)
        if toda_name is not None:
            conditions.append(RideModel.toda_name == toda_name)
        if passenger_id is not None:
            conditions.append(RideModel.passenger_id == passenger_id)
        if driver_id is not None:
            conditions.append(RideModel.driver_id == driver_id)
        return conditions

    async def list_by_filter(
        self,
        *,
        status: Optional[RideStatus] = None,
        toda_name: Optional[str] = None,
        passenger_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[RideModel], int]:
        """Newest first.  Returns ``(rides, total)``."""
        conditions = self._filtered(
            status=status,
            toda_name=toda_name,
            passenger_id=passenger_id,
            driver_id=driver_id,
        )
        query = (
            select(RideModel)
            .where(*conditions)
            .order_by(RideModel.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rides = list((await self.session.execute(query)).scalars().all())
        total = await self.session.scalar(
            select(func.count()).select_from(RideModel).where(*conditions)
        )
        return rides, total or 0


class ChatRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, chat_id: str) -> Optional[ChatModel]:
        return await self.session.get(ChatModel, chat_id)

    async def get_by_pair(self, member_a: str, member_b: str) -> Optional[ChatModel]:
        """Look up by an already-canonicalised pair."""
        result = await self.session.execute(
            select(ChatModel).where(
                ChatModel.member_a == member_a, ChatModel.member_b == member_b
            )
        )
        return result.scalar_one_or_none()

    async def create(self, chat: ChatModel) -> ChatModel:
        self.session.add(chat)
        await self.session.flush()
        return chat

    async def list_for_user(self, user_id: str) -> list[ChatModel]:
        result = await self.session.execute(
            select(ChatModel)
            .where(or_(ChatModel.member_a == user_id, ChatModel.member_b == user_id))
            .order_by(ChatModel.updated_at.desc())
        )
        return list(result.scalars().all())

    async def record_message(self, chat_id: str, message_id: str) -> bool:
        """Point ``last_message_id`` at *message_id* and bump the counter."""
        result = await self.session.execute(
            update(ChatModel)
            .where(ChatModel.id == chat_id)
            .values(
                last_message_id=message_id,
                unread_message_count=ChatModel.unread_message_count + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reset_unread(self, chat_id: str) -> None:
        await self.session.execute(
            update(ChatModel)
            .where(ChatModel.id == chat_id)
            .values(unread_message_count=0)
            .execution_options(synchronize_session=False)
        )

    async def list_batch(self, offset: int, limit: int) -> list[ChatModel]:
        result = await self.session.execute(
            select(ChatModel).order_by(ChatModel.id).offset(offset).limit(limit)
        )
        return list(result.scalars().all())


class MessageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, message: MessageModel) -> MessageModel:
        self.session.add(message)
        await self.session.flush()
        return message

    async def get_by_id(self, message_id: str) -> Optional[MessageModel]:
        return await self.session.get(MessageModel, message_id)

    async def list_for_chat(
        self, chat_id: str, *, page: int = 1, limit: int = 50, newest_first: bool = True
    ) -> tuple[list[MessageModel], int]:
        order = (
            (MessageModel.created_at.desc(), MessageModel.id.desc())
            if newest_first
            else (MessageModel.created_at.asc(), MessageModel.id.asc())
        )
        result = await self.session.execute(
            select(MessageModel)
            .where(MessageModel.chat_id == chat_id)
            .order_by(*order)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = await self.count_for_chat(chat_id)
        return list(result.scalars().all()), total

    async def count_for_chat(self, chat_id: str) -> int:
        total = await self.session.scalar(
            select(func.count())
            .select_from(MessageModel)
            .where(MessageModel.chat_id == chat_id)
        )
        return total or 0

    async def latest_for_chat(self, chat_id: str) -> Optional[MessageModel]:
        result = await self.session.execute(
            select(MessageModel)
            .where(MessageModel.chat_id == chat_id)
            .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_unread(self, chat_id: str) -> int:
        """Messages nobody but their sender has read."""
        total = await self.session.scalar(
            select(func.count())
            .select_from(MessageModel)
            .where(MessageModel.chat_id == chat_id, MessageModel.read.is_(False))
        )
        return total or 0

    async def mark_read(self, chat_id: str, reader_id: str) -> int:
        """Add *reader_id* to the read-by set of every message it has not read.

        Messages sent by the reader are skipped.  Returns the number of
        messages newly marked.
        """
        already_read = select(MessageReadModel.message_id).where(
            MessageReadModel.user_id == reader_id
        )
        result = await self.session.execute(
            select(MessageModel.id).where(
                and_(
                    MessageModel.chat_id == chat_id,
                    MessageModel.sender_id != reader_id,
                    MessageModel.id.not_in(already_read),
                )
            )
        )
        message_ids = list(result.scalars().all())
        if not message_ids:
            return 0

        now = utc_now()
        inserted = await self.record_reads(message_ids, reader_id, now)
        if inserted:
            await self.session.execute(
                update(MessageModel)
                .where(MessageModel.id.in_(inserted))
                .values(read=True, read_at=now)
                .execution_options(synchronize_session=False)
            )
        await self.session.flush()
        return len(inserted)

    async def record_reads(
        self, message_ids: Sequence[str], reader_id: str, read_at
    ) -> list[str]:
        """Insert read-by rows, skipping ones that already exist.

        A concurrent mark-read by the same reader may commit the same rows
        between our select and insert; those are returned as not inserted.
        """
        if not message_ids:
            return []
        insert = _dialect_insert(self.session)
        stmt = (
            insert(MessageReadModel)
            .values(
                [
                    {"message_id": mid, "user_id": reader_id, "read_at": read_at}
                    for mid in message_ids
                ]
            )
            .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
            .returning(MessageReadModel.message_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def read_by(self, message_id: str) -> list[str]:
        result = await self.session.execute(
            select(MessageReadModel.user_id).where(
                MessageReadModel.message_id == message_id
            )
        )
        return list(result.scalars().all())
