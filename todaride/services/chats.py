"""
Chat and message persistence contract.

* ``ChatService.find_or_create`` converges concurrent first contact on a
  single chat: the pair is canonicalised, looked up, and created inside a
  savepoint; a uniqueness violation means another request created it
  first, so that row is fetched and returned.
* ``MessageService.send`` inserts the message before touching the chat,
  so ``chats.last_message_id`` never points at a message that failed to
  persist.  A failed chat update is logged and left to
  ``todaride.workers.reconciler``; the message itself is kept.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from todaride.domain.entities import canonical_pair
from todaride.domain.enums import MessageType
from todaride.domain.errors import (
    InternalError,
    NotFoundError,
    ValidationError,
)
from todaride.infrastructure.models import ChatModel, MessageModel
from todaride.infrastructure.repositories import (
    ChatRepository,
    MessageRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

SORT_NEWEST_FIRST = "-createdAt"
SORT_OLDEST_FIRST = "createdAt"


class ChatService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.chats = ChatRepository(session)
        self.users = UserRepository(session)

    async def find_or_create(
        self, member_a: str, member_b: str
    ) -> tuple[ChatModel, bool]:
        """Return ``(chat, created)`` for the unordered pair."""
        first, second = canonical_pair(member_a, member_b)
        found = await self.users.get_many([first, second])
        if len(found) != 2:
            raise NotFoundError("User not found")

        existing = await self.chats.get_by_pair(first, second)
        if existing is not None:
            return existing, False

        try:
            async with self.session.begin_nested():
                chat = await self.chats.create(
                    ChatModel(member_a=first, member_b=second, unread_message_count=0)
                )
        except IntegrityError:
            logger.info("Chat for %s/%s created concurrently; reusing it", first, second)
            existing = await self.chats.get_by_pair(first, second)
            if existing is None:
                raise InternalError("Chat creation failed") from None
            return existing, False

        logger.info("Chat %s created for %s/%s", chat.id, first, second)
        return chat, True

    async def get(self, chat_id: str) -> ChatModel:
        chat = await self.chats.get_by_id(chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        return chat

    async def get_for_member(self, chat_id: str, user_id: str) -> ChatModel:
        chat = await self.get(chat_id)
        if user_id not in chat.members:
            raise NotFoundError("Chat not found")
        return chat

    async def list_for_user(self, user_id: str) -> list[ChatModel]:
        return await self.chats.list_for_user(user_id)


class MessageService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.chats = ChatRepository(session)
        self.messages = MessageRepository(session)

    async def _chat(self, chat_id: str) -> ChatModel:
        chat = await self.chats.get_by_id(chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        return chat

    async def send(
        self,
        chat_id: str,
        sender_id: str,
        text: str,
        type: Any = MessageType.TEXT,
    ) -> MessageModel:
        if not chat_id or not sender_id or not text or not str(text).strip():
            raise ValidationError(
                "Missing required fields: chatId, sender, and text are required"
            )
        try:
            message_type = MessageType(type or MessageType.TEXT)
        except ValueError:
            raise ValidationError(f"Unknown message type: {type}") from None

        chat = await self._chat(chat_id)
        if sender_id not in chat.members:
            raise ValidationError("Sender is not a member of this chat")

        message = await self.messages.create(
            MessageModel(
                chat_id=chat_id,
                sender_id=sender_id,
                text=str(text),
                type=message_type,
                read=False,
            )
        )

        try:
            async with self.session.begin_nested():
                updated = await self.chats.record_message(chat_id, message.id)
            if not updated:
                logger.warning("Chat %s vanished while recording %s", chat_id, message.id)
        except SQLAlchemyError:
            logger.exception(
                "Chat %s not updated for message %s; left for reconciliation",
                chat_id,
                message.id,
            )
        return message

    async def list_messages(
        self,
        chat_id: str,
        *,
        page: int = 1,
        limit: int = 50,
        sort: str = SORT_NEWEST_FIRST,
    ) -> tuple[list[MessageModel], int]:
        if not chat_id:
            raise ValidationError("Chat ID is required")
        if sort not in (SORT_NEWEST_FIRST, SORT_OLDEST_FIRST):
            raise ValidationError(f"Unsupported sort: {sort}")
        if page < 1 or not 1 <= limit <= 200:
            raise ValidationError("Invalid pagination parameters")
        await self._chat(chat_id)
        return await self.messages.list_for_chat(
            chat_id, page=page, limit=limit, newest_first=sort == SORT_NEWEST_FIRST
        )

    async def mark_read(self, chat_id: str, reader_id: str) -> int:
        """Idempotent: a second call marks nothing and still zeroes the counter."""
        if not chat_id or not reader_id:
            raise ValidationError("Chat ID and User ID are required")
        chat = await self._chat(chat_id)
        if reader_id not in chat.members:
            raise ValidationError("Reader is not a member of this chat")

        modified = await self.messages.mark_read(chat_id, reader_id)
        await self.chats.reset_unread(chat_id)
        return modified
