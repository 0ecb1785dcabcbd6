"""
Websocket event dispatch.

Client events (JSON objects with an ``event`` key):

- ``user-online``  ``{userId}``
- ``join-room`` / ``leave-room``  ``{chatId}`` (join is members only)
- ``send-message``  ``{chatId, text, type?, clientId?}``
- ``typing``  ``{chatId, isTyping}``
- ``ping``

Errors are reported back to the offending socket as
``{"event": "error", "code": ..., "message": ...}``; the connection stays
open.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from todaride.domain.errors import InternalError, RideHailingError, ValidationError
from todaride.services.chats import ChatService, MessageService
from todaride.services.read_models import ReadModelAssembler, message_view

from .hub import RealtimeHub

logger = logging.getLogger(__name__)


class RealtimeGateway:
    def __init__(self, hub: RealtimeHub, session_factory: async_sessionmaker[AsyncSession]):
        self.hub = hub
        self.session_factory = session_factory

    async def handle(self, socket: Any, payload: Any) -> None:
        if not isinstance(payload, dict):
            await self._error(socket, ValidationError("Event must be a JSON object"), {})
            return
        event = payload.get("event")
        try:
            if event == "user-online":
                await self.hub.announce_presence(socket, payload.get("userId"))
            elif event == "join-room":
                await self._join_room(socket, payload.get("chatId"))
            elif event == "leave-room":
                self.hub.leave_room(socket, payload.get("chatId"))
            elif event == "typing":
                await self.hub.set_typing(
                    socket, payload.get("chatId"), bool(payload.get("isTyping"))
                )
            elif event == "send-message":
                await self._send_message(socket, payload)
            elif event == "ping":
                await self.hub.pong(socket)
            else:
                raise ValidationError(f"Unknown event: {event}")
        except RideHailingError as exc:
            await self._error(socket, exc, payload)

    async def _join_room(self, socket: Any, chat_id: Any) -> None:
        user_id = self.hub.require_user(socket)
        if not chat_id:
            raise ValidationError("chatId is required")
        async with self.session_factory() as session:
            await ChatService(session).get_for_member(chat_id, user_id)
        self.hub.join_room(socket, chat_id)

    async def _send_message(self, socket: Any, payload: dict) -> None:
        sender_id = self.hub.require_user(socket)
        chat_id = payload.get("chatId")

        async with self.session_factory() as session:
            try:
                message = await MessageService(session).send(
                    chat_id, sender_id, payload.get("text"), payload.get("type") or "text"
                )
                chat = await ChatService(session).get(chat_id)
                await session.commit()
                await session.refresh(chat)
                chat_data = await ReadModelAssembler(session).chat(chat)
            except SQLAlchemyError:
                logger.exception("Persisting message for chat %s failed", chat_id)
                raise InternalError("Message not sent") from None

        message_data = jsonable_encoder(message_view(message))
        await self.hub.relay_message(
            chat_id,
            message_data,
            [chat.other_member(sender_id)],
            chat=jsonable_encoder(chat_data),
        )
        await self.hub.send_to(
            socket,
            {
                "event": "message-delivered",
                "messageId": message.id,
                "chatId": chat_id,
                "clientId": payload.get("clientId"),
                "message": message_data,
            },
        )

    async def _error(self, socket: Any, exc: RideHailingError, payload: dict) -> None:
        await self.hub.send_to(
            socket,
            {
                "event": "error",
                "code": exc.code,
                "message": exc.message,
                "clientId": payload.get("clientId"),
            },
        )
