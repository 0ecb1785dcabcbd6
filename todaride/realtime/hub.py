"""
Realtime presence & messaging hub.

Connection lifecycle
--------------------
``connect`` registers an anonymous socket.  Until the client sends
``user-online`` the socket gets no presence broadcasts and no message
relays.  ``announce_presence`` binds it to a user; ``disconnect`` unbinds
it and, if that was the user's last socket, tells everyone the user went
offline.

Delivery
--------
Best-effort, at most once per bound socket.  A failing socket is logged
and dropped without affecting delivery to the others.  Nothing is queued
for offline users: history lives in the message store.

The hub owns no durable state.  A restart means everyone is offline until
their clients reconnect and re-announce.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from todaride.config import settings
from todaride.domain.errors import UnauthorizedError, ValidationError

from .presence import InMemoryPresenceStore, PresenceStore
from .typing_markers import TypingMarkers

logger = logging.getLogger(__name__)


class RealtimeHub:
    def __init__(
        self,
        presence: Optional[PresenceStore] = None,
        typing: Optional[TypingMarkers] = None,
    ):
        self.presence = presence or InMemoryPresenceStore()
        self.typing = typing or TypingMarkers(settings.typing_idle_seconds)
        self._connected: set[Any] = set()
        self._rooms: dict[str, set[Any]] = {}
        self._broken: set[Any] = set()

    # ── Connection lifecycle ──────────────────────────────────────────

    def connect(self, socket: Any) -> None:
        self._connected.add(socket)

    async def announce_presence(self, socket: Any, user_id: str) -> None:
        if not user_id:
            raise ValidationError("userId is required")
        if socket not in self._connected:
            self.connect(socket)

        previous = self.presence.user_of(socket)
        if previous is not None and previous != user_id:
            await self._unbind(socket)

        first = self.presence.bind(user_id, socket)
        logger.info("User %s online (first socket=%s)", user_id, first)

        await self._send(
            socket, {"event": "users-online", "users": self.presence.online_users()}
        )
        if first:
            await self._broadcast(
                {"event": "user-connected", "userId": user_id}, exclude_user=user_id
            )
        await self._reap()

    async def disconnect(self, socket: Any) -> None:
        self._connected.discard(socket)
        self._broken.discard(socket)
        for members in self._rooms.values():
            members.discard(socket)
        self._rooms = {cid: members for cid, members in self._rooms.items() if members}
        await self._unbind(socket)
        await self._reap()

    async def _unbind(self, socket: Any) -> None:
        user_id, went_offline = self.presence.unbind(socket)
        if not went_offline:
            return
        logger.info("User %s offline", user_id)
        for chat_id in self.typing.clear_user(user_id):
            await self.broadcast_to_room(
                chat_id,
                {"event": "user-typing", "userId": user_id, "chatId": chat_id, "isTyping": False},
            )
        await self._broadcast({"event": "user-disconnected", "userId": user_id})

    # ── Rooms ─────────────────────────────────────────────────────────

    def require_user(self, socket: Any) -> str:
        user_id = self.presence.user_of(socket)
        if user_id is None:
            raise UnauthorizedError("Announce presence before using chat rooms")
        return user_id

    def join_room(self, socket: Any, chat_id: str) -> None:
        self.require_user(socket)
        if not chat_id:
            raise ValidationError("chatId is required")
        self._rooms.setdefault(chat_id, set()).add(socket)

    def leave_room(self, socket: Any, chat_id: str) -> None:
        members = self._rooms.get(chat_id)
        if members is None:
            return
        members.discard(socket)
        if not members:
            del self._rooms[chat_id]

    def room_members(self, chat_id: str) -> list[Any]:
        return list(self._rooms.get(chat_id, ()))

    # ── Delivery ──────────────────────────────────────────────────────

    async def relay_message(
        self,
        chat_id: str,
        message: dict,
        recipient_ids: Iterable[str],
        chat: Optional[dict] = None,
    ) -> int:
        """Push a persisted message to every bound socket of each recipient.

        Returns the number of sockets that accepted the event.
        """
        event = {
            "event": "receive-message",
            "chatId": chat_id,
            "message": message,
            "chat": chat,
        }
        delivered = 0
        for user_id in dict.fromkeys(recipient_ids):
            for socket in self.presence.sockets_of(user_id):
                if await self._send(socket, event):
                    delivered += 1
        await self._reap()
        return delivered

    async def set_typing(self, socket: Any, chat_id: str, is_typing: bool) -> None:
        user_id = self.require_user(socket)
        if not chat_id:
            raise ValidationError("chatId is required")
        self.typing.set(user_id, chat_id, bool(is_typing))
        await self.broadcast_to_room(
            chat_id,
            {"event": "user-typing", "userId": user_id, "chatId": chat_id, "isTyping": bool(is_typing)},
            exclude_user=user_id,
        )

    async def broadcast_to_room(
        self, chat_id: str, event: dict, exclude_user: Optional[str] = None
    ) -> None:
        for socket in self.room_members(chat_id):
            if exclude_user is not None and self.presence.user_of(socket) == exclude_user:
                continue
            await self._send(socket, event)
        await self._reap()

    async def send_to(self, socket: Any, event: dict) -> bool:
        return await self._send(socket, event)

    async def pong(self, socket: Any) -> None:
        await self._send(
            socket, {"event": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}
        )

    # ── Queries ───────────────────────────────────────────────────────

    def is_online(self, user_id: str) -> bool:
        return self.presence.is_online(user_id)

    def online_users(self) -> list[str]:
        return self.presence.online_users()

    def typing_users(self, chat_id: str) -> list[str]:
        return self.typing.active(chat_id)

    # ── Internals ─────────────────────────────────────────────────────

    async def _broadcast(self, event: dict, exclude_user: Optional[str] = None) -> None:
        """Send to every announced socket; anonymous sockets are skipped."""
        for user_id in self.presence.online_users():
            if user_id == exclude_user:
                continue
            for socket in self.presence.sockets_of(user_id):
                await self._send(socket, event)

    async def _send(self, socket: Any, event: dict) -> bool:
        if socket in self._broken:
            return False
        try:
            await socket.send_json(event)
        except Exception:
            logger.warning("Dropping socket after failed %s delivery", event.get("event"))
            self._broken.add(socket)
            return False
        return True

    async def _reap(self) -> None:
        while self._broken:
            socket = self._broken.pop()
            self._connected.discard(socket)
            for members in self._rooms.values():
                members.discard(socket)
            await self._unbind(socket)
