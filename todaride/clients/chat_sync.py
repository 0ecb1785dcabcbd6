"""
Chat client synchronisation.

``ChatSyncAgent`` keeps a local, de-duplicated view of each chat built
from two sources: REST history fetches and websocket pushes.  Either may
deliver a message first, and a push may repeat a message already fetched,
so ``MessageStream`` merges by message id.

Sending goes through ``POST /messages`` with exactly one retry on
transport or server failure; a second failure surfaces as
``MessageNotSentError``.  Client errors (4xx) are not retried.

The socket is reopened with ``ReconnectPolicy`` (bounded attempts,
exponential delay capped at ``reconnect_delay_max_seconds``).  After
every successful (re)connect the agent re-announces presence and
re-joins the rooms it had open.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Iterator, Optional

import httpx

from todaride.config import settings

logger = logging.getLogger(__name__)


class MessageNotSentError(Exception):
    def __init__(self, chat_id: str, reason: str = ""):
        super().__init__(f"Message not sent to chat {chat_id}: {reason}".rstrip(": "))
        self.chat_id = chat_id
        self.reason = reason


class ConnectionLostError(Exception):
    pass


# ── Message list ──────────────────────────────────────────────────────


class MessageStream:
    """Messages of one chat, unique by id, oldest first."""

    def __init__(self) -> None:
        self._by_id: dict[str, dict] = {}

    def merge(self, messages: Iterable[dict]) -> int:
        """Add or update messages.  Returns how many were new."""
        added = 0
        for message in messages:
            mid = message.get("id")
            if not mid:
                continue
            if mid not in self._by_id:
                added += 1
                self._by_id[mid] = dict(message)
            else:
                self._by_id[mid].update(message)
        return added

    def mark_read_by_other(self, reader_id: str) -> None:
        for message in self._by_id.values():
            if message.get("sender_id") != reader_id:
                message["read"] = True

    def messages(self) -> list[dict]:
        return sorted(
            self._by_id.values(), key=lambda m: (str(m.get("created_at") or ""), m["id"])
        )

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._by_id


# ── Reconnect / typing helpers ────────────────────────────────────────


class ReconnectPolicy:
    def __init__(
        self,
        attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
    ):
        self.attempts = attempts if attempts is not None else settings.reconnect_attempts
        self.base_delay = (
            base_delay if base_delay is not None else settings.reconnect_delay_seconds
        )
        self.max_delay = (
            max_delay if max_delay is not None else settings.reconnect_delay_max_seconds
        )

    def delays(self) -> Iterator[float]:
        """Wait before each attempt; the first attempt is immediate."""
        for attempt in range(self.attempts):
            if attempt == 0:
                yield 0.0
            else:
                yield min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


class TypingDebouncer:
    """One "started" per burst of keystrokes, one "stopped" after idle."""

    def __init__(
        self,
        idle_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_seconds = (
            idle_seconds if idle_seconds is not None else settings.typing_debounce_seconds
        )
        self._clock = clock
        self.typing = False
        self._last = 0.0

    def keystroke(self) -> bool:
        """Record a keystroke; True when a "started" event should go out."""
        self._last = self._clock()
        if self.typing:
            return False
        self.typing = True
        return True

    def due(self) -> bool:
        """True (once) when the burst went idle and "stopped" should go out."""
        if self.typing and self._clock() - self._last >= self.idle_seconds:
            self.typing = False
            return True
        return False

    def stop(self) -> bool:
        if not self.typing:
            return False
        self.typing = False
        return True


# ── Agent ─────────────────────────────────────────────────────────────


class ChatSyncAgent:
    def __init__(
        self,
        user_id: str,
        connect: Callable[[], Awaitable[Any]],
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        policy: Optional[ReconnectPolicy] = None,
        debouncer: Optional[TypingDebouncer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.user_id = user_id
        self._connect = connect
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._transport = transport
        self.policy = policy or ReconnectPolicy()
        self.debouncer = debouncer or TypingDebouncer()
        self._sleep = sleep

        self.socket: Any = None
        self.rooms: set[str] = set()
        self.streams: dict[str, MessageStream] = {}
        self.online: set[str] = set()
        self.typing: dict[str, set[str]] = {}
        self._typing_chat: Optional[str] = None

    def stream(self, chat_id: str) -> MessageStream:
        return self.streams.setdefault(chat_id, MessageStream())

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-User-Id": self.user_id},
            timeout=10.0,
            transport=self._transport,
        )

    # ── Connection ────────────────────────────────────────────────────

    async def connect(self) -> None:
        last_error: Optional[BaseException] = None
        for attempt, delay in enumerate(self.policy.delays(), start=1):
            if delay:
                await self._sleep(delay)
            try:
                self.socket = await self._connect()
            except OSError as exc:
                last_error = exc
                logger.warning("Connect attempt %d failed: %s", attempt, exc)
                continue
            await self._resume()
            return
        raise ConnectionLostError(
            f"Gave up after {self.policy.attempts} attempts"
        ) from last_error

    async def _resume(self) -> None:
        await self._emit({"event": "user-online", "userId": self.user_id})
        for chat_id in sorted(self.rooms):
            await self._emit({"event": "join-room", "chatId": chat_id})

    async def _emit(self, event: dict) -> None:
        if self.socket is not None:
            await self.socket.send_json(event)

    async def join(self, chat_id: str) -> None:
        self.rooms.add(chat_id)
        await self._emit({"event": "join-room", "chatId": chat_id})

    async def leave(self, chat_id: str) -> None:
        self.rooms.discard(chat_id)
        await self._emit({"event": "leave-room", "chatId": chat_id})

    # ── Inbound ───────────────────────────────────────────────────────

    def handle_event(self, event: dict) -> None:
        kind = event.get("event")
        if kind == "receive-message":
            message = event.get("message") or {}
            chat_id = event.get("chatId") or message.get("chat_id")
            if chat_id:
                self.stream(chat_id).merge([message])
        elif kind == "message-delivered":
            message = event.get("message")
            if message:
                self.stream(event["chatId"]).merge([message])
        elif kind == "messages-read":
            self.stream(event["chatId"]).mark_read_by_other(event["readerId"])
        elif kind == "user-typing":
            users = self.typing.setdefault(event["chatId"], set())
            if event.get("isTyping"):
                users.add(event["userId"])
            else:
                users.discard(event["userId"])
        elif kind == "users-online":
            self.online = set(event.get("users") or [])
        elif kind == "user-connected":
            self.online.add(event["userId"])
        elif kind == "user-disconnected":
            self.online.discard(event["userId"])
            for users in self.typing.values():
                users.discard(event["userId"])
        elif kind == "error":
            logger.warning("Server error event: %s", event.get("message"))

    async def load_history(self, chat_id: str, limit: int = 100) -> list[dict]:
        async with self._http() as client:
            response = await client.get(
                f"/messages/{chat_id}", params={"sort": "createdAt", "limit": limit}
            )
            response.raise_for_status()
            messages = response.json()["messages"]
        self.stream(chat_id).merge(messages)
        return self.stream(chat_id).messages()

    # ── Outbound ──────────────────────────────────────────────────────

    async def send(self, chat_id: str, text: str, type: str = "text") -> dict:
        payload = {"chatId": chat_id, "text": text, "type": type}
        reason = ""
        async with self._http() as client:
            for attempt in (1, 2):
                try:
                    response = await client.post("/messages", json=payload)
                except httpx.TransportError as exc:
                    reason = str(exc) or exc.__class__.__name__
                    logger.warning("Send attempt %d to %s failed: %s", attempt, chat_id, reason)
                    continue
                if response.status_code >= 500:
                    reason = f"server error {response.status_code}"
                    logger.warning("Send attempt %d to %s failed: %s", attempt, chat_id, reason)
                    continue
                if response.is_error:
                    raise MessageNotSentError(chat_id, _error_message(response))
                message = response.json()
                self.stream(chat_id).merge([message])
                return message
        raise MessageNotSentError(chat_id, reason)

    async def typed(self, chat_id: str) -> None:
        if self._typing_chat not in (None, chat_id):
            await self.stop_typing()
        self._typing_chat = chat_id
        if self.debouncer.keystroke():
            await self._emit({"event": "typing", "chatId": chat_id, "isTyping": True})

    async def flush_typing(self) -> None:
        if self._typing_chat and self.debouncer.due():
            await self._emit(
                {"event": "typing", "chatId": self._typing_chat, "isTyping": False}
            )

    async def stop_typing(self) -> None:
        if self._typing_chat and self.debouncer.stop():
            await self._emit(
                {"event": "typing", "chatId": self._typing_chat, "isTyping": False}
            )


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message") or response.reason_phrase
    except ValueError:
        return response.reason_phrase
