"""
Background Chat Reconciliation Worker
=====================================

Runs every ``RECONCILE_INTERVAL_SECONDS`` (default 60 s).

``MessageService.send`` treats the chat update (``last_message_id`` and
``unread_message_count``) as best-effort: if it fails the message is kept
and the chat is left stale.  This worker repairs such chats.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs the cycle at
  a time across multiple API processes.
* Repairs are plain idempotent updates; a send racing with a repair at
  worst leaves the counter off by one, which the next cycle fixes.

Algorithm per cycle
-------------------
1. Page through chats in id order, ``RECONCILE_BATCH_SIZE`` at a time.
2. For each chat, find the newest message.
3. If ``last_message_id`` does not point at it, re-point it and recount
   unread messages from the read flags.
"""

from __future__ import annotations

import asyncio
import logging

from todaride.config import settings
from todaride.infrastructure.database import async_session_factory
from todaride.infrastructure.locks import DistributedLock
from todaride.infrastructure.redis_client import get_redis
from todaride.infrastructure.repositories import ChatRepository, MessageRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_reconcile_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Chat reconciler started (interval=%ds)", settings.reconcile_interval_seconds
    )


async def stop_reconcile_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Chat reconciler stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a reconcile cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_reconcile_cycle()
        except Exception:
            logger.exception("Unhandled error in reconcile cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.reconcile_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def reconcile_chats(session, batch_size: int | None = None) -> int:
    """Repair stale chat pointers inside *session*.  Returns chats fixed."""
    batch_size = batch_size or settings.reconcile_batch_size
    chat_repo = ChatRepository(session)
    message_repo = MessageRepository(session)

    repaired = 0
    offset = 0
    while True:
        chats = await chat_repo.list_batch(offset, batch_size)
        if not chats:
            break
        for chat in chats:
            latest = await message_repo.latest_for_chat(chat.id)
            if latest is None or chat.last_message_id == latest.id:
                continue
            chat.last_message_id = latest.id
            chat.unread_message_count = await message_repo.count_unread(chat.id)
            if latest.created_at and (
                chat.updated_at is None or latest.created_at > chat.updated_at
            ):
                chat.updated_at = latest.created_at
            repaired += 1
        offset += batch_size
    await session.flush()
    return repaired


async def run_reconcile_cycle() -> int:
    """Execute one reconcile cycle.  Returns the number of chats repaired."""
    redis = await get_redis()
    lock = DistributedLock(redis, "chat_reconciler", ttl_seconds=120)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return 0

    repaired = 0
    try:
        async with async_session_factory() as session:
            repaired = await reconcile_chats(session)
            await session.commit()
            if repaired:
                logger.info("Reconcile cycle: %d chats repaired", repaired)
    except Exception:
        logger.exception("Error in reconcile cycle")
    finally:
        await lock.release()

    return repaired
