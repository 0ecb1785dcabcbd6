"""
Message endpoints
=================

POST /api/v1/messages                -- send (persisted, then pushed to the recipient)
GET  /api/v1/messages/{chat_id}      -- paginated history
PUT  /api/v1/messages/{chat_id}/read -- mark the other member's messages read
"""

import math

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from todaride.api.dependencies import get_current_user, get_db, get_hub
from todaride.api.middleware import limiter
from todaride.api.schemas import (
    MarkReadResponse,
    MessageCreateRequest,
    MessageListResponse,
    MessageResponse,
)
from todaride.config import settings
from todaride.infrastructure.models import UserModel
from todaride.realtime.hub import RealtimeHub
from todaride.services.chats import SORT_NEWEST_FIRST, ChatService, MessageService
from todaride.services.read_models import ReadModelAssembler, message_view

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", status_code=201, response_model=MessageResponse, summary="Send a message")
@limiter.limit(settings.rate_limit)
async def send_message(
    request: Request,
    body: MessageCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_hub),
):
    message = await MessageService(db).send(body.chat_id, user.id, body.text, body.type)
    chat = await ChatService(db).get(body.chat_id)
    await db.commit()
    await db.refresh(chat)

    data = jsonable_encoder(message_view(message))
    chat_data = jsonable_encoder(await ReadModelAssembler(db).chat(chat))
    await hub.relay_message(chat.id, data, [chat.other_member(user.id)], chat=chat_data)
    return message_view(message)


@router.get("/{chat_id}", response_model=MessageListResponse, summary="List chat messages")
@limiter.limit(settings.rate_limit)
async def list_messages(
    request: Request,
    chat_id: str,
    page: int = 1,
    limit: int = 50,
    sort: str = SORT_NEWEST_FIRST,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    await ChatService(db).get_for_member(chat_id, user.id)
    messages, total = await MessageService(db).list_messages(
        chat_id, page=page, limit=limit, sort=sort
    )
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "messages": [message_view(m) for m in messages],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next_page": page < total_pages,
            "has_previous_page": page > 1,
        },
    }


@router.put(
    "/{chat_id}/read",
    response_model=MarkReadResponse,
    summary="Mark messages as read",
    description="Idempotent.  Online room members get a ``messages-read`` event.",
)
@limiter.limit(settings.rate_limit)
async def mark_read(
    request: Request,
    chat_id: str,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_hub),
):
    modified = await MessageService(db).mark_read(chat_id, user.id)
    await db.commit()
    await hub.broadcast_to_room(
        chat_id,
        {"event": "messages-read", "chatId": chat_id, "readerId": user.id},
        exclude_user=user.id,
    )
    return MarkReadResponse(modified_count=modified)
