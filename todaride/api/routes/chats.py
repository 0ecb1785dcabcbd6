"""
Chat endpoints
==============

POST /api/v1/chats           -- find or create the 1:1 chat for two users
GET  /api/v1/chats           -- the caller's chats, most recent activity first
GET  /api/v1/chats/{chat_id} -- one chat the caller belongs to
"""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from todaride.api.dependencies import get_current_user, get_db
from todaride.api.middleware import limiter
from todaride.api.schemas import ChatCreateRequest, ChatCreateResponse, ChatResponse
from todaride.config import settings
from todaride.domain.errors import InvalidRoleError, ValidationError
from todaride.infrastructure.models import UserModel
from todaride.services.chats import ChatService
from todaride.services.read_models import ReadModelAssembler

router = APIRouter(prefix="/chats", tags=["chats"])


@router.post(
    "",
    response_model=ChatCreateResponse,
    summary="Find or create a chat",
    description=(
        "Idempotent per member pair: concurrent first contact from both "
        "sides returns the same chat.  201 when created, 200 when found."
    ),
)
@limiter.limit(settings.rate_limit)
async def create_chat(
    request: Request,
    response: Response,
    body: ChatCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    if len(body.members) != 2:
        raise ValidationError("Exactly 2 members are required for 1:1 chat")
    if user.id not in body.members:
        raise InvalidRoleError("You can only create chats you are a member of")

    chat, created = await ChatService(db).find_or_create(*body.members)
    response.status_code = 201 if created else 200
    view = await ReadModelAssembler(db).chat(chat)
    return {**view, "created": created}


@router.get("", response_model=list[ChatResponse], summary="List the caller's chats")
@limiter.limit(settings.rate_limit)
async def list_chats(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    chats = await ChatService(db).list_for_user(user.id)
    return await ReadModelAssembler(db).chats(chats)


@router.get("/{chat_id}", response_model=ChatResponse, summary="Get a chat")
@limiter.limit(settings.rate_limit)
async def get_chat(
    request: Request,
    chat_id: str,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_user),
):
    chat = await ChatService(db).get_for_member(chat_id, user.id)
    return await ReadModelAssembler(db).chat(chat)
