"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from todaride.domain.errors import UnauthorizedError
from todaride.infrastructure.database import async_session_factory
from todaride.infrastructure.directions import DirectionsClient
from todaride.infrastructure.models import UserModel
from todaride.infrastructure.repositories import UserRepository
from todaride.realtime.hub import RealtimeHub


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> UserModel:
    """Resolve the caller from the id the upstream auth gateway forwards.

    Credentials are verified upstream; this only checks that the user
    exists and is not banned.
    """
    if not x_user_id:
        raise UnauthorizedError("X-User-Id header required")
    user = await UserRepository(db).get_by_id(x_user_id)
    if user is None:
        raise UnauthorizedError("Unknown user")
    if user.is_banned:
        raise UnauthorizedError("Your account has been banned.", banned=True)
    return user


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def get_directions(request: Request) -> DirectionsClient:
    return request.app.state.directions
