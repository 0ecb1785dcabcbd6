"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- simple health check with the online user count
"""

from fastapi import APIRouter, Depends

from todaride.api.dependencies import get_hub
from todaride.api.schemas import HealthResponse
from todaride.realtime.hub import RealtimeHub

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(hub: RealtimeHub = Depends(get_hub)):
    return HealthResponse(online_users=len(hub.online_users()))
