"""
FastAPI application factory.

* Registers routes for rides, chats, messages, admin and the websocket hub.
* Starts / stops the chat reconciliation worker via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from todaride.api.errors import register_error_handlers
from todaride.api.middleware import limiter
from todaride.api.routes import admin, chats, messages, realtime, rides
from todaride.config import settings
from todaride.infrastructure.database import async_session_factory, dispose_engine
from todaride.infrastructure.directions import DirectionsClient
from todaride.infrastructure.redis_client import close_redis
from todaride.realtime.events import RealtimeGateway
from todaride.realtime.hub import RealtimeHub
from todaride.workers import reconciler as _reconciler

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the reconciliation worker on startup; stop it and close pools on shutdown."""
    await _reconciler.start_reconcile_loop()
    yield
    await _reconciler.stop_reconcile_loop()
    await close_redis()
    await dispose_engine()


def create_app() -> FastAPI:
    app = FastAPI(
        title="TODA Ride API",
        description=(
            "Books tricycle rides, dispatches them to drivers of the "
            "passenger's TODA, and carries passenger/driver chat with "
            "realtime presence and typing indicators."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_error_handlers(app)

    # Shared realtime / outbound collaborators
    app.state.hub = RealtimeHub()
    app.state.gateway = RealtimeGateway(app.state.hub, async_session_factory)
    app.state.directions = DirectionsClient(
        settings.directions_url, settings.directions_timeout_seconds
    )

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(chats.router, prefix="/api/v1")
    app.include_router(messages.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(realtime.router)

    return app
