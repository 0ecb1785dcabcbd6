"""Map domain errors onto HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from todaride.domain.errors import InternalError, RideHailingError

logger = logging.getLogger(__name__)


def error_body(exc: RideHailingError) -> dict:
    return {"success": False, "error": exc.code, "message": exc.message}


async def ride_hailing_error_handler(request: Request, exc: RideHailingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    internal = InternalError("Database operation failed")
    return JSONResponse(status_code=internal.status_code, content=error_body(internal))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RideHailingError, ride_hailing_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
