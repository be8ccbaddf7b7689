"""
FastAPI application entry point for the record backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from recordkeeper.config import get_settings
from recordkeeper.errors import (
    AuthenticationError,
    DuplicateError,
    InfrastructureError,
    NotFoundError,
    RecordError,
    ValidationError,
)
from recordkeeper.routes import router
from recordkeeper.schemas import ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ValidationError: 400,
    AuthenticationError: 401,
    NotFoundError: 404,
    DuplicateError: 409,
    InfrastructureError: 503,
}


def status_for(exc: RecordError) -> int:
    for kind, status in STATUS_BY_ERROR.items():
        if isinstance(exc, kind):
            return status
    return 500


async def handle_record_error(request: Request, exc: RecordError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status, content=ErrorResponse(message=str(exc)).model_dump()
    )


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(title="Recordkeeper", version="0.1.0")
    app.add_exception_handler(RecordError, handle_record_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
