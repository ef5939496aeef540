"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from roomshare.api.request_id import get_request_id
from roomshare.domain.rooms.exceptions import RoomError, TransientStoreConflict

_LOG = logging.getLogger(__name__)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": exc.detail, "request_id": rid}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": rid}
        return JSONResponse(status_code=422, content=jsonable_encoder(payload))

    @app.exception_handler(RoomError)
    async def room_exc_handler(request: Request, exc: RoomError):  # type: ignore[override]
        rid = get_request_id(request)
        if isinstance(exc, TransientStoreConflict):
            _LOG.warning("rooms.request_conflict", extra={"path": request.url.path})
        payload = {"detail": exc.code, "message": exc.detail, "request_id": rid}
        return JSONResponse(status_code=exc.status_code, content=payload)
