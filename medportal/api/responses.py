"""
Response envelope and global exception handlers.

Every response leaves the API in one of two shapes::

    {"success": true,  "data": ..., "message": "..."}
    {"success": false, "error": "...", "details": [...]}

Routes return ``envelope(...)`` and raise ``HTTPException``; the handlers
registered here shape everything else, so no exception reaches the client
unwrapped and no database error text is ever echoed back.
"""

import logging
from typing import Any, Optional

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Internal server error"


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    content = {"success": True, "data": jsonable_encoder(data)}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def error_envelope(
    error: str,
    status_code: int,
    details: Optional[list] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    content = {"success": False, "error": error}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _field_errors(exc: RequestValidationError) -> list[dict]:
    details = []
    for err in exc.errors():
        # Drop the leading "body"/"query" marker from the location
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return details


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_envelope(detail, exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = _field_errors(exc)
    logger.info("Validation failed on %s %s: %s", request.method, request.url.path, details)
    return error_envelope("Validation failed", status.HTTP_400_BAD_REQUEST, details=details)


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return error_envelope(GENERIC_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_envelope(GENERIC_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)


def register_exception_handlers(app):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
