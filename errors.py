"""
Response envelope and exception handlers.

Every response, success or failure, is shaped as
``{"success", "message", "data", "timestamp"}``. Business code raises
``HTTPException``; the handlers below turn it, request validation errors,
store failures and anything unexpected into that envelope.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import utcnow

logger = logging.getLogger(__name__)


def envelope(success: bool, message: str, data: Any = None) -> Dict[str, Any]:
    return {
        "success": success,
        "message": message,
        "data": jsonable_encoder(data),
        "timestamp": utcnow().isoformat(),
    }


def ok(data: Any = None, message: str = "Operation successful") -> Dict[str, Any]:
    return envelope(True, message, data)


def error_response(status_code: int, message: str, data: Any = None, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(False, message, data), headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(loc) or "body"] = err.get("msg", "Invalid value")
    return error_response(400, "Validation failed", errors)


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.info("Duplicate key on %s %s: %s", request.method, request.url.path, exc)
    return error_response(409, "Resource already exists")


async def store_exception_handler(request: Request, exc: PyMongoError):
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return error_response(503, "Service temporarily unavailable")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "An unexpected error occurred")


def install_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(PyMongoError, store_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
