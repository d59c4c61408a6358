# /engagehub/utils/errors.py

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import JWTError
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from engagehub.config.settings import settings

# Application error taxonomy and the handlers that translate it (plus the
# framework/library errors that leak out of routes) into JSON responses.

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationAppError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class ExternalServiceError(AppError):
    """A third-party API (Exotel, Surepass, Meta, GTM) rejected or failed a call."""
    status_code = status.HTTP_502_BAD_GATEWAY


def _error_body(message: str, error: Any = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "success": False,
        "message": message,
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.api_version,
    }
    if error is not None:
        body["error"] = error
    return body


def duplicate_key_field(exc: DuplicateKeyError) -> str:
    key_value = (exc.details or {}).get("keyValue") or {}
    if key_value:
        # Compound indexes are scoped by owner first; report the last field
        return list(key_value)[-1]
    return "field"


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.details))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        body = _error_body(detail.get("message", "Request failed"), detail)
    else:
        body = _error_body(str(detail))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Validation error", jsonable_encoder(exc.errors())),
    )


async def pydantic_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Validation error", jsonable_encoder(exc.errors(include_url=False))),
    )


async def jwt_error_handler(request: Request, exc: JWTError):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=_error_body("Invalid token", str(exc)),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    field = duplicate_key_field(exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(f"{field} already exists"),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    # Callers get the raw error string in "error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error", str(exc)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, pydantic_validation_handler)
    app.add_exception_handler(JWTError, jwt_error_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
