"""
Error taxonomy and the single normalization point for API failures.

Every failure leaves the API as::

    {"error": {"code": "...", "message": "...", "details": {...}}}

Route handlers never build error responses themselves; they raise one of
the exceptions below (or let SQLAlchemy / python-jose / pydantic raise)
and the handlers registered by ``register_exception_handlers`` decide the
status code and the user-facing message.
"""

import os
import re
import traceback
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.exc import IntegrityError, NoResultFound
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger()

GENERIC_SERVER_MESSAGE = "Something went wrong"

# unique constraint name -> field reported back to the client
CONSTRAINT_FIELDS = {
    "uq_forecast_user_period_segment": "user_id",
    "users_email_key": "email",
    "ix_users_email": "email",
    "system_config_key_key": "key",
}


class AppError(Exception):
    """Base class for errors raised deliberately by the application."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_TOKEN"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"

    def __init__(self, message: str = "Access denied. Insufficient permissions.", **kwargs):
        super().__init__(message, **kwargs)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None, code: Optional[str] = None):
        details = None
        if field is not None:
            details = {"field": field, "value": value}
        super().__init__(message, code=code, details=details)


class DuplicateFieldError(ValidationError):
    code = "DUPLICATE_FIELD"

    def __init__(self, field: str = "unknown"):
        super().__init__("Duplicate field value entered")
        self.details = {"field": field}


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, message: str = "Record not found"):
        super().__init__(message)


def is_production() -> bool:
    return os.getenv("APP_ENV", "development").lower() == "production"


def is_development() -> bool:
    return os.getenv("APP_ENV", "development").lower() == "development"


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
    exc: Optional[BaseException] = None,
) -> JSONResponse:
    body: dict = {"code": code, "message": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    if status_code >= 500:
        if is_production():
            body["message"] = GENERIC_SERVER_MESSAGE
        elif is_development() and exc is not None:
            body["stack"] = _format_stack(exc)
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer", **(headers or {})}
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def log_error(request: Request, exc: BaseException, status_code: int) -> None:
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "request_error",
        message=str(exc),
        error_type=type(exc).__name__,
        status=status_code,
        stack=_format_stack(exc),
        url=str(request.url),
        method=request.method,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def duplicate_field_name(exc: IntegrityError) -> str:
    orig = exc.orig
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint in CONSTRAINT_FIELDS:
        return CONSTRAINT_FIELDS[constraint]
    text = str(orig)
    # sqlite: "UNIQUE constraint failed: forecasts.user_id, forecasts.period_id, ..."
    m = re.search(r"UNIQUE constraint failed: \w+\.(\w+)", text)
    if m:
        return m.group(1)
    # postgres: 'DETAIL:  Key (email)=(a@b.c) already exists.'
    m = re.search(r"Key \(([\w\s,\"]+?)\)=", text)
    if m:
        return m.group(1).split(",")[0].strip().strip('"')
    return "unknown"


def is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    text = str(exc.orig)
    return "UNIQUE constraint failed" in text or "duplicate key value" in text


# ---------- handlers ----------

async def app_error_handler(request: Request, exc: AppError):
    log_error(request, exc, exc.status_code)
    return error_response(exc.status_code, exc.code, exc.message, exc.details, exc=exc)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    log_error(request, exc, status.HTTP_400_BAD_REQUEST)
    if is_unique_violation(exc):
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "DUPLICATE_FIELD",
            "Duplicate field value entered",
            {"field": duplicate_field_name(exc)},
        )
    return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid reference or constraint violation")


async def no_result_handler(request: Request, exc: NoResultFound):
    log_error(request, exc, status.HTTP_404_NOT_FOUND)
    return error_response(status.HTTP_404_NOT_FOUND, "NOT_FOUND", "Record not found")


async def expired_token_handler(request: Request, exc: ExpiredSignatureError):
    log_error(request, exc, status.HTTP_401_UNAUTHORIZED)
    return error_response(status.HTTP_401_UNAUTHORIZED, "TOKEN_EXPIRED", "Token expired. Please log in again.")


async def jwt_error_handler(request: Request, exc: JWTError):
    log_error(request, exc, status.HTTP_401_UNAUTHORIZED)
    return error_response(status.HTTP_401_UNAUTHORIZED, "INVALID_TOKEN", "Invalid token. Please log in again.")


async def request_validation_handler(request: Request, exc: RequestValidationError):
    log_error(request, exc, status.HTTP_400_BAD_REQUEST)
    errors = exc.errors()
    if not errors:
        return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid request")
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    field = ".".join(loc)
    value = None if first.get("type") == "missing" else first.get("input")
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        message,
        {"field": field, "value": value},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    log_error(request, exc, exc.status_code)
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        return error_response(exc.status_code, "NOT_FOUND", f"Route {request.url.path} not found")
    code = "INTERNAL_SERVER_ERROR" if exc.status_code >= 500 else "CLIENT_ERROR"
    return error_response(exc.status_code, code, str(exc.detail), headers=exc.headers, exc=exc)


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_error(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        str(exc) or "Server Error",
        exc=exc,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(NoResultFound, no_result_handler)
    app.add_exception_handler(ExpiredSignatureError, expired_token_handler)
    app.add_exception_handler(JWTError, jwt_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
