from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from edugate.apps.api.response import error_json
from edugate.core.errors import (
    AccessDeniedError,
    EdugateError,
    InsufficientCreditsError,
    InvalidTokenError,
    PersistenceUnavailableError,
    StaffNotFoundError,
)
from edugate.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    402: "INSUFFICIENT_CREDITS",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific first; anything else in the hierarchy is a 400.
_ERROR_STATUS: tuple[tuple[type[EdugateError], int], ...] = (
    (InvalidTokenError, 401),
    (InsufficientCreditsError, 402),
    (AccessDeniedError, 403),
    (StaffNotFoundError, 404),
    (PersistenceUnavailableError, 503),
)


def status_for_error(exc: EdugateError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _unpack_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Routes raise HTTPException(detail={"code": ..., "message": ..., **extra}).
    fallback_code = _STATUS_CODES.get(status_code, "UNKNOWN_ERROR")
    if isinstance(detail, str):
        return fallback_code, detail, None
    if not isinstance(detail, dict):
        return fallback_code, "Request failed", None
    extra = {key: value for key, value in detail.items() if key not in ("code", "message")}
    return (
        str(detail.get("code") or fallback_code),
        str(detail.get("message") or "Request failed"),
        extra or None,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _unpack_detail(exc.detail, exc.status_code)
    return error_json(
        request,
        exc.status_code,
        code=code,
        message=message,
        details=details,
        headers=exc.headers,
    )


async def edugate_exception_handler(request: Request, exc: EdugateError) -> JSONResponse:
    status_code = status_for_error(exc)
    return error_json(
        request,
        status_code,
        code=exc.code,
        message=exc.message,
        details=jsonable_encoder(exc.details),
        headers={"WWW-Authenticate": "Bearer"} if status_code == 401 else None,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_json(
        request,
        422,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )


async def tenant_predicate_exception_handler(
    request: Request, exc: TenantPredicateError
) -> JSONResponse:
    # A tenant-scoped query without a tenant is a server bug; never return data.
    logger.error("tenant_predicate_missing path=%s", request.url.path)
    return error_json(request, 500, code="TENANT_PREDICATE_REQUIRED", message=exc.message)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return error_json(request, 500, code="INTERNAL_ERROR", message="Internal server error")


def install_exception_handlers(app: FastAPI) -> None:
    # fastapi.HTTPException subclasses Starlette's, so one registration covers both.
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(EdugateError, edugate_exception_handler)
    app.add_exception_handler(TenantPredicateError, tenant_predicate_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
