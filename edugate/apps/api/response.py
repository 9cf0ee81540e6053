"""Response envelopes shared by every v1 route.

Success bodies are ``{"data": ..., "meta": ...}`` and errors are
``{"error": {"code", "message", "details"}, "meta": ...}``. ``meta`` carries
the request id and, on tenant-scoped routes, the school the request was
bound to.
"""

from __future__ import annotations

from typing import Any, Generic, Mapping, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION
    tenant_id: str | None = None


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def ensure_request_id(request: Request) -> str:
    # Middleware normally assigns one; handlers raised before it still need an id.
    state = request.state
    if not getattr(state, "request_id", None):
        state.request_id = request.headers.get("X-Request-Id") or str(uuid4())
    return state.request_id


def response_meta(request: Request, tenant_id: str | None = None) -> dict[str, Any]:
    meta = ResponseMeta(request_id=ensure_request_id(request), tenant_id=tenant_id)
    return meta.model_dump(exclude_none=True)


def success_response(
    *,
    request: Request,
    data: Any,
    tenant_id: str | None = None,
) -> dict[str, Any]:
    # Tenant-scoped routes pass the school their binding resolved to.
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"data": data, "meta": response_meta(request, tenant_id)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details or None)
    return {"error": error.model_dump(exclude_none=True), "meta": response_meta(request)}


def error_json(
    request: Request,
    status_code: int,
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        content=error_response(request=request, code=code, message=message, details=details),
        status_code=status_code,
        headers=dict(headers) if headers else None,
    )
