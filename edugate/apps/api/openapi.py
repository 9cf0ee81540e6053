from __future__ import annotations

from typing import Any

from edugate.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Documented once and attached to every router.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _response(
        "Unauthorized",
        _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    ),
    402: _response(
        "Insufficient AI credits",
        _error_example(
            code="INSUFFICIENT_CREDITS",
            message="Insufficient AI credits. Required: 8, Available: 2, Shortfall: 6",
            details={"required": 8, "available": 2},
        ),
    ),
    403: _response(
        "Forbidden",
        _error_example(
            code="CROSS_TENANT_ACCESS_DENIED",
            message="You can only access data from your own school",
        ),
    ),
    503: _response(
        "Authorization data unavailable",
        _error_example(code="PERSISTENCE_UNAVAILABLE", message="Authorization data unavailable"),
    ),
}
