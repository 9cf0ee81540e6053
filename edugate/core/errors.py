from __future__ import annotations

from typing import Any


class EdugateError(Exception):
    """Base error for Edugate."""

    code = "EDUGATE_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class AccessDeniedError(EdugateError):
    """Authorization decision that terminates the request."""

    code = "ACCESS_DENIED"


class NoTenantAssociationError(AccessDeniedError):
    """Non-super-admin actor has no resolvable tenant membership."""

    code = "NO_TENANT_ASSOCIATION"


class CrossTenantAccessDeniedError(AccessDeniedError):
    """Requested tenant differs from the actor's resolved tenant."""

    code = "CROSS_TENANT_ACCESS_DENIED"


class InvalidTenantContextError(AccessDeniedError):
    """Token tenant claim no longer backed by a membership record."""

    code = "INVALID_TENANT_CONTEXT"


class PermissionDeniedError(AccessDeniedError):
    """Staff member lacks the grant required for an operation."""

    code = "PERMISSION_DENIED"


class PrincipalImmutableError(AccessDeniedError):
    """Principal permissions are implicit and cannot be reassigned."""

    code = "PRINCIPAL_IMMUTABLE"


class ToolAccessDeniedError(AccessDeniedError):
    """Tenant is not entitled to use a tool right now."""

    code = "TOOL_ACCESS_DENIED"

    _REASON_CODES = {
        "tool_not_found": "TOOL_NOT_FOUND",
        "not_subscribed": "TOOL_NOT_SUBSCRIBED",
        "expired": "TOOL_EXPIRED",
        "trial_expired": "TOOL_EXPIRED",
        "disabled": "TOOL_DISABLED",
    }

    def __init__(self, message: str, *, reason: str, tool_slug: str, **details: Any) -> None:
        super().__init__(message, reason=reason, tool_slug=tool_slug, **details)
        self.reason = reason
        self.tool_slug = tool_slug
        self.code = self._REASON_CODES.get(reason, ToolAccessDeniedError.code)


class StaffNotFoundError(EdugateError):
    """Target user has no staff profile in the tenant."""

    code = "STAFF_NOT_FOUND"


class InsufficientCreditsError(EdugateError):
    """AI credit balance cannot cover the requested amount."""

    code = "INSUFFICIENT_CREDITS"


class InvalidTokenError(EdugateError):
    """Bearer token missing, malformed, expired or carrying unknown claims."""

    code = "AUTH_UNAUTHORIZED"


class PersistenceUnavailableError(EdugateError):
    """Authorization lookup failed or timed out; callers must deny."""

    code = "PERSISTENCE_UNAVAILABLE"


class InvalidGrantError(EdugateError):
    """Permission grant names an unknown resource or type."""

    code = "INVALID_PERMISSION_GRANT"


class UnknownTierError(EdugateError):
    """Subscription tier is not part of the catalog."""

    code = "UNKNOWN_TIER"
