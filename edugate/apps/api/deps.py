from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.config import get_settings
from edugate.core.errors import CrossTenantAccessDeniedError, InvalidTokenError
from edugate.domain.actors import Actor
from edugate.persistence.db import get_session
from edugate.services.audit import ACTOR_ANONYMOUS, RequestContext, record_event
from edugate.services.auth.identity import decode_token, parse_bearer_token
from edugate.services.entitlements import ToolAccessDecision, require_tool_access
from edugate.services.permissions import normalize_grant
from edugate.services.permissions import require_permission as require_grant
from edugate.services.tenancy import TenantBinding, authorize_tenant


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One session per request, closed when the response is sent.
    async with get_session() as session:
        yield session


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _request_metadata(request: Request) -> dict[str, str]:
    # Path and method only; headers may carry credentials.
    return {"path": request.url.path, "method": request.method}


async def get_current_actor(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Actor:
    settings = get_settings()
    try:
        token = parse_bearer_token(request.headers.get(settings.auth_api_key_header))
        return decode_token(token)
    except InvalidTokenError as exc:
        await record_event(
            db,
            "auth.access.failure",
            tenant_id=None,
            actor_type=ACTOR_ANONYMOUS,
            outcome="failure",
            resource_type="auth",
            context=RequestContext.from_request(request),
            metadata=_request_metadata(request),
            error_code=exc.code,
            commit=True,
        )
        raise


async def get_requested_tenant_id(request: Request) -> str | None:
    """Collect every tenant identifier the client supplied.

    Path parameter, ``X-Tenant-Id`` header and a JSON body ``tenant_id`` are
    all considered; disagreeing values are rejected outright.
    """
    candidates: set[str] = set()
    path_value = request.path_params.get("tenant_id")
    if path_value:
        candidates.add(str(path_value))
    header_value = request.headers.get("X-Tenant-Id")
    if header_value:
        candidates.add(header_value)
    content_type = (request.headers.get("content-type") or "").lower()
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("tenant_id"):
            candidates.add(str(payload["tenant_id"]))
    if len(candidates) > 1:
        raise CrossTenantAccessDeniedError(
            "Conflicting school identifiers in request",
            requested_tenant_ids=sorted(candidates),
        )
    return next(iter(candidates), None)


async def get_tenant_binding(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    requested_tenant_id: str | None = Depends(get_requested_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> TenantBinding:
    return await authorize_tenant(
        db, actor, requested_tenant_id, context=RequestContext.from_request(request)
    )


async def require_tenant_scope(
    binding: TenantBinding = Depends(get_tenant_binding),
) -> TenantBinding:
    # Super-admins in global scope must name a school for tenant-scoped routes.
    if binding.is_global:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "TENANT_REQUIRED",
                "message": "Specify a school via the X-Tenant-Id header",
            },
        )
    return binding


async def require_super_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_super_admin:
        raise _forbidden_error("Super admin access required")
    return actor


def require_permission(resource: str, required_type: str):
    # Dependency factory declaring the (resource, type) an operation needs.
    resource, required_type = normalize_grant(resource, required_type)

    async def _dependency(
        binding: TenantBinding = Depends(require_tenant_scope),
        db: AsyncSession = Depends(get_db),
    ) -> TenantBinding:
        await require_grant(db, binding.actor, binding.tenant_id, resource, required_type)
        return binding

    return _dependency


async def enforce_tool_access(
    db: AsyncSession,
    binding: TenantBinding,
    tool_slug: str,
) -> ToolAccessDecision | None:
    # Super-admins operate tools on behalf of any school without a subscription check.
    if binding.actor.is_super_admin:
        return None
    return await require_tool_access(db, binding.tenant_id, tool_slug)


def require_tool(tool_slug: str):
    # Dependency factory gating a route on the bound tenant's tool entitlement.
    async def _dependency(
        binding: TenantBinding = Depends(require_tenant_scope),
        db: AsyncSession = Depends(get_db),
    ) -> TenantBinding:
        await enforce_tool_access(db, binding, tool_slug)
        return binding

    return _dependency
