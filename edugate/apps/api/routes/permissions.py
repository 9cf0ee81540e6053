from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.apps.api.deps import (
    get_current_actor,
    get_db,
    require_permission,
    require_tenant_scope,
)
from edugate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from edugate.apps.api.response import SuccessEnvelope, success_response
from edugate.domain.actors import Actor
from edugate.persistence.repos.permissions import list_catalog
from edugate.services.audit import RequestContext
from edugate.services.entitlements import check_admin_limit
from edugate.services.permissions import (
    assign_permissions,
    has_permission,
    list_staff_permissions,
    migrate_existing_admins,
    revoke_all_permissions,
)
from edugate.services.tenancy import TenantBinding


router = APIRouter(prefix="/permissions", tags=["permissions"], responses=DEFAULT_ERROR_RESPONSES)


class PermissionGrant(BaseModel):
    resource: str = Field(min_length=1, max_length=32)
    type: str = Field(min_length=1, max_length=16)


class CatalogEntryResponse(BaseModel):
    resource: str
    type: str
    description: str | None


class StaffPermissionsResponse(BaseModel):
    staff_user_id: str
    is_principal: bool
    permissions: list[PermissionGrant]


class AssignPermissionsRequest(BaseModel):
    permissions: list[PermissionGrant] = Field(default_factory=list, max_length=64)


class PermissionCheckResponse(BaseModel):
    resource: str
    type: str
    allowed: bool


class AdminLimitResponse(BaseModel):
    can_add: bool
    current_count: int
    max_allowed: int
    tier: str
    message: str | None


class MigrationResponse(BaseModel):
    migrated: int
    skipped: int


class RevokeResponse(BaseModel):
    removed: int


@router.get("/catalog", response_model=SuccessEnvelope[list[CatalogEntryResponse]])
async def get_permission_catalog(
    request: Request,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await list_catalog(db)
    data = [
        CatalogEntryResponse(resource=row.resource, type=row.type, description=row.description).model_dump()
        for row in rows
    ]
    return success_response(request=request, data=data)


@router.get("/check", response_model=SuccessEnvelope[PermissionCheckResponse])
async def check_my_permission(
    request: Request,
    resource: str = Query(min_length=1, max_length=32),
    type: str = Query(min_length=1, max_length=16),
    binding: TenantBinding = Depends(require_tenant_scope),
    db: AsyncSession = Depends(get_db),
) -> dict:
    allowed = await has_permission(db, binding.actor, binding.tenant_id, resource, type)
    return success_response(
        request=request,
        tenant_id=binding.tenant_id,
        data=PermissionCheckResponse(resource=resource.upper(), type=type.upper(), allowed=allowed),
    )


@router.get("/admin-limit", response_model=SuccessEnvelope[AdminLimitResponse])
async def get_admin_limit(
    request: Request,
    binding: TenantBinding = Depends(require_permission("STAFF", "READ")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await check_admin_limit(db, binding.tenant_id)
    return success_response(
        request=request,
        tenant_id=binding.tenant_id,
        data=AdminLimitResponse(
            can_add=result.can_add,
            current_count=result.current_count,
            max_allowed=result.max_allowed,
            tier=result.tier,
            message=result.message,
        ),
    )


@router.post("/migrate", response_model=SuccessEnvelope[MigrationResponse])
async def post_migrate_admins(
    request: Request,
    binding: TenantBinding = Depends(require_permission("STAFF", "ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await migrate_existing_admins(db, tenant_id=binding.tenant_id)
    return success_response(
        request=request, tenant_id=binding.tenant_id, data=MigrationResponse(**result)
    )


@router.get("/staff/{staff_user_id}", response_model=SuccessEnvelope[StaffPermissionsResponse])
async def get_staff_permissions(
    staff_user_id: str,
    request: Request,
    binding: TenantBinding = Depends(require_permission("STAFF", "READ")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    payload = await list_staff_permissions(db, tenant_id=binding.tenant_id, staff_user_id=staff_user_id)
    return success_response(
        request=request, tenant_id=binding.tenant_id, data=StaffPermissionsResponse(**payload)
    )


@router.put("/staff/{staff_user_id}", response_model=SuccessEnvelope[StaffPermissionsResponse])
async def put_staff_permissions(
    staff_user_id: str,
    payload: AssignPermissionsRequest,
    request: Request,
    binding: TenantBinding = Depends(require_tenant_scope),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Delegation rules (STAFF:ADMIN, no escalation past the caller) live in the service.
    await assign_permissions(
        db,
        tenant_id=binding.tenant_id,
        staff_user_id=staff_user_id,
        grants=[(grant.resource, grant.type) for grant in payload.permissions],
        caller=binding.actor,
        context=RequestContext.from_request(request),
    )
    result = await list_staff_permissions(db, tenant_id=binding.tenant_id, staff_user_id=staff_user_id)
    return success_response(
        request=request, tenant_id=binding.tenant_id, data=StaffPermissionsResponse(**result)
    )


@router.delete("/staff/{staff_user_id}", response_model=SuccessEnvelope[RevokeResponse])
async def delete_staff_permissions(
    staff_user_id: str,
    request: Request,
    binding: TenantBinding = Depends(require_permission("STAFF", "ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    removed = await revoke_all_permissions(
        db,
        tenant_id=binding.tenant_id,
        staff_user_id=staff_user_id,
        caller=binding.actor,
    )
    return success_response(
        request=request, tenant_id=binding.tenant_id, data=RevokeResponse(removed=removed)
    )
