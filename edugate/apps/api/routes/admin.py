from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.apps.api.deps import get_db, get_tenant_binding, require_super_admin
from edugate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from edugate.apps.api.response import SuccessEnvelope, success_response
from edugate.domain.actors import Actor
from edugate.services.catalog import seed_tools
from edugate.services.entitlements import change_tier, start_trial
from edugate.services.permissions import ensure_permission_catalog
from edugate.services.tenancy import TenantBinding


router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


class TierChangeRequest(BaseModel):
    tier: str = Field(min_length=1, max_length=32)


class SubscriptionResponse(BaseModel):
    tenant_id: str
    tier: str
    max_admins: int
    ai_credits: int
    ai_credits_used: int
    is_active: bool


class TrialRequest(BaseModel):
    tool_slug: str = Field(min_length=1, max_length=64)
    days: int | None = Field(default=None, ge=1, le=365)


class TrialResponse(BaseModel):
    tool_slug: str
    has_access: bool
    reason: str
    status: str | None
    trial_days_remaining: int | None


class SeedResponse(BaseModel):
    tools_created: int
    permissions_created: int


@router.put("/schools/{tenant_id}/tier", response_model=SuccessEnvelope[SubscriptionResponse])
async def put_school_tier(
    tenant_id: str,
    payload: TierChangeRequest,
    request: Request,
    actor: Actor = Depends(require_super_admin),
    binding: TenantBinding = Depends(get_tenant_binding),
    db: AsyncSession = Depends(get_db),
) -> dict:
    subscription = await change_tier(db, binding.tenant_id, payload.tier, actor=actor)
    return success_response(
        request=request,
        tenant_id=binding.tenant_id,
        data=SubscriptionResponse(
            tenant_id=subscription.tenant_id,
            tier=subscription.tier,
            max_admins=subscription.max_admins,
            ai_credits=subscription.ai_credits,
            ai_credits_used=subscription.ai_credits_used,
            is_active=subscription.is_active,
        ),
    )


@router.post("/schools/{tenant_id}/trials", response_model=SuccessEnvelope[TrialResponse])
async def post_school_trial(
    tenant_id: str,
    payload: TrialRequest,
    request: Request,
    actor: Actor = Depends(require_super_admin),
    binding: TenantBinding = Depends(get_tenant_binding),
    db: AsyncSession = Depends(get_db),
) -> dict:
    decision = await start_trial(
        db, binding.tenant_id, payload.tool_slug, days=payload.days, actor=actor
    )
    return success_response(
        request=request,
        tenant_id=binding.tenant_id,
        data=TrialResponse(
            tool_slug=decision.tool_slug,
            has_access=decision.has_access,
            reason=decision.reason,
            status=decision.status,
            trial_days_remaining=decision.trial_days_remaining,
        ),
    )


@router.post("/catalog/seed", response_model=SuccessEnvelope[SeedResponse])
async def post_seed_catalog(
    request: Request,
    _actor: Actor = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tools_created = await seed_tools(db)
    permissions_created = await ensure_permission_catalog(db)
    return success_response(
        request=request,
        data=SeedResponse(tools_created=tools_created, permissions_created=permissions_created),
    )
