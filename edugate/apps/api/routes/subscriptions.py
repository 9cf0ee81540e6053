from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.apps.api.deps import (
    enforce_tool_access,
    get_current_actor,
    get_db,
    require_permission,
    require_tenant_scope,
)
from edugate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from edugate.apps.api.response import SuccessEnvelope, success_response
from edugate.core.errors import InsufficientCreditsError
from edugate.domain.actors import Actor
from edugate.domain.models import Tool
from edugate.services.credits import get_credit_balance, use_credits
from edugate.services.entitlements import (
    check_access,
    get_subscription_summary,
    list_tools,
    list_tools_for_role,
)
from edugate.services.tenancy import TenantBinding


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"], responses=DEFAULT_ERROR_RESPONSES)


class ToolResponse(BaseModel):
    slug: str
    name: str
    description: str | None
    target_roles: list[str]
    is_core: bool
    sort_order: int


class ToolAccessResponse(BaseModel):
    slug: str
    name: str | None
    has_access: bool
    reason: str
    status: str | None
    trial_days_remaining: int | None
    message: str | None = None


class SubscriptionToolResponse(BaseModel):
    slug: str
    name: str
    status: str | None
    reason: str
    has_access: bool
    trial_days_remaining: int | None


class SubscriptionSummaryResponse(BaseModel):
    tenant_id: str
    tier: str
    is_active: bool
    max_admins: int
    ai_credits: int
    ai_credits_used: int
    ai_credits_remaining: int | None
    tools: list[SubscriptionToolResponse]


class CreditUseRequest(BaseModel):
    amount: int = Field(ge=0)
    reason: str = Field(min_length=1, max_length=200)
    # Credits are metered per tool; the tool must be accessible to spend them.
    tool_slug: str | None = Field(default=None, max_length=64)


class CreditUseResponse(BaseModel):
    success: bool
    used: int
    remaining: int | None
    total_used: int


class CreditBalanceResponse(BaseModel):
    ai_credits: int
    ai_credits_used: int
    ai_credits_remaining: int | None


def _tool_payload(tool: Tool) -> ToolResponse:
    return ToolResponse(
        slug=tool.slug,
        name=tool.name,
        description=tool.description,
        target_roles=list(tool.target_roles or []),
        is_core=tool.is_core,
        sort_order=tool.sort_order,
    )


@router.get("/me", response_model=SuccessEnvelope[SubscriptionSummaryResponse])
async def get_my_subscription(
    request: Request,
    binding: TenantBinding = Depends(require_permission("SUBSCRIPTIONS", "READ")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    summary = await get_subscription_summary(db, binding.tenant_id)
    return success_response(
        request=request, tenant_id=binding.tenant_id, data=SubscriptionSummaryResponse(**summary)
    )


@router.get("/tools", response_model=SuccessEnvelope[list[ToolResponse]])
async def get_tool_catalog(
    request: Request,
    _actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tools = await list_tools(db)
    return success_response(
        request=request,
        data=[_tool_payload(tool).model_dump() for tool in tools],
    )


@router.get("/tools/mine", response_model=SuccessEnvelope[list[ToolAccessResponse]])
async def get_my_tools(
    request: Request,
    binding: TenantBinding = Depends(require_tenant_scope),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Launcher view: tools built for the caller's role with the school's access state.
    items = []
    for tool in await list_tools_for_role(db, binding.actor.role):
        decision = await check_access(db, binding.tenant_id, tool.slug)
        items.append(
            ToolAccessResponse(
                slug=tool.slug,
                name=tool.name,
                has_access=decision.has_access,
                reason=decision.reason,
                status=decision.status,
                trial_days_remaining=decision.trial_days_remaining,
                message=None if decision.has_access else decision.denial_message(),
            ).model_dump()
        )
    return success_response(request=request, tenant_id=binding.tenant_id, data=items)


@router.get("/tools/{tool_slug}/access", response_model=SuccessEnvelope[ToolAccessResponse])
async def get_tool_access(
    tool_slug: str,
    request: Request,
    binding: TenantBinding = Depends(require_tenant_scope),
    db: AsyncSession = Depends(get_db),
) -> dict:
    decision = await check_access(db, binding.tenant_id, tool_slug)
    payload = ToolAccessResponse(
        slug=decision.tool_slug,
        name=decision.tool_name,
        has_access=decision.has_access,
        reason=decision.reason,
        status=decision.status,
        trial_days_remaining=decision.trial_days_remaining,
        message=None if decision.has_access else decision.denial_message(),
    )
    return success_response(request=request, tenant_id=binding.tenant_id, data=payload)


@router.get("/credits", response_model=SuccessEnvelope[CreditBalanceResponse])
async def get_credits(
    request: Request,
    binding: TenantBinding = Depends(require_tenant_scope),
    db: AsyncSession = Depends(get_db),
) -> dict:
    balance = await get_credit_balance(db, binding.tenant_id)
    return success_response(
        request=request, tenant_id=binding.tenant_id, data=CreditBalanceResponse(**balance)
    )


@router.post("/credits/use", response_model=SuccessEnvelope[CreditUseResponse])
async def post_use_credits(
    payload: CreditUseRequest,
    request: Request,
    binding: TenantBinding = Depends(require_tenant_scope),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if payload.tool_slug:
        await enforce_tool_access(db, binding, payload.tool_slug)
    result = await use_credits(
        db,
        binding.tenant_id,
        payload.amount,
        payload.reason,
        actor=binding.actor,
    )
    if not result.success:
        raise InsufficientCreditsError(
            result.message or "Insufficient AI credits",
            required=payload.amount,
            available=result.remaining,
        )
    return success_response(
        request=request,
        tenant_id=binding.tenant_id,
        data=CreditUseResponse(
            success=result.success,
            used=result.used,
            remaining=result.remaining,
            total_used=result.total_used,
        ),
    )
