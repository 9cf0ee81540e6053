from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import math
from typing import Any
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.config import get_settings
from edugate.core.errors import PersistenceUnavailableError, ToolAccessDeniedError
from edugate.domain.actors import Actor, normalize_role
from edugate.domain.models import SchoolToolAccess, Subscription, Tool
from edugate.persistence.guards import guarded_lookup
from edugate.persistence.repos import memberships
from edugate.persistence.repos import subscriptions as subscriptions_repo
from edugate.services.audit import record_event
from edugate.services.catalog import (
    DEFAULT_TIER,
    UNLIMITED,
    normalize_tier,
    tier_limits,
    tools_for_tier,
)


logger = logging.getLogger(__name__)

STATUS_ACTIVE = "ACTIVE"
STATUS_TRIAL = "TRIAL"
STATUS_EXPIRED = "EXPIRED"
STATUS_DISABLED = "DISABLED"

REASON_ACTIVE = "active"
REASON_TRIAL = "trial"
REASON_EXPIRED = "expired"
REASON_TRIAL_EXPIRED = "trial_expired"
REASON_DISABLED = "disabled"
REASON_NOT_SUBSCRIBED = "not_subscribed"
REASON_TOOL_NOT_FOUND = "tool_not_found"

_DENIAL_MESSAGES = {
    REASON_TOOL_NOT_FOUND: "{tool} is not available.",
    REASON_NOT_SUBSCRIBED: "Your school does not have access to {tool}. Please upgrade your subscription.",
    REASON_EXPIRED: "Your school's access to {tool} has expired. Please renew your subscription.",
    REASON_TRIAL_EXPIRED: "Your trial for {tool} has ended. Please upgrade to continue using this tool.",
    REASON_DISABLED: "{tool} is currently disabled for your school.",
}

_SECONDS_PER_DAY = 86400


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; treat them as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ToolAccessDecision:
    # Outcome of a tool access check with a machine-readable reason.
    has_access: bool
    reason: str
    tool_slug: str
    tool_name: str | None = None
    status: str | None = None
    trial_days_remaining: int | None = None
    expires_at: datetime | None = None

    def denial_message(self) -> str:
        template = _DENIAL_MESSAGES.get(self.reason, "Access to {tool} is not available.")
        return template.format(tool=self.tool_name or self.tool_slug)


@dataclass(frozen=True)
class AdminLimitResult:
    can_add: bool
    current_count: int
    max_allowed: int
    tier: str
    message: str | None = None


@dataclass(frozen=True)
class TierSyncResult:
    tier: str
    created: int
    activated: int
    disabled: int
    unchanged: int


def trial_days_remaining(trial_ends_at: datetime | None, now: datetime) -> int | None:
    # Ceiling of whole days left, floored at 0 ("expires today").
    if trial_ends_at is None:
        return None
    seconds = (_as_utc(trial_ends_at) - now).total_seconds()
    return max(0, math.ceil(seconds / _SECONDS_PER_DAY))


async def get_or_create_subscription(session: AsyncSession, tenant_id: str) -> Subscription:
    """Return the tenant's subscription, creating a FREE one on first access."""
    subscription = await guarded_lookup(
        subscriptions_repo.get_subscription(session, tenant_id=tenant_id),
        operation="subscriptions.get",
    )
    if subscription is not None:
        return subscription

    limits = tier_limits(DEFAULT_TIER)
    try:
        session.add(
            Subscription(
                id=uuid4().hex,
                tenant_id=tenant_id,
                tier=DEFAULT_TIER,
                max_admins=limits.max_admins,
                ai_credits=limits.ai_credits,
                ai_credits_used=0,
                is_active=True,
            )
        )
        await session.commit()
    except IntegrityError:
        # A concurrent request created it first.
        await session.rollback()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceUnavailableError("Subscription unavailable") from exc
    else:
        logger.info("subscription_created tenant_id=%s tier=%s", tenant_id, DEFAULT_TIER)
        await sync_tool_access_for_tier(session, tenant_id, DEFAULT_TIER)

    subscription = await guarded_lookup(
        subscriptions_repo.get_subscription(session, tenant_id=tenant_id),
        operation="subscriptions.get",
    )
    if subscription is None:
        raise PersistenceUnavailableError("Subscription unavailable", tenant_id=tenant_id)
    return subscription


async def check_access(
    session: AsyncSession,
    tenant_id: str,
    tool_slug: str,
    *,
    now: datetime | None = None,
) -> ToolAccessDecision:
    """Evaluate tool access and persist any expiry discovered on the way.

    This is a command, not a pure read: an ACTIVE record past ``expires_at``
    or a TRIAL past ``trial_ends_at`` is written back as EXPIRED before the
    denial is returned.
    """
    now = now or _utc_now()
    tool = await guarded_lookup(
        subscriptions_repo.get_tool_by_slug(session, slug=tool_slug),
        operation="tools.get_by_slug",
    )
    if tool is None or not tool.is_active:
        return ToolAccessDecision(has_access=False, reason=REASON_TOOL_NOT_FOUND, tool_slug=tool_slug)

    access = await guarded_lookup(
        subscriptions_repo.get_tool_access(session, tenant_id=tenant_id, tool_id=tool.id),
        operation="tool_access.get",
    )
    if access is None:
        return ToolAccessDecision(
            has_access=False,
            reason=REASON_NOT_SUBSCRIBED,
            tool_slug=tool.slug,
            tool_name=tool.name,
        )

    expires_at = _as_utc(access.expires_at)
    trial_ends_at = _as_utc(access.trial_ends_at)

    if access.status == STATUS_ACTIVE:
        if expires_at is not None and now > expires_at:
            await _expire(session, access, tool, from_status=STATUS_ACTIVE, reason=REASON_EXPIRED)
            return ToolAccessDecision(
                has_access=False,
                reason=REASON_EXPIRED,
                tool_slug=tool.slug,
                tool_name=tool.name,
                status=STATUS_EXPIRED,
                expires_at=expires_at,
            )
        return ToolAccessDecision(
            has_access=True,
            reason=REASON_ACTIVE,
            tool_slug=tool.slug,
            tool_name=tool.name,
            status=STATUS_ACTIVE,
            expires_at=expires_at,
        )

    if access.status == STATUS_TRIAL:
        if trial_ends_at is not None and now > trial_ends_at:
            await _expire(session, access, tool, from_status=STATUS_TRIAL, reason=REASON_TRIAL_EXPIRED)
            return ToolAccessDecision(
                has_access=False,
                reason=REASON_TRIAL_EXPIRED,
                tool_slug=tool.slug,
                tool_name=tool.name,
                status=STATUS_EXPIRED,
            )
        return ToolAccessDecision(
            has_access=True,
            reason=REASON_TRIAL,
            tool_slug=tool.slug,
            tool_name=tool.name,
            status=STATUS_TRIAL,
            trial_days_remaining=trial_days_remaining(trial_ends_at, now),
        )

    return ToolAccessDecision(
        has_access=False,
        reason=access.status.lower(),
        tool_slug=tool.slug,
        tool_name=tool.name,
        status=access.status,
        expires_at=expires_at,
    )


async def require_tool_access(
    session: AsyncSession,
    tenant_id: str,
    tool_slug: str,
    *,
    now: datetime | None = None,
) -> ToolAccessDecision:
    decision = await check_access(session, tenant_id, tool_slug, now=now)
    if not decision.has_access:
        raise ToolAccessDeniedError(
            decision.denial_message(),
            reason=decision.reason,
            tool_slug=tool_slug,
        )
    return decision


async def _expire(
    session: AsyncSession,
    access: SchoolToolAccess,
    tool: Tool,
    *,
    from_status: str,
    reason: str,
) -> None:
    # Conditional on the observed status so concurrent readers write at most once.
    try:
        result = await session.execute(
            update(SchoolToolAccess)
            .where(SchoolToolAccess.id == access.id, SchoolToolAccess.status == from_status)
            .values(status=STATUS_EXPIRED)
        )
        if result.rowcount and get_settings().tool_access_expiry_audit:
            await record_event(
                session,
                "tool_access.expired",
                tenant_id=access.tenant_id,
                resource_type="tool_access",
                resource_id=tool.slug,
                metadata={"from_status": from_status, "reason": reason},
            )
        await session.commit()
    except SQLAlchemyError as exc:
        # The caller still denies; the next read retries the transition.
        await session.rollback()
        logger.error(
            "tool_access_expire_failed tenant_id=%s tool=%s",
            access.tenant_id,
            tool.slug,
            exc_info=exc,
        )
        return
    logger.info(
        "tool_access_expired tenant_id=%s tool=%s from_status=%s",
        access.tenant_id,
        tool.slug,
        from_status,
    )


async def sync_tool_access_for_tier(
    session: AsyncSession,
    tenant_id: str,
    tier: str,
    *,
    now: datetime | None = None,
) -> TierSyncResult:
    """Align a tenant's tool access records with a tier's allow-list.

    Idempotent: a second run with the same tier changes nothing. EXPIRED
    records and lapsed trials are left for the evaluator; they are never
    reactivated here.
    """
    now = now or _utc_now()
    normalized = normalize_tier(tier)
    allowed = tools_for_tier(normalized)
    # One retry covers a concurrent sync inserting the same (tenant, tool) row.
    for attempt in range(2):
        try:
            result = await _sync_once(session, tenant_id, normalized, allowed, now)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if attempt == 1:
                raise PersistenceUnavailableError("Tool access sync conflicted", tenant_id=tenant_id)
            continue
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceUnavailableError("Tool access sync failed", tenant_id=tenant_id) from exc
        logger.info(
            "tool_access_synced tenant_id=%s tier=%s created=%s activated=%s disabled=%s",
            tenant_id,
            normalized,
            result.created,
            result.activated,
            result.disabled,
        )
        return result
    raise PersistenceUnavailableError("Tool access sync failed", tenant_id=tenant_id)


async def _sync_once(
    session: AsyncSession,
    tenant_id: str,
    tier: str,
    allowed: frozenset[str],
    now: datetime,
) -> TierSyncResult:
    tools = await guarded_lookup(
        subscriptions_repo.list_active_tools(session),
        operation="tools.list_active",
    )
    rows = await guarded_lookup(
        subscriptions_repo.list_tool_access(session, tenant_id=tenant_id),
        operation="tool_access.list",
    )
    existing = {access.tool_id: access for access, _tool in rows}
    created = activated = disabled = unchanged = 0

    for tool in tools:
        access = existing.get(tool.id)
        if tool.slug in allowed:
            if access is None:
                session.add(
                    SchoolToolAccess(
                        id=uuid4().hex,
                        tenant_id=tenant_id,
                        tool_id=tool.id,
                        status=STATUS_ACTIVE,
                        activated_at=now,
                    )
                )
                await session.flush()
                created += 1
            elif access.status == STATUS_DISABLED or _is_live_trial(access, now):
                if await _transition(session, access, to_status=STATUS_ACTIVE, activated_at=now):
                    activated += 1
                else:
                    unchanged += 1
            else:
                unchanged += 1
        elif access is not None and access.status == STATUS_ACTIVE:
            if await _transition(session, access, to_status=STATUS_DISABLED):
                disabled += 1
            else:
                unchanged += 1
        else:
            unchanged += 1

    return TierSyncResult(
        tier=tier, created=created, activated=activated, disabled=disabled, unchanged=unchanged
    )


def _is_live_trial(access: SchoolToolAccess, now: datetime) -> bool:
    if access.status != STATUS_TRIAL:
        return False
    trial_ends_at = _as_utc(access.trial_ends_at)
    return trial_ends_at is None or trial_ends_at >= now


async def _transition(
    session: AsyncSession,
    access: SchoolToolAccess,
    *,
    to_status: str,
    activated_at: datetime | None = None,
) -> bool:
    # Compare-and-set on the status we read so racing syncs cannot flap a record.
    values: dict[str, Any] = {"status": to_status}
    if activated_at is not None:
        # A tier grant is open-ended; stale paid or trial deadlines must not expire it.
        values.update(activated_at=activated_at, expires_at=None, trial_ends_at=None)
    result = await session.execute(
        update(SchoolToolAccess)
        .where(SchoolToolAccess.id == access.id, SchoolToolAccess.status == access.status)
        .values(**values)
    )
    return bool(result.rowcount)


async def change_tier(
    session: AsyncSession,
    tenant_id: str,
    tier: str,
    *,
    actor: Actor | None = None,
    now: datetime | None = None,
) -> Subscription:
    """Move a tenant onto ``tier`` and resync its tool access.

    Limits come from the catalog. The credit counter restarts at zero so
    ``ai_credits_used`` never exceeds a smaller allotment.
    """
    normalized = normalize_tier(tier)
    limits = tier_limits(normalized)
    subscription = await get_or_create_subscription(session, tenant_id)
    previous_tier = subscription.tier
    try:
        await session.execute(
            update(Subscription)
            .where(Subscription.id == subscription.id)
            .values(
                tier=normalized,
                max_admins=limits.max_admins,
                ai_credits=limits.ai_credits,
                ai_credits_used=0,
                is_active=True,
            )
        )
        await record_event(
            session,
            "subscription.tier_changed",
            tenant_id=tenant_id,
            actor=actor,
            resource_type="subscription",
            resource_id=subscription.id,
            metadata={"from_tier": previous_tier, "to_tier": normalized},
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceUnavailableError("Failed to change subscription tier") from exc
    logger.info(
        "subscription_tier_changed tenant_id=%s from_tier=%s to_tier=%s",
        tenant_id,
        previous_tier,
        normalized,
    )
    await sync_tool_access_for_tier(session, tenant_id, normalized, now=now)
    await session.refresh(subscription)
    return subscription


async def start_trial(
    session: AsyncSession,
    tenant_id: str,
    tool_slug: str,
    *,
    days: int | None = None,
    actor: Actor | None = None,
    now: datetime | None = None,
) -> ToolAccessDecision:
    """Open a trial for a tool the tenant has never had a record for.

    Existing records, including EXPIRED and DISABLED ones, are left alone.
    """
    now = now or _utc_now()
    trial_days = days if days is not None else get_settings().default_trial_days
    if trial_days <= 0:
        raise ValueError("Trial length must be positive")
    tool = await guarded_lookup(
        subscriptions_repo.get_tool_by_slug(session, slug=tool_slug),
        operation="tools.get_by_slug",
    )
    if tool is None or not tool.is_active:
        return ToolAccessDecision(has_access=False, reason=REASON_TOOL_NOT_FOUND, tool_slug=tool_slug)
    existing = await guarded_lookup(
        subscriptions_repo.get_tool_access(session, tenant_id=tenant_id, tool_id=tool.id),
        operation="tool_access.get",
    )
    if existing is None:
        try:
            session.add(
                SchoolToolAccess(
                    id=uuid4().hex,
                    tenant_id=tenant_id,
                    tool_id=tool.id,
                    status=STATUS_TRIAL,
                    trial_ends_at=now + timedelta(days=trial_days),
                )
            )
            await record_event(
                session,
                "tool_access.trial_started",
                tenant_id=tenant_id,
                actor=actor,
                resource_type="tool_access",
                resource_id=tool.slug,
                metadata={"days": trial_days},
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceUnavailableError("Failed to start trial") from exc
        else:
            logger.info(
                "tool_trial_started tenant_id=%s tool=%s days=%s", tenant_id, tool.slug, trial_days
            )
    return await check_access(session, tenant_id, tool_slug, now=now)


async def check_admin_limit(session: AsyncSession, tenant_id: str) -> AdminLimitResult:
    """Report whether another administrator fits the tenant's plan.

    Applies to every caller, super-admins included.
    """
    subscription = await guarded_lookup(
        subscriptions_repo.get_subscription(session, tenant_id=tenant_id),
        operation="subscriptions.get",
    )
    if subscription is None:
        tier = DEFAULT_TIER
        max_allowed = tier_limits(DEFAULT_TIER).max_admins
    else:
        tier = subscription.tier
        max_allowed = subscription.max_admins
    current = await guarded_lookup(
        memberships.count_admins(session, tenant_id=tenant_id),
        operation="memberships.count_admins",
    )
    if max_allowed == UNLIMITED:
        return AdminLimitResult(can_add=True, current_count=current, max_allowed=UNLIMITED, tier=tier)
    can_add = current < max_allowed
    message = None
    if not can_add:
        message = (
            f"Your {tier} plan allows a maximum of {max_allowed} administrators. "
            f"Current: {current}. Please upgrade your subscription to add more."
        )
    return AdminLimitResult(
        can_add=can_add, current_count=current, max_allowed=max_allowed, tier=tier, message=message
    )


async def list_tools(session: AsyncSession) -> list[Tool]:
    return await guarded_lookup(
        subscriptions_repo.list_active_tools(session),
        operation="tools.list_active",
    )


async def list_tools_for_role(session: AsyncSession, role: str) -> list[Tool]:
    normalized = normalize_role(role)
    return [tool for tool in await list_tools(session) if normalized in (tool.target_roles or [])]


async def get_subscription_summary(
    session: AsyncSession,
    tenant_id: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    # Evaluates every catalog tool, so stale records are expired as a side effect.
    now = now or _utc_now()
    subscription = await get_or_create_subscription(session, tenant_id)
    tools = []
    for tool in await list_tools(session):
        decision = await check_access(session, tenant_id, tool.slug, now=now)
        tools.append(
            {
                "slug": tool.slug,
                "name": tool.name,
                "status": decision.status,
                "reason": decision.reason,
                "has_access": decision.has_access,
                "trial_days_remaining": decision.trial_days_remaining,
            }
        )
    unlimited = subscription.ai_credits == UNLIMITED
    return {
        "tenant_id": tenant_id,
        "tier": subscription.tier,
        "is_active": subscription.is_active,
        "max_admins": subscription.max_admins,
        "ai_credits": subscription.ai_credits,
        "ai_credits_used": subscription.ai_credits_used,
        "ai_credits_remaining": None
        if unlimited
        else subscription.ai_credits - subscription.ai_credits_used,
        "tools": tools,
    }
