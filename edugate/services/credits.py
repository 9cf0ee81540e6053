from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.errors import PersistenceUnavailableError
from edugate.domain.actors import Actor
from edugate.domain.models import Subscription
from edugate.persistence.guards import guarded_lookup, tenant_predicate
from edugate.services.audit import record_event
from edugate.services.catalog import UNLIMITED
from edugate.services.entitlements import get_or_create_subscription


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditUsageResult:
    # remaining is None when the tenant's allotment is unlimited.
    success: bool
    used: int
    remaining: int | None
    total_used: int
    message: str | None = None

    @property
    def unlimited(self) -> bool:
        return self.success and self.remaining is None


async def use_credits(
    session: AsyncSession,
    tenant_id: str,
    amount: int,
    reason: str,
    *,
    actor: Actor | None = None,
) -> CreditUsageResult:
    """Consume ``amount`` AI credits for ``tenant_id`` or report the shortfall.

    The balance check and the increment are one conditional UPDATE, so
    concurrent spenders can never overdraw the allotment. An unlimited
    allotment (-1) skips the check but still counts usage.
    """
    if amount < 0:
        raise ValueError("Credit amount must be non-negative")
    await get_or_create_subscription(session, tenant_id)

    new_used = Subscription.ai_credits_used + amount
    stmt = (
        update(Subscription)
        .where(
            tenant_predicate(Subscription, tenant_id),
            or_(Subscription.ai_credits == UNLIMITED, new_used <= Subscription.ai_credits),
        )
        .values(ai_credits_used=new_used)
        .returning(Subscription.ai_credits, Subscription.ai_credits_used)
        .execution_options(synchronize_session=False)
    )
    try:
        row = (await session.execute(stmt)).first()
        if row is not None:
            ai_credits, ai_credits_used = row
            await record_event(
                session,
                "credits.consumed",
                tenant_id=tenant_id,
                actor=actor,
                resource_type="ai_credits",
                metadata={"amount": amount, "reason": reason, "total_used": ai_credits_used},
            )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("credits_consume_failed tenant_id=%s amount=%s", tenant_id, amount, exc_info=exc)
        raise PersistenceUnavailableError("AI credit ledger unavailable") from exc

    if row is not None:
        remaining = None if ai_credits == UNLIMITED else ai_credits - ai_credits_used
        logger.info(
            "credits_consumed tenant_id=%s amount=%s reason=%s remaining=%s",
            tenant_id,
            amount,
            reason,
            "unlimited" if remaining is None else remaining,
        )
        return CreditUsageResult(
            success=True, used=amount, remaining=remaining, total_used=ai_credits_used
        )

    return await _reject(session, tenant_id=tenant_id, amount=amount, reason=reason, actor=actor)


async def _reject(
    session: AsyncSession,
    *,
    tenant_id: str,
    amount: int,
    reason: str,
    actor: Actor | None,
) -> CreditUsageResult:
    # Report against the balance as it stood when the update was refused.
    result = await guarded_lookup(
        session.execute(
            select(Subscription.ai_credits, Subscription.ai_credits_used).where(
                tenant_predicate(Subscription, tenant_id)
            )
        ),
        operation="credits.balance",
    )
    ai_credits, ai_credits_used = result.one()
    available = max(0, ai_credits - ai_credits_used)
    shortfall = amount - available
    message = (
        f"Insufficient AI credits. Required: {amount}, Available: {available}, "
        f"Shortfall: {shortfall}"
    )
    logger.info(
        "credits_rejected tenant_id=%s amount=%s available=%s reason=%s",
        tenant_id,
        amount,
        available,
        reason,
    )
    await record_event(
        session,
        "credits.rejected",
        tenant_id=tenant_id,
        actor=actor,
        outcome="failure",
        resource_type="ai_credits",
        metadata={"amount": amount, "available": available, "reason": reason},
        error_code="INSUFFICIENT_CREDITS",
        commit=True,
    )
    return CreditUsageResult(
        success=False,
        used=0,
        remaining=available,
        total_used=ai_credits_used,
        message=message,
    )


async def get_credit_balance(session: AsyncSession, tenant_id: str) -> dict[str, int | None]:
    subscription = await get_or_create_subscription(session, tenant_id)
    unlimited = subscription.ai_credits == UNLIMITED
    return {
        "ai_credits": subscription.ai_credits,
        "ai_credits_used": subscription.ai_credits_used,
        "ai_credits_remaining": None
        if unlimited
        else subscription.ai_credits - subscription.ai_credits_used,
    }
