from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from edugate.core.errors import UnknownTierError
from edugate.domain.models import AuditEvent, SchoolToolAccess, Subscription, Tool
from edugate.persistence.repos.subscriptions import list_tool_access
from edugate.services.entitlements import (
    STATUS_ACTIVE,
    STATUS_DISABLED,
    STATUS_EXPIRED,
    STATUS_TRIAL,
    change_tier,
    check_access,
    get_or_create_subscription,
    sync_tool_access_for_tier,
)
from edugate.tests.utils.seed import (
    create_school,
    create_subscription,
    create_super_admin,
    create_tool_access,
    seed_catalog,
)


_NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


async def _statuses(session, tenant_id: str) -> dict[str, str]:
    rows = await list_tool_access(session, tenant_id=tenant_id)
    return {tool.slug: access.status for access, tool in rows}


@pytest.mark.asyncio
async def test_sync_creates_allowed_tools_as_active(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)

    result = await sync_tool_access_for_tier(session, school, "STARTER", now=_NOW)
    assert result.created == 3
    assert await _statuses(session, school) == {
        "prepmaster": STATUS_ACTIVE,
        "socrates": STATUS_ACTIVE,
        "bursary": STATUS_ACTIVE,
    }


@pytest.mark.asyncio
async def test_sync_is_idempotent(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)

    await sync_tool_access_for_tier(session, school, "ENTERPRISE", now=_NOW)
    first = {
        tool.slug: (access.status, access.activated_at)
        for access, tool in await list_tool_access(session, tenant_id=school)
    }

    second_result = await sync_tool_access_for_tier(
        session, school, "ENTERPRISE", now=_NOW + timedelta(hours=1)
    )
    second = {
        tool.slug: (access.status, access.activated_at)
        for access, tool in await list_tool_access(session, tenant_id=school)
    }

    assert second_result.created == 0
    assert second_result.activated == 0
    assert second_result.disabled == 0
    assert second == first


@pytest.mark.asyncio
async def test_downgrade_disables_and_upgrade_reactivates(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)

    await sync_tool_access_for_tier(session, school, "STARTER", now=_NOW)
    downgrade = await sync_tool_access_for_tier(session, school, "FREE", now=_NOW)
    assert downgrade.disabled == 2
    assert await _statuses(session, school) == {
        "prepmaster": STATUS_DISABLED,
        "socrates": STATUS_DISABLED,
        "bursary": STATUS_ACTIVE,
    }

    upgrade = await sync_tool_access_for_tier(session, school, "STARTER", now=_NOW)
    assert upgrade.activated == 2
    assert (await _statuses(session, school))["prepmaster"] == STATUS_ACTIVE


@pytest.mark.asyncio
async def test_reactivation_clears_stale_deadlines(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    await create_tool_access(
        session, school, "socrates", status=STATUS_DISABLED, expires_at=_NOW - timedelta(days=30)
    )
    await create_tool_access(
        session, school, "prepmaster", status=STATUS_TRIAL, trial_ends_at=_NOW + timedelta(days=1)
    )

    result = await sync_tool_access_for_tier(session, school, "STARTER", now=_NOW)
    assert result.activated == 2

    # Well past the old trial end: the tier grant itself has no deadline.
    later = _NOW + timedelta(days=5)
    for slug in ("socrates", "prepmaster"):
        decision = await check_access(session, school, slug, now=later)
        assert decision.has_access, slug
        assert decision.status == STATUS_ACTIVE
        assert decision.expires_at is None
    assert (await _statuses(session, school))["socrates"] == STATUS_ACTIVE


@pytest.mark.asyncio
async def test_sync_never_resurrects_expired_records(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    await create_tool_access(session, school, "rollcall", status=STATUS_EXPIRED)

    await sync_tool_access_for_tier(session, school, "ENTERPRISE", now=_NOW)
    assert (await _statuses(session, school))["rollcall"] == STATUS_EXPIRED


@pytest.mark.asyncio
async def test_sync_leaves_disallowed_trials_and_expired_untouched(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    await create_tool_access(
        session, school, "rollcall", status=STATUS_TRIAL, trial_ends_at=_NOW + timedelta(days=3)
    )
    await create_tool_access(session, school, "socrates", status=STATUS_EXPIRED)

    await sync_tool_access_for_tier(session, school, "FREE", now=_NOW)
    statuses = await _statuses(session, school)
    assert statuses["rollcall"] == STATUS_TRIAL
    assert statuses["socrates"] == STATUS_EXPIRED


@pytest.mark.asyncio
async def test_upgrade_converts_live_trial_but_not_lapsed_trial(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    await create_tool_access(
        session, school, "socrates", status=STATUS_TRIAL, trial_ends_at=_NOW + timedelta(days=2)
    )
    await create_tool_access(
        session, school, "prepmaster", status=STATUS_TRIAL, trial_ends_at=_NOW - timedelta(days=2)
    )

    result = await sync_tool_access_for_tier(session, school, "STARTER", now=_NOW)
    assert result.activated == 1
    statuses = await _statuses(session, school)
    assert statuses["socrates"] == STATUS_ACTIVE
    assert statuses["prepmaster"] == STATUS_TRIAL

    # The evaluator expires the lapsed trial on its next read.
    decision = await check_access(session, school, "prepmaster", now=_NOW)
    assert not decision.has_access
    assert (await _statuses(session, school))["prepmaster"] == STATUS_EXPIRED


@pytest.mark.asyncio
async def test_unknown_tier_is_rejected(session) -> None:
    school = await create_school(session)
    with pytest.raises(UnknownTierError):
        await sync_tool_access_for_tier(session, school, "PLATINUM", now=_NOW)


@pytest.mark.asyncio
async def test_first_access_creates_free_subscription_with_core_tool(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)

    subscription = await get_or_create_subscription(session, school)
    assert subscription.tier == "FREE"
    assert subscription.max_admins == 10
    assert subscription.ai_credits == 0
    assert await _statuses(session, school) == {"bursary": STATUS_ACTIVE}

    again = await get_or_create_subscription(session, school)
    assert again.id == subscription.id


@pytest.mark.asyncio
async def test_change_tier_applies_limits_resets_usage_and_syncs(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    await create_subscription(session, school, tier="STARTER", ai_credits_used=420)
    await sync_tool_access_for_tier(session, school, "STARTER", now=_NOW)
    operator = await create_super_admin(session)

    subscription = await change_tier(session, school, "enterprise", actor=operator, now=_NOW)
    assert subscription.tier == "ENTERPRISE"
    assert subscription.max_admins == -1
    assert subscription.ai_credits == -1
    assert subscription.ai_credits_used == 0
    assert (await _statuses(session, school))["rollcall"] == STATUS_ACTIVE

    event = (
        await session.execute(
            select(AuditEvent).where(AuditEvent.event_type == "subscription.tier_changed")
        )
    ).scalar_one()
    assert event.actor_id == operator.user_id
    assert event.metadata_json == {"from_tier": "STARTER", "to_tier": "ENTERPRISE"}

    downgraded = await change_tier(session, school, "FREE", now=_NOW)
    assert downgraded.ai_credits == 0
    assert downgraded.ai_credits_used == 0
    statuses = await _statuses(session, school)
    assert statuses["rollcall"] == STATUS_DISABLED
    assert statuses["bursary"] == STATUS_ACTIVE

    stored = (await session.execute(select(Subscription).where(Subscription.tenant_id == school))).scalar_one()
    assert stored.ai_credits_used <= stored.ai_credits or stored.ai_credits == -1


@pytest.mark.asyncio
async def test_professional_is_an_alias_of_starter(session) -> None:
    school = await create_school(session)
    await seed_catalog(session)

    subscription = await change_tier(session, school, "PROFESSIONAL", now=_NOW)
    assert subscription.tier == "PROFESSIONAL"
    assert subscription.max_admins == 50
    assert subscription.ai_credits == 500
    assert set(await _statuses(session, school)) == {"prepmaster", "socrates", "bursary"}

    rows = (await session.execute(select(SchoolToolAccess))).scalars().all()
    assert all(row.tenant_id == school for row in rows)


@pytest.mark.asyncio
async def test_concurrent_syncs_create_each_record_once(session, session_factory) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    tool_count = len((await session.execute(select(Tool).where(Tool.is_active.is_(True)))).scalars().all())

    async def _sync():
        async with session_factory() as worker:
            return await sync_tool_access_for_tier(worker, school, "ENTERPRISE", now=_NOW)

    results = await asyncio.gather(*(_sync() for _ in range(4)))
    assert sum(result.created for result in results) == tool_count
    assert all(result.disabled == 0 for result in results)

    async with session_factory() as fresh:
        rows = (
            await fresh.execute(select(SchoolToolAccess).where(SchoolToolAccess.tenant_id == school))
        ).scalars().all()
    assert len(rows) == tool_count
    assert len({row.tool_id for row in rows}) == tool_count
    assert {row.status for row in rows} == {STATUS_ACTIVE}
