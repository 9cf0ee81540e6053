from __future__ import annotations

import pytest

from edugate.services.entitlements import check_admin_limit
from edugate.tests.utils.seed import (
    create_admin,
    create_school,
    create_subscription,
    create_super_admin,
)


async def _add_admins(session, tenant_id: str, count: int) -> None:
    for index in range(count):
        await create_admin(session, tenant_id, title=f"Coordinator {index}")


@pytest.mark.asyncio
async def test_free_tier_at_capacity_cannot_add(session) -> None:
    school = await create_school(session)
    await create_subscription(session, school, tier="FREE")
    await _add_admins(session, school, 10)

    result = await check_admin_limit(session, school)
    assert not result.can_add
    assert result.current_count == 10
    assert result.max_allowed == 10
    assert result.tier == "FREE"
    assert result.message == (
        "Your FREE plan allows a maximum of 10 administrators. Current: 10. "
        "Please upgrade your subscription to add more."
    )


@pytest.mark.asyncio
async def test_below_capacity_can_add(session) -> None:
    school = await create_school(session)
    await create_subscription(session, school, tier="STARTER")
    await _add_admins(session, school, 3)

    result = await check_admin_limit(session, school)
    assert result.can_add
    assert result.current_count == 3
    assert result.max_allowed == 50
    assert result.message is None


@pytest.mark.asyncio
async def test_unlimited_plan_always_allows(session) -> None:
    school = await create_school(session)
    await create_subscription(session, school, tier="ENTERPRISE")
    await _add_admins(session, school, 12)

    result = await check_admin_limit(session, school)
    assert result.can_add
    assert result.max_allowed == -1
    assert result.current_count == 12


@pytest.mark.asyncio
async def test_missing_subscription_uses_free_limits(session) -> None:
    school = await create_school(session)
    await _add_admins(session, school, 10)

    result = await check_admin_limit(session, school)
    assert not result.can_add
    assert result.tier == "FREE"
    assert result.max_allowed == 10


@pytest.mark.asyncio
async def test_counts_are_per_tenant(session) -> None:
    school_a = await create_school(session)
    school_b = await create_school(session)
    await create_subscription(session, school_a, tier="FREE", max_admins=2)
    await create_subscription(session, school_b, tier="FREE", max_admins=2)
    await _add_admins(session, school_a, 2)

    assert not (await check_admin_limit(session, school_a)).can_add
    assert (await check_admin_limit(session, school_b)).can_add


@pytest.mark.asyncio
async def test_quota_binds_super_admin_callers_too(session) -> None:
    # Quotas are a property of the tenant's plan; the caller's role does not lift them.
    # Revisit if operators need an override path for onboarding.
    school = await create_school(session)
    await create_super_admin(session)
    await create_subscription(session, school, tier="FREE", max_admins=1)
    await _add_admins(session, school, 1)

    assert not (await check_admin_limit(session, school)).can_add
