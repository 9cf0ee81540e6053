from __future__ import annotations

import pytest

from edugate.core.config import get_settings
from edugate.persistence.guards import TenantPredicateError
from edugate.persistence.repos import memberships as memberships_repo
from edugate.persistence.repos import permissions as permissions_repo
from edugate.persistence.repos import subscriptions as subscriptions_repo


def _enable_guard(monkeypatch: pytest.MonkeyPatch) -> None:
    # Enforcement is on by default; pin it so an env override cannot mask a miss.
    monkeypatch.setenv("AUTHZ_REQUIRE_TENANT_PREDICATE", "true")
    get_settings.cache_clear()


@pytest.mark.asyncio
async def test_membership_repo_requires_tenant_predicate(monkeypatch: pytest.MonkeyPatch) -> None:
    _enable_guard(monkeypatch)
    with pytest.raises(TenantPredicateError):
        await memberships_repo.get_admin_profile(None, tenant_id=None, user_id="u1")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await memberships_repo.has_enrollment(None, tenant_id="", user_id="u1")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await memberships_repo.count_admins(None, tenant_id=None)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_permission_repo_requires_tenant_predicate(monkeypatch: pytest.MonkeyPatch) -> None:
    _enable_guard(monkeypatch)
    with pytest.raises(TenantPredicateError):
        await permissions_repo.grant_exists(
            None,  # type: ignore[arg-type]
            tenant_id=None,  # type: ignore[arg-type]
            staff_user_id="u1",
            resource="STUDENTS",
            type="READ",
        )
    with pytest.raises(TenantPredicateError):
        await permissions_repo.delete_grants(None, tenant_id=None, staff_user_id="u1")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        permissions_repo.add_grants(
            None,  # type: ignore[arg-type]
            tenant_id="",
            staff_user_id="u1",
            grants=[("STUDENTS", "READ")],
            granted_by=None,
        )


@pytest.mark.asyncio
async def test_subscription_repo_requires_tenant_predicate(monkeypatch: pytest.MonkeyPatch) -> None:
    _enable_guard(monkeypatch)
    with pytest.raises(TenantPredicateError):
        await subscriptions_repo.get_subscription(None, tenant_id=None)  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await subscriptions_repo.get_tool_access(None, tenant_id=None, tool_id="socrates")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await subscriptions_repo.list_tool_access(None, tenant_id=None)  # type: ignore[arg-type]
