from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from edugate.core.config import get_settings
from edugate.core.errors import PersistenceUnavailableError
from edugate.persistence.guards import guarded_lookup
from edugate.persistence.repos import memberships as memberships_repo
from edugate.persistence.repos import permissions as permissions_repo
from edugate.persistence.repos import subscriptions as subscriptions_repo
from edugate.services.entitlements import check_access
from edugate.services.permissions import has_permission
from edugate.services.tenancy import authorize_tenant
from edugate.tests.utils.seed import create_admin, create_school, create_teacher, seed_catalog


async def _slow(*_args, **_kwargs) -> None:
    await asyncio.sleep(1)


async def _broken(*_args, **_kwargs) -> None:
    raise OperationalError("SELECT 1", {}, Exception("connection reset"))


@pytest.mark.asyncio
async def test_guarded_lookup_times_out_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOOKUP_TIMEOUT_MS", "20")
    get_settings.cache_clear()
    with pytest.raises(PersistenceUnavailableError) as excinfo:
        await guarded_lookup(_slow(), operation="test.slow")
    assert excinfo.value.details == {"operation": "test.slow"}


@pytest.mark.asyncio
async def test_guarded_lookup_wraps_driver_errors() -> None:
    with pytest.raises(PersistenceUnavailableError):
        await guarded_lookup(_broken(), operation="test.broken")


@pytest.mark.asyncio
async def test_guarded_lookup_passes_results_through() -> None:
    async def _value() -> int:
        return 7

    assert await guarded_lookup(_value(), operation="test.value") == 7


@pytest.mark.asyncio
async def test_permission_check_denies_when_grants_unavailable(
    session, monkeypatch: pytest.MonkeyPatch
) -> None:
    school = await create_school(session)
    teacher = await create_teacher(session, school)
    monkeypatch.setattr(permissions_repo, "grant_exists", _broken)

    with pytest.raises(PersistenceUnavailableError):
        await has_permission(session, teacher, school, "STUDENTS", "READ")


@pytest.mark.asyncio
async def test_tenant_binding_denies_when_memberships_unavailable(
    session, monkeypatch: pytest.MonkeyPatch
) -> None:
    school = await create_school(session)
    admin = await create_admin(session, school)
    monkeypatch.setenv("LOOKUP_TIMEOUT_MS", "20")
    get_settings.cache_clear()
    monkeypatch.setattr(memberships_repo, "get_admin_profile", _slow)

    with pytest.raises(PersistenceUnavailableError):
        await authorize_tenant(session, admin, school)


@pytest.mark.asyncio
async def test_tool_check_denies_when_catalog_unavailable(
    session, monkeypatch: pytest.MonkeyPatch
) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    monkeypatch.setattr(subscriptions_repo, "get_tool_access", _broken)

    with pytest.raises(PersistenceUnavailableError):
        await check_access(session, school, "bursary")
