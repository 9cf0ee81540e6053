from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.models import Permission, StaffPermission
from edugate.persistence.guards import require_tenant_id, tenant_predicate


async def list_grants(
    session: AsyncSession,
    *,
    tenant_id: str,
    staff_user_id: str,
) -> list[StaffPermission]:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(StaffPermission)
        .where(
            tenant_predicate(StaffPermission, tenant_id),
            StaffPermission.staff_user_id == staff_user_id,
        )
        .order_by(StaffPermission.resource.asc(), StaffPermission.type.asc())
    )
    return list(result.scalars().all())


async def grant_exists(
    session: AsyncSession,
    *,
    tenant_id: str,
    staff_user_id: str,
    resource: str,
    type: str,
) -> bool:
    # Exact (resource, type) match only; no implied hierarchy between types.
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(StaffPermission.id)
        .where(
            tenant_predicate(StaffPermission, tenant_id),
            StaffPermission.staff_user_id == staff_user_id,
            StaffPermission.resource == resource,
            StaffPermission.type == type,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def delete_grants(
    session: AsyncSession,
    *,
    tenant_id: str,
    staff_user_id: str,
) -> int:
    require_tenant_id(tenant_id)
    result = await session.execute(
        delete(StaffPermission).where(
            tenant_predicate(StaffPermission, tenant_id),
            StaffPermission.staff_user_id == staff_user_id,
        )
    )
    return int(result.rowcount or 0)


def add_grants(
    session: AsyncSession,
    *,
    tenant_id: str,
    staff_user_id: str,
    grants: list[tuple[str, str]],
    granted_by: str | None,
) -> list[StaffPermission]:
    # Stage grant rows; the caller owns the transaction boundary.
    require_tenant_id(tenant_id)
    rows = [
        StaffPermission(
            tenant_id=tenant_id,
            staff_user_id=staff_user_id,
            resource=resource,
            type=type_,
            granted_by=granted_by,
        )
        for resource, type_ in grants
    ]
    session.add_all(rows)
    return rows


async def staff_with_grants(session: AsyncSession, *, tenant_id: str) -> set[str]:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(StaffPermission.staff_user_id)
        .where(tenant_predicate(StaffPermission, tenant_id))
        .distinct()
    )
    return set(result.scalars().all())


async def list_catalog(session: AsyncSession) -> list[Permission]:
    result = await session.execute(
        select(Permission).order_by(Permission.resource.asc(), Permission.type.asc())
    )
    return list(result.scalars().all())
