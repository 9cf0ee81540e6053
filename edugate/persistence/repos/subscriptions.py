from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.models import SchoolToolAccess, Subscription, Tool
from edugate.persistence.guards import require_tenant_id, tenant_predicate


async def get_subscription(session: AsyncSession, *, tenant_id: str) -> Subscription | None:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(Subscription)
        .where(tenant_predicate(Subscription, tenant_id))
        # Credit counters move through bulk UPDATEs; never trust the identity map.
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_tool_by_slug(session: AsyncSession, *, slug: str) -> Tool | None:
    result = await session.execute(select(Tool).where(Tool.slug == slug))
    return result.scalar_one_or_none()


async def list_active_tools(session: AsyncSession) -> list[Tool]:
    result = await session.execute(
        select(Tool).where(Tool.is_active.is_(True)).order_by(Tool.sort_order.asc(), Tool.slug.asc())
    )
    return list(result.scalars().all())


async def get_tool_access(
    session: AsyncSession,
    *,
    tenant_id: str,
    tool_id: str,
) -> SchoolToolAccess | None:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(SchoolToolAccess)
        .where(
            tenant_predicate(SchoolToolAccess, tenant_id),
            SchoolToolAccess.tool_id == tool_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_tool_access(
    session: AsyncSession,
    *,
    tenant_id: str,
) -> list[tuple[SchoolToolAccess, Tool]]:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(SchoolToolAccess, Tool)
        .join(Tool, SchoolToolAccess.tool_id == Tool.id)
        .where(tenant_predicate(SchoolToolAccess, tenant_id))
        .order_by(Tool.sort_order.asc(), Tool.slug.asc())
        .execution_options(populate_existing=True)
    )
    return [(access, tool) for access, tool in result.all()]
