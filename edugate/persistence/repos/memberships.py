from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.models import Enrollment, SchoolAdmin, Student, Teacher
from edugate.persistence.guards import require_tenant_id, tenant_predicate


async def get_admin_profile(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
) -> SchoolAdmin | None:
    # Admin profiles are unique per (user, tenant).
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(SchoolAdmin).where(
            tenant_predicate(SchoolAdmin, tenant_id),
            SchoolAdmin.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_admin_profile_by_id(
    session: AsyncSession,
    *,
    tenant_id: str,
    admin_id: str,
) -> SchoolAdmin | None:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(SchoolAdmin).where(
            tenant_predicate(SchoolAdmin, tenant_id),
            SchoolAdmin.id == admin_id,
        )
    )
    return result.scalar_one_or_none()


async def get_teacher_profile(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
) -> Teacher | None:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(Teacher).where(
            tenant_predicate(Teacher, tenant_id),
            Teacher.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def first_admin_profile(session: AsyncSession, *, user_id: str) -> SchoolAdmin | None:
    # Oldest profile wins when an admin serves more than one school.
    result = await session.execute(
        select(SchoolAdmin)
        .where(SchoolAdmin.user_id == user_id)
        .order_by(SchoolAdmin.created_at.asc(), SchoolAdmin.id.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def first_teacher_profile(session: AsyncSession, *, user_id: str) -> Teacher | None:
    result = await session.execute(
        select(Teacher)
        .where(Teacher.user_id == user_id)
        .order_by(Teacher.created_at.asc(), Teacher.id.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def latest_enrollment(
    session: AsyncSession,
    *,
    user_id: str,
    active_only: bool,
) -> Enrollment | None:
    # Resolve a student's most recent enrollment, optionally restricted to active ones.
    stmt = (
        select(Enrollment)
        .join(Student, Enrollment.student_id == Student.id)
        .where(Student.user_id == user_id)
    )
    if active_only:
        stmt = stmt.where(Enrollment.is_active.is_(True))
    result = await session.execute(
        stmt.order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def has_enrollment(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    active_only: bool = False,
) -> bool:
    # Historical enrollments count unless active_only is requested.
    require_tenant_id(tenant_id)
    stmt = (
        select(Enrollment.id)
        .join(Student, Enrollment.student_id == Student.id)
        .where(tenant_predicate(Enrollment, tenant_id), Student.user_id == user_id)
    )
    if active_only:
        stmt = stmt.where(Enrollment.is_active.is_(True))
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


async def count_admins(session: AsyncSession, *, tenant_id: str) -> int:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(func.count()).select_from(SchoolAdmin).where(tenant_predicate(SchoolAdmin, tenant_id))
    )
    return int(result.scalar_one())


async def list_admins(session: AsyncSession, *, tenant_id: str) -> list[SchoolAdmin]:
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(SchoolAdmin)
        .where(tenant_predicate(SchoolAdmin, tenant_id))
        .order_by(SchoolAdmin.created_at.asc(), SchoolAdmin.id.asc())
    )
    return list(result.scalars().all())
