from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.errors import (
    InvalidGrantError,
    PermissionDeniedError,
    PersistenceUnavailableError,
    PrincipalImmutableError,
    StaffNotFoundError,
)
from edugate.domain.actors import ROLE_SCHOOL_ADMIN, ROLE_TEACHER, Actor
from edugate.domain.models import Permission, SchoolAdmin, Teacher
from edugate.persistence.guards import guarded_lookup
from edugate.persistence.repos import memberships
from edugate.persistence.repos import permissions as grants_repo
from edugate.services.audit import RequestContext, record_event
from edugate.services.catalog import (
    PERMISSION_ADMIN,
    PERMISSION_READ,
    PERMISSION_RESOURCES,
    PERMISSION_TYPES,
    permission_description,
)


logger = logging.getLogger(__name__)

PRINCIPAL_TITLES = frozenset(
    {
        "principal",
        "school principal",
        "head teacher",
        "headmaster",
        "headmistress",
    }
)

STAFF_RESOURCE = "STAFF"


def is_principal_title(title: str | None) -> bool:
    """Return True when an admin title designates the tenant's full-access role.

    Exact match after trimming and lowercasing; "Vice Principal" is not a principal.
    """
    if not title:
        return False
    return title.strip().lower() in PRINCIPAL_TITLES


def normalize_grant(resource: str, type_: str) -> tuple[str, str]:
    normalized = (resource.strip().upper(), type_.strip().upper())
    if normalized[0] not in PERMISSION_RESOURCES:
        raise InvalidGrantError(f"Unknown permission resource: {resource}", resource=resource)
    if normalized[1] not in PERMISSION_TYPES:
        raise InvalidGrantError(f"Unknown permission type: {type_}", type=type_)
    return normalized


def normalize_grants(grants: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    # Deduplicate while keeping caller order stable for audit metadata.
    seen: dict[tuple[str, str], None] = {}
    for resource, type_ in grants:
        seen.setdefault(normalize_grant(resource, type_), None)
    return list(seen)


@dataclass(frozen=True)
class StaffProfile:
    # Staff membership of a user in one tenant.
    user_id: str
    tenant_id: str
    kind: str
    title: str | None = None

    @property
    def is_principal(self) -> bool:
        return self.kind == ROLE_SCHOOL_ADMIN and is_principal_title(self.title)


async def get_staff_profile(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    role: str | None = None,
) -> StaffProfile | None:
    # Prefer the admin profile; teachers are consulted unless the role pins an admin.
    if role in (None, ROLE_SCHOOL_ADMIN):
        admin: SchoolAdmin | None = await guarded_lookup(
            memberships.get_admin_profile(session, tenant_id=tenant_id, user_id=user_id),
            operation="permissions.admin_profile",
        )
        if admin is not None:
            return StaffProfile(
                user_id=user_id, tenant_id=tenant_id, kind=ROLE_SCHOOL_ADMIN, title=admin.title
            )
        if role == ROLE_SCHOOL_ADMIN:
            return None
    teacher: Teacher | None = await guarded_lookup(
        memberships.get_teacher_profile(session, tenant_id=tenant_id, user_id=user_id),
        operation="permissions.teacher_profile",
    )
    if teacher is not None:
        return StaffProfile(user_id=user_id, tenant_id=tenant_id, kind=ROLE_TEACHER)
    return None


async def is_principal(session: AsyncSession, actor: Actor, tenant_id: str) -> bool:
    if actor.role != ROLE_SCHOOL_ADMIN:
        return False
    profile = await get_staff_profile(
        session, tenant_id=tenant_id, user_id=actor.user_id, role=ROLE_SCHOOL_ADMIN
    )
    return profile is not None and profile.is_principal


async def has_permission(
    session: AsyncSession,
    actor: Actor,
    tenant_id: str,
    resource: str,
    required_type: str,
) -> bool:
    """Decide whether ``actor`` may perform ``required_type`` on ``resource``.

    Super-admins and the tenant's principal pass unconditionally. Everyone
    else needs a stored grant matching the pair exactly. Students never pass.
    """
    resource, required_type = normalize_grant(resource, required_type)
    if actor.is_super_admin:
        return True
    if not actor.is_staff:
        return False
    profile = await get_staff_profile(
        session, tenant_id=tenant_id, user_id=actor.user_id, role=actor.role
    )
    if profile is None:
        return False
    if profile.is_principal:
        return True
    return await guarded_lookup(
        grants_repo.grant_exists(
            session,
            tenant_id=tenant_id,
            staff_user_id=actor.user_id,
            resource=resource,
            type=required_type,
        ),
        operation="permissions.grant_exists",
    )


async def require_permission(
    session: AsyncSession,
    actor: Actor,
    tenant_id: str,
    resource: str,
    required_type: str,
) -> None:
    if not await has_permission(session, actor, tenant_id, resource, required_type):
        logger.info(
            "permission_denied user_id=%s tenant_id=%s resource=%s type=%s",
            actor.user_id,
            tenant_id,
            resource,
            required_type,
        )
        raise PermissionDeniedError(
            "You don't have permission to perform this action",
            resource=resource.upper(),
            type=required_type.upper(),
        )


async def list_staff_permissions(
    session: AsyncSession,
    *,
    tenant_id: str,
    staff_user_id: str,
) -> dict[str, object]:
    # Principals report the full matrix without any stored rows behind it.
    profile = await get_staff_profile(session, tenant_id=tenant_id, user_id=staff_user_id)
    if profile is None:
        raise StaffNotFoundError("Staff member not found", staff_user_id=staff_user_id)
    if profile.is_principal:
        grants = [(resource, type_) for resource in PERMISSION_RESOURCES for type_ in PERMISSION_TYPES]
    else:
        rows = await guarded_lookup(
            grants_repo.list_grants(session, tenant_id=tenant_id, staff_user_id=staff_user_id),
            operation="permissions.list_grants",
        )
        grants = [(row.resource, row.type) for row in rows]
    return {
        "staff_user_id": staff_user_id,
        "is_principal": profile.is_principal,
        "permissions": [{"resource": resource, "type": type_} for resource, type_ in grants],
    }


async def _check_delegation(
    session: AsyncSession,
    *,
    caller: Actor,
    tenant_id: str,
    grants: list[tuple[str, str]],
) -> None:
    # Super-admins and principals delegate freely; other admins need STAFF:ADMIN.
    if caller.is_super_admin or await is_principal(session, caller, tenant_id):
        return
    await require_permission(session, caller, tenant_id, STAFF_RESOURCE, PERMISSION_ADMIN)
    for resource, type_ in grants:
        if type_ != PERMISSION_ADMIN:
            continue
        if not await has_permission(session, caller, tenant_id, resource, PERMISSION_ADMIN):
            raise PermissionDeniedError(
                f"Cannot grant ADMIN access to {resource} without holding it",
                resource=resource,
                type=PERMISSION_ADMIN,
            )


async def assign_permissions(
    session: AsyncSession,
    *,
    tenant_id: str,
    staff_user_id: str,
    grants: Iterable[tuple[str, str]],
    caller: Actor,
    context: RequestContext | None = None,
) -> list[tuple[str, str]]:
    """Replace a staff member's grant set with ``grants`` in one transaction."""
    normalized = normalize_grants(grants)
    target = await get_staff_profile(session, tenant_id=tenant_id, user_id=staff_user_id)
    if target is None:
        raise StaffNotFoundError("Staff member not found", staff_user_id=staff_user_id)
    if target.is_principal:
        raise PrincipalImmutableError(
            "Cannot modify permissions for the Principal. Principal has full access by default.",
            staff_user_id=staff_user_id,
        )
    await _check_delegation(session, caller=caller, tenant_id=tenant_id, grants=normalized)

    try:
        removed = await grants_repo.delete_grants(
            session, tenant_id=tenant_id, staff_user_id=staff_user_id
        )
        grants_repo.add_grants(
            session,
            tenant_id=tenant_id,
            staff_user_id=staff_user_id,
            grants=normalized,
            granted_by=caller.user_id,
        )
        await record_event(
            session,
            "permissions.assigned",
            tenant_id=tenant_id,
            actor=caller,
            resource_type="staff_permissions",
            resource_id=staff_user_id,
            context=context,
            metadata={
                "removed": removed,
                "permissions": [f"{resource}:{type_}" for resource, type_ in normalized],
            },
            best_effort=False,
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "permission_assign_failed tenant_id=%s staff_user_id=%s",
            tenant_id,
            staff_user_id,
            exc_info=exc,
        )
        raise PersistenceUnavailableError("Failed to update permissions") from exc

    logger.info(
        "permissions_assigned tenant_id=%s staff_user_id=%s count=%s removed=%s",
        tenant_id,
        staff_user_id,
        len(normalized),
        removed,
    )
    return normalized


async def revoke_all_permissions(
    session: AsyncSession,
    *,
    tenant_id: str,
    staff_user_id: str,
    caller: Actor | None = None,
) -> int:
    # Called when a staff member leaves the tenant.
    try:
        removed = await grants_repo.delete_grants(
            session, tenant_id=tenant_id, staff_user_id=staff_user_id
        )
        await record_event(
            session,
            "permissions.revoked",
            tenant_id=tenant_id,
            actor=caller,
            resource_type="staff_permissions",
            resource_id=staff_user_id,
            metadata={"removed": removed},
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceUnavailableError("Failed to revoke permissions") from exc
    return removed


async def ensure_permission_catalog(session: AsyncSession) -> int:
    # Upsert one described row per (resource, type); safe to re-run.
    existing = {
        (row.resource, row.type): row for row in await grants_repo.list_catalog(session)
    }
    created = 0
    for resource in PERMISSION_RESOURCES:
        for type_ in PERMISSION_TYPES:
            description = permission_description(resource, type_)
            row = existing.get((resource, type_))
            if row is None:
                session.add(
                    Permission(
                        id=uuid4().hex,
                        resource=resource,
                        type=type_,
                        description=description,
                    )
                )
                created += 1
            elif row.description != description:
                row.description = description
    await session.commit()
    return created


async def migrate_existing_admins(session: AsyncSession, *, tenant_id: str) -> dict[str, int]:
    """Give legacy admins without grants read access to every resource.

    Principals are skipped because their access is implicit.
    """
    admins = await guarded_lookup(
        memberships.list_admins(session, tenant_id=tenant_id),
        operation="permissions.list_admins",
    )
    with_grants = await guarded_lookup(
        grants_repo.staff_with_grants(session, tenant_id=tenant_id),
        operation="permissions.staff_with_grants",
    )
    read_all = [(resource, PERMISSION_READ) for resource in PERMISSION_RESOURCES]
    migrated = 0
    skipped = 0
    for admin in admins:
        if is_principal_title(admin.title) or admin.user_id in with_grants:
            skipped += 1
            continue
        grants_repo.add_grants(
            session,
            tenant_id=tenant_id,
            staff_user_id=admin.user_id,
            grants=read_all,
            granted_by=None,
        )
        migrated += 1
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceUnavailableError("Failed to migrate admin permissions") from exc
    logger.info(
        "permissions_migrated tenant_id=%s migrated=%s skipped=%s", tenant_id, migrated, skipped
    )
    return {"migrated": migrated, "skipped": skipped}
