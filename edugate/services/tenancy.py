from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.errors import (
    CrossTenantAccessDeniedError,
    InvalidTenantContextError,
    NoTenantAssociationError,
)
from edugate.domain.actors import ROLE_SCHOOL_ADMIN, ROLE_STUDENT, ROLE_TEACHER, Actor
from edugate.persistence.guards import guarded_lookup
from edugate.persistence.repos import memberships
from edugate.services.audit import RequestContext, record_event


logger = logging.getLogger(__name__)

SOURCE_SUPER_ADMIN = "super_admin"
SOURCE_TOKEN = "token"
SOURCE_ENROLLMENT = "enrollment"
SOURCE_TRANSCRIPT = "transcript"
SOURCE_ADMIN_PROFILE = "admin_profile"
SOURCE_TEACHER_PROFILE = "teacher_profile"


@dataclass(frozen=True)
class TenantBinding:
    """Tenant a request is allowed to touch, passed explicitly downstream.

    ``tenant_id`` is None only for super-admins acting in global scope.
    """

    actor: Actor
    tenant_id: str | None
    source: str

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None


async def authorize_tenant(
    session: AsyncSession,
    actor: Actor,
    requested_tenant_id: str | None = None,
    *,
    context: RequestContext | None = None,
) -> TenantBinding:
    """Bind the request to exactly one tenant or reject it.

    Raises NoTenantAssociationError, InvalidTenantContextError or
    CrossTenantAccessDeniedError; persistence failures surface as
    PersistenceUnavailableError and must be treated as denials.
    """
    requested = requested_tenant_id or None
    if actor.is_super_admin:
        return TenantBinding(actor=actor, tenant_id=requested, source=SOURCE_SUPER_ADMIN)

    if actor.current_tenant_id:
        if not await _has_membership(session, actor, actor.current_tenant_id):
            logger.warning(
                "tenant_context_invalid user_id=%s tenant_id=%s",
                actor.user_id,
                actor.current_tenant_id,
            )
            await _audit_denial(
                session,
                actor=actor,
                tenant_id=actor.current_tenant_id,
                event_type="tenant.invalid_context",
                error_code=InvalidTenantContextError.code,
                metadata={},
                context=context,
            )
            raise InvalidTenantContextError(
                "Your session is no longer associated with this school",
                tenant_id=actor.current_tenant_id,
            )
        resolved, source = actor.current_tenant_id, SOURCE_TOKEN
    else:
        resolved, source = await _resolve_from_memberships(session, actor, requested)

    if requested is not None and requested != resolved:
        logger.warning(
            "tenant_cross_access_denied user_id=%s role=%s bound_tenant_id=%s requested_tenant_id=%s",
            actor.user_id,
            actor.role,
            resolved,
            requested,
        )
        await _audit_denial(
            session,
            actor=actor,
            tenant_id=resolved,
            event_type="tenant.cross_access_denied",
            error_code=CrossTenantAccessDeniedError.code,
            metadata={"requested_tenant_id": requested},
            context=context,
        )
        raise CrossTenantAccessDeniedError(
            "You can only access data from your own school",
            requested_tenant_id=requested,
        )

    return TenantBinding(actor=actor, tenant_id=resolved, source=source)


async def _has_membership(session: AsyncSession, actor: Actor, tenant_id: str) -> bool:
    # Historical enrollments still count for students (transcript access).
    if actor.role == ROLE_STUDENT:
        return await guarded_lookup(
            memberships.has_enrollment(session, tenant_id=tenant_id, user_id=actor.user_id),
            operation="membership.enrollment",
        )
    if actor.role == ROLE_SCHOOL_ADMIN:
        profile = await guarded_lookup(
            memberships.get_admin_profile(session, tenant_id=tenant_id, user_id=actor.user_id),
            operation="membership.admin",
        )
        return profile is not None
    if actor.role == ROLE_TEACHER:
        profile = await guarded_lookup(
            memberships.get_teacher_profile(session, tenant_id=tenant_id, user_id=actor.user_id),
            operation="membership.teacher",
        )
        return profile is not None
    return False


async def _resolve_from_memberships(
    session: AsyncSession,
    actor: Actor,
    requested: str | None,
) -> tuple[str, str]:
    # Tokens issued before tenant binding carry no tenant claim; derive it from profiles.
    if actor.role == ROLE_STUDENT:
        active = await guarded_lookup(
            memberships.latest_enrollment(session, user_id=actor.user_id, active_only=True),
            operation="membership.latest_active_enrollment",
        )
        if active is not None:
            return active.tenant_id, SOURCE_ENROLLMENT
        if requested is not None and await guarded_lookup(
            memberships.has_enrollment(session, tenant_id=requested, user_id=actor.user_id),
            operation="membership.enrollment",
        ):
            return requested, SOURCE_TRANSCRIPT
        historical = await guarded_lookup(
            memberships.latest_enrollment(session, user_id=actor.user_id, active_only=False),
            operation="membership.latest_enrollment",
        )
        if historical is not None:
            return historical.tenant_id, SOURCE_TRANSCRIPT
    elif actor.role == ROLE_SCHOOL_ADMIN:
        admin = await guarded_lookup(
            memberships.first_admin_profile(session, user_id=actor.user_id),
            operation="membership.admin",
        )
        if admin is not None:
            return admin.tenant_id, SOURCE_ADMIN_PROFILE
    elif actor.role == ROLE_TEACHER:
        teacher = await guarded_lookup(
            memberships.first_teacher_profile(session, user_id=actor.user_id),
            operation="membership.teacher",
        )
        if teacher is not None:
            return teacher.tenant_id, SOURCE_TEACHER_PROFILE

    logger.info("tenant_association_missing user_id=%s role=%s", actor.user_id, actor.role)
    raise NoTenantAssociationError(
        "User is not associated with any school",
        user_id=actor.user_id,
    )


async def _audit_denial(
    session: AsyncSession,
    *,
    actor: Actor,
    tenant_id: str | None,
    event_type: str,
    error_code: str,
    metadata: dict,
    context: RequestContext | None,
) -> None:
    await record_event(
        session,
        event_type,
        tenant_id=tenant_id,
        actor=actor,
        outcome="failure",
        resource_type="tenant",
        resource_id=tenant_id,
        context=context,
        metadata=metadata,
        error_code=error_code,
        commit=True,
    )
