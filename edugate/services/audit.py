"""Append-only security trail for authorization decisions.

Denials and entitlement changes are written to ``audit_events`` in the
caller's session. Denials pass ``commit=True``: the row commits on its own
and, when ``best_effort`` is set, a failed write is logged and the denial
stands. Without ``commit`` the row is only staged; it commits or rolls back
with the change it records, so a failing insert surfaces at the caller's
commit and undoes that change too.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from edugate.domain.actors import Actor
from edugate.domain.models import AuditEvent


logger = logging.getLogger(__name__)

_SENSITIVE_KEY = re.compile(r"authorization|token|secret|password|cookie", re.IGNORECASE)
_REDACTED_VALUE = "[REDACTED]"

ACTOR_USER = "user"
ACTOR_SYSTEM = "system"
ACTOR_ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class RequestContext:
    # Client hints copied onto audit rows; never carries credentials.
    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request | None) -> "RequestContext":
        if request is None:
            return cls()
        return cls(
            request_id=getattr(request.state, "request_id", None)
            or request.headers.get("X-Request-Id"),
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )


def sanitize_metadata(value: Any) -> Any:
    # Scrub credential-looking keys at any depth; everything else passes through.
    if isinstance(value, dict):
        return {
            str(key): _REDACTED_VALUE if _SENSITIVE_KEY.search(str(key)) else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def actor_fields(actor: Actor | None, *, actor_type: str | None = None) -> dict[str, str | None]:
    """Map an actor onto the audit actor columns.

    ``None`` means the engine acted on its own (expiry on read, tier sync).
    """
    if actor is None:
        return {"actor_type": actor_type or ACTOR_SYSTEM, "actor_id": None, "actor_role": None}
    return {"actor_type": actor_type or ACTOR_USER, "actor_id": actor.user_id, "actor_role": actor.role}


async def record_event(
    session: AsyncSession,
    event_type: str,
    *,
    tenant_id: str | None,
    actor: Actor | None = None,
    actor_type: str | None = None,
    outcome: str = "success",
    resource_type: str | None = None,
    resource_id: str | None = None,
    context: RequestContext | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    commit: bool = False,
    best_effort: bool = True,
) -> None:
    context = context or RequestContext()
    event = AuditEvent(
        occurred_at=datetime.now(timezone.utc),
        tenant_id=tenant_id,
        **actor_fields(actor, actor_type=actor_type),
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=context.request_id,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    try:
        session.add(event)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        if not best_effort:
            raise
        logger.warning(
            "audit_event_write_failed event_type=%s request_id=%s",
            event_type,
            context.request_id,
            exc_info=exc,
        )
