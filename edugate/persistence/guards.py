from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from edugate.core.config import get_settings
from edugate.core.errors import PersistenceUnavailableError


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Raised while building a query, before anything reaches the database.
    message: str


def require_tenant_id(tenant_id: str | None) -> None:
    # None and "" are both rejected while enforcement is on.
    settings = get_settings()
    if not settings.authz_require_tenant_predicate:
        return
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(model, tenant_id: str) -> object:
    # Every tenant-scoped WHERE clause goes through here.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id


async def guarded_lookup(awaitable: Awaitable[T], *, operation: str) -> T:
    """Run an authorization lookup under the configured deadline.

    Timeouts and driver errors become :class:`PersistenceUnavailableError` so
    every caller denies instead of defaulting to allow.
    """
    timeout_s = get_settings().lookup_timeout_ms / 1000.0
    try:
        if timeout_s > 0:
            return await asyncio.wait_for(awaitable, timeout=timeout_s)
        return await awaitable
    except asyncio.TimeoutError as exc:
        logger.error("authz_lookup_timeout operation=%s timeout_s=%s", operation, timeout_s)
        raise PersistenceUnavailableError(
            "Authorization data unavailable", operation=operation
        ) from exc
    except SQLAlchemyError as exc:
        logger.error("authz_lookup_failed operation=%s", operation, exc_info=exc)
        raise PersistenceUnavailableError(
            "Authorization data unavailable", operation=operation
        ) from exc
