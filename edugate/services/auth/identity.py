from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any

import jwt

from edugate.core.config import get_settings
from edugate.core.errors import InvalidTokenError
from edugate.domain.actors import Actor, normalize_role


logger = logging.getLogger(__name__)

# Older login flows emitted camelCase school ids.
_TENANT_CLAIMS = ("tenant_id", "schoolId")


def parse_bearer_token(header_value: str | None) -> str:
    # Enforce Bearer token format for identity tokens.
    if not header_value:
        raise InvalidTokenError("Missing bearer token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise InvalidTokenError("Missing or invalid bearer token")
    return parts[1]


def actor_from_claims(claims: dict[str, Any]) -> Actor:
    # Build the request actor from verified claims; unknown roles are rejected.
    subject = claims.get("sub")
    if not subject:
        raise InvalidTokenError("Token subject missing")
    try:
        role = normalize_role(str(claims.get("role") or ""))
    except ValueError as exc:
        raise InvalidTokenError(str(exc)) from exc
    tenant_id = None
    for claim in _TENANT_CLAIMS:
        if claims.get(claim):
            tenant_id = str(claims[claim])
            break
    return Actor(
        user_id=str(subject),
        role=role,
        current_tenant_id=tenant_id,
        email=claims.get("email"),
    )


def decode_token(token: str) -> Actor:
    settings = get_settings()
    audience = settings.auth_jwt_audience or None
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=audience,
            leeway=settings.auth_jwt_leeway_seconds,
            options={"require": ["sub", "exp"], "verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError as exc:
        raise InvalidTokenError("Token expired") from exc
    except jwt.PyJWTError as exc:
        logger.info("identity_token_rejected error=%s", type(exc).__name__)
        raise InvalidTokenError("Invalid token") from exc
    return actor_from_claims(claims)


def issue_token(actor: Actor, *, expires_in: timedelta = timedelta(hours=8)) -> str:
    # Mint tokens for operator scripts and tests; production tokens come from the login service.
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": actor.user_id,
        "role": actor.role,
        "iat": now,
        "exp": now + expires_in,
    }
    if actor.current_tenant_id:
        claims["tenant_id"] = actor.current_tenant_id
    if actor.email:
        claims["email"] = actor.email
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience
    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)
