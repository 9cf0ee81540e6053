from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from edugate.apps.api.deps import get_db, require_tool
from edugate.apps.api.main import create_app
from edugate.services.tenancy import TenantBinding
from edugate.tests.utils.seed import (
    auth_headers,
    create_admin,
    create_school,
    create_subscription,
    create_super_admin,
    create_tool_access,
    seed_catalog,
)


@pytest.fixture
async def client(session_factory):
    app = create_app()

    async def _override_db():
        async with session_factory() as db_session:
            yield db_session

    app.dependency_overrides[get_db] = _override_db

    @app.get("/v1/rollcall/ping")
    async def rollcall_ping(binding: TenantBinding = Depends(require_tool("rollcall"))) -> dict:
        return {"tenant_id": binding.tenant_id}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.mark.asyncio
async def test_health_uses_success_envelope(client) -> None:
    response = await client.get("/v1/health", headers={"X-Request-Id": "req-health"})
    assert response.status_code == 200
    body = response.json()
    assert body["data"] == {"status": "ok"}
    assert body["meta"]["request_id"] == "req-health"
    assert body["meta"]["api_version"] == "v1"
    assert body["meta"].get("tenant_id") is None
    assert response.headers["X-Request-Id"] == "req-health"


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(client) -> None:
    response = await client.get("/v1/subscriptions/credits")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_cross_tenant_header_is_forbidden(client, session) -> None:
    school_a = await create_school(session)
    school_b = await create_school(session)
    principal = await create_admin(session, school_a, title="Principal")

    response = await client.get(
        "/v1/subscriptions/credits",
        headers={**auth_headers(principal), "X-Tenant-Id": school_b},
    )
    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "CROSS_TENANT_ACCESS_DENIED"
    assert error["message"] == "You can only access data from your own school"


@pytest.mark.asyncio
async def test_conflicting_tenant_identifiers_are_forbidden(client, session) -> None:
    school_a = await create_school(session)
    school_b = await create_school(session)
    principal = await create_admin(session, school_a, title="Principal")

    response = await client.post(
        "/v1/subscriptions/credits/use",
        headers={**auth_headers(principal), "X-Tenant-Id": school_a},
        json={"amount": 1, "reason": "probe", "tenant_id": school_b},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "CROSS_TENANT_ACCESS_DENIED"


@pytest.mark.asyncio
async def test_principal_reads_subscription_summary(client, session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    principal = await create_admin(session, school, title="Principal")

    response = await client.get("/v1/subscriptions/me", headers=auth_headers(principal))
    assert response.status_code == 200
    assert response.json()["meta"]["tenant_id"] == school
    data = response.json()["data"]
    assert data["tenant_id"] == school
    assert data["tier"] == "FREE"
    assert data["ai_credits_remaining"] == 0
    tools = {tool["slug"]: tool for tool in data["tools"]}
    assert tools["bursary"]["has_access"] is True
    assert tools["socrates"]["reason"] == "not_subscribed"


@pytest.mark.asyncio
async def test_admin_without_grant_is_denied_then_allowed(client, session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    principal = await create_admin(session, school, title="Principal")
    bursar = await create_admin(session, school, title="Bursar")

    denied = await client.get("/v1/subscriptions/me", headers=auth_headers(bursar))
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "PERMISSION_DENIED"

    assigned = await client.put(
        f"/v1/permissions/staff/{bursar.user_id}",
        headers=auth_headers(principal),
        json={"permissions": [{"resource": "subscriptions", "type": "read"}]},
    )
    assert assigned.status_code == 200
    assert assigned.json()["data"]["permissions"] == [{"resource": "SUBSCRIPTIONS", "type": "READ"}]

    allowed = await client.get("/v1/subscriptions/me", headers=auth_headers(bursar))
    assert allowed.status_code == 200

    check = await client.get(
        "/v1/permissions/check",
        params={"resource": "SUBSCRIPTIONS", "type": "WRITE"},
        headers=auth_headers(bursar),
    )
    assert check.json()["data"] == {"resource": "SUBSCRIPTIONS", "type": "WRITE", "allowed": False}


@pytest.mark.asyncio
async def test_principal_permissions_cannot_be_edited(client, session) -> None:
    school = await create_school(session)
    principal = await create_admin(session, school, title="Principal")

    response = await client.put(
        f"/v1/permissions/staff/{principal.user_id}",
        headers=auth_headers(principal),
        json={"permissions": []},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PRINCIPAL_IMMUTABLE"


@pytest.mark.asyncio
async def test_insufficient_credits_return_payment_required(client, session) -> None:
    school = await create_school(session)
    principal = await create_admin(session, school, title="Principal")
    await create_subscription(session, school, tier="STARTER", ai_credits=10, ai_credits_used=8)

    response = await client.post(
        "/v1/subscriptions/credits/use",
        headers=auth_headers(principal),
        json={"amount": 5, "reason": "socrates.marking"},
    )
    assert response.status_code == 402
    error = response.json()["error"]
    assert error["code"] == "INSUFFICIENT_CREDITS"
    assert error["message"] == "Insufficient AI credits. Required: 5, Available: 2, Shortfall: 3"
    assert error["details"] == {"required": 5, "available": 2}


@pytest.mark.asyncio
async def test_credit_spend_requires_tool_access(client, session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    principal = await create_admin(session, school, title="Principal")
    await create_subscription(session, school, tier="STARTER")

    response = await client.post(
        "/v1/subscriptions/credits/use",
        headers=auth_headers(principal),
        json={"amount": 1, "reason": "socrates.marking", "tool_slug": "socrates"},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "TOOL_NOT_SUBSCRIBED"


@pytest.mark.asyncio
async def test_tool_gate_dependency(client, session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    principal = await create_admin(session, school, title="Principal")
    operator = await create_super_admin(session)

    denied = await client.get("/v1/rollcall/ping", headers=auth_headers(principal))
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "TOOL_NOT_SUBSCRIBED"

    await create_tool_access(
        session,
        school,
        "rollcall",
        status="TRIAL",
        trial_ends_at=datetime.now(timezone.utc) + timedelta(days=5),
    )
    allowed = await client.get("/v1/rollcall/ping", headers=auth_headers(principal))
    assert allowed.status_code == 200
    assert allowed.json() == {"tenant_id": school}

    # Operators act on behalf of any school without a subscription check.
    other_school = await create_school(session)
    bypass = await client.get(
        "/v1/rollcall/ping",
        headers={**auth_headers(operator), "X-Tenant-Id": other_school},
    )
    assert bypass.status_code == 200


@pytest.mark.asyncio
async def test_super_admin_must_name_a_school(client, session) -> None:
    operator = await create_super_admin(session)
    response = await client.get("/v1/subscriptions/credits", headers=auth_headers(operator))
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "TENANT_REQUIRED"


@pytest.mark.asyncio
async def test_super_admin_changes_tier(client, session) -> None:
    school = await create_school(session)
    await seed_catalog(session)
    operator = await create_super_admin(session)
    principal = await create_admin(session, school, title="Principal")

    response = await client.put(
        f"/v1/admin/schools/{school}/tier",
        headers=auth_headers(operator),
        json={"tier": "enterprise"},
    )
    assert response.status_code == 200
    assert response.json()["meta"]["tenant_id"] == school
    data = response.json()["data"]
    assert data["tier"] == "ENTERPRISE"
    assert data["ai_credits"] == -1

    spend = await client.post(
        "/v1/subscriptions/credits/use",
        headers=auth_headers(principal),
        json={"amount": 250, "reason": "socrates.bulk", "tool_slug": "socrates"},
    )
    assert spend.status_code == 200
    assert spend.json()["data"]["remaining"] is None

    unknown = await client.put(
        f"/v1/admin/schools/{school}/tier",
        headers=auth_headers(operator),
        json={"tier": "PLATINUM"},
    )
    assert unknown.status_code == 400
    assert unknown.json()["error"]["code"] == "UNKNOWN_TIER"


@pytest.mark.asyncio
async def test_admin_routes_require_super_admin(client, session) -> None:
    school = await create_school(session)
    principal = await create_admin(session, school, title="Principal")

    response = await client.put(
        f"/v1/admin/schools/{school}/tier",
        headers=auth_headers(principal),
        json={"tier": "ENTERPRISE"},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"


@pytest.mark.asyncio
async def test_admin_limit_endpoint(client, session) -> None:
    school = await create_school(session)
    principal = await create_admin(session, school, title="Principal")
    await create_subscription(session, school, tier="FREE", max_admins=1)

    response = await client.get("/v1/permissions/admin-limit", headers=auth_headers(principal))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["can_add"] is False
    assert data["current_count"] == 1
    assert data["max_allowed"] == 1
