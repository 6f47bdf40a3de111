from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from domainpilot.apps.api.main import create_app
from domainpilot.domain.state import DomainStatus
from domainpilot.services.scheduler import FakeClock
from domainpilot.tests.utils.tenants import move_to_status


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(auto_advance=False)


@asynccontextmanager
async def _client(services) -> AsyncIterator[AsyncClient]:
    app = create_app(services, resume_sessions=False)
    # ASGITransport does not drive the lifespan, so enter it explicitly.
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.mark.asyncio
async def test_request_and_read_domain(services, tenant_id) -> None:
    async with _client(services) as client:
        created = await client.put(
            f"/v1/tenants/{tenant_id}/domain",
            json={"hostname": "Shop.Example.com", "canonical_preference": "apex"},
        )
        assert created.status_code == 200
        body = created.json()
        assert body["meta"]["api_version"] == "v1"
        data = body["data"]
        assert data["custom_domain"] == "shop.example.com"
        assert data["status"] == "monitoring"
        assert data["session"]["hostname"] == "shop.example.com"
        assert data["instructions"]["canonical_domain"] == "example.com"

        fetched = await client.get(f"/v1/tenants/{tenant_id}/domain")
        assert fetched.status_code == 200
        assert fetched.json()["data"]["status"] == "monitoring"

        health = await client.get("/health")
        assert health.status_code == 200
        assert health.json() == {"status": "ok", "active_sessions": 1}


@pytest.mark.asyncio
async def test_invalid_hostname_is_rejected(services, tenant_id) -> None:
    async with _client(services) as client:
        response = await client.put(f"/v1/tenants/{tenant_id}/domain", json={"hostname": "app.domainpilot.app"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "DOMAIN_CONFIG_INVALID"

        extra = await client.put(
            f"/v1/tenants/{tenant_id}/domain", json={"hostname": "example.com", "tenant_id": "other"}
        )
        assert extra.status_code == 422
        assert extra.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_unknown_tenant_returns_404(services) -> None:
    async with _client(services) as client:
        response = await client.get("/v1/tenants/missing/domain")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TENANT_NOT_FOUND"


@pytest.mark.asyncio
async def test_restart_requires_timed_out(services, tenant_id) -> None:
    async with _client(services) as client:
        await client.put(f"/v1/tenants/{tenant_id}/domain", json={"hostname": "example.com"})

        conflict = await client.post(f"/v1/tenants/{tenant_id}/domain/restart")
        assert conflict.status_code == 409
        error = conflict.json()["error"]
        assert error["code"] == "DOMAIN_TRANSITION_INVALID"
        assert error["details"]["current_status"] == "monitoring"


@pytest.mark.asyncio
async def test_restart_after_timeout(services, tenant_id) -> None:
    await move_to_status(services.store, tenant_id, DomainStatus.TIMED_OUT)
    async with _client(services) as client:
        response = await client.post(f"/v1/tenants/{tenant_id}/domain/restart")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "monitoring"


@pytest.mark.asyncio
async def test_check_and_propagation(services, tenant_id, resolver) -> None:
    await move_to_status(services.store, tenant_id, DomainStatus.TIMED_OUT)
    resolver.a_records["example.com"] = ["216.24.57.1"]
    async with _client(services) as client:
        checked = await client.post(f"/v1/tenants/{tenant_id}/domain/check")
        assert checked.status_code == 200
        data = checked.json()["data"]
        # DNS alone is not enough; registrar and health are still unverified.
        assert data["status"] == "timed_out"
        assert data["verdict"]["reason"] == "registrar_unverified"
        assert data["check_attempts"] == 1

        propagation = await client.get(f"/v1/tenants/{tenant_id}/domain/propagation")
        assert propagation.status_code == 200
        assert propagation.json()["data"]["propagation"]["detail"] == "resolvers_verified:1/1"


@pytest.mark.asyncio
async def test_remove_and_force_activate(services, tenant_id, notifier) -> None:
    async with _client(services) as client:
        await client.put(f"/v1/tenants/{tenant_id}/domain", json={"hostname": "example.com"})

        activated = await client.post(f"/v1/admin/tenants/{tenant_id}/domain/activate")
        assert activated.status_code == 200
        assert activated.json()["data"]["activated"] is True
        assert activated.json()["data"]["status"] == "verified_active"
        assert len(notifier.events("activation_success")) == 1

        removed = await client.delete(f"/v1/tenants/{tenant_id}/domain")
        assert removed.status_code == 200
        assert removed.json()["data"] == {"tenant_id": tenant_id, "status": "none"}

        status = await client.get(f"/v1/tenants/{tenant_id}/domain")
        assert status.json()["data"]["custom_domain"] is None

        again = await client.post(f"/v1/admin/tenants/{tenant_id}/domain/activate")
        assert again.status_code == 409
