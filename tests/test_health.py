"""Tests for health, metrics and admin endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer
from conftest import make_record

from dripgate.observability.health import (
    CheckResult,
    DatabaseHealthCheck,
    HealthCheck,
    HealthResult,
    HealthServer,
    HealthStatus,
)


class StaticCheck(HealthCheck):
    """Check with a fixed result."""

    def __init__(self, name: str, status: HealthStatus, message: str | None = None):
        self._name = name
        self._status = status
        self._message = message

    @property
    def name(self) -> str:
        return self._name

    async def check(self) -> CheckResult:
        return CheckResult(name=self._name, status=self._status, message=self._message)


class FailingHealthCheck(HealthCheck):
    """Health check that raises an exception."""

    @property
    def name(self) -> str:
        return "failing"

    async def check(self) -> CheckResult:
        raise RuntimeError("Check failed")


class TestHealthResult:
    """Tests for HealthResult serialization."""

    def test_ok_without_checks(self):
        assert HealthResult(status=HealthStatus.OK).to_dict() == {"status": "ok"}

    def test_with_checks(self):
        result = HealthResult(status=HealthStatus.NOT_READY, checks={"database": "unreachable"})
        assert result.to_dict() == {"status": "not_ready", "checks": {"database": "unreachable"}}


class TestDatabaseHealthCheck:
    """Tests for the claim ledger readiness check."""

    @pytest.mark.asyncio
    async def test_ok(self, store):
        result = await DatabaseHealthCheck(store).check()
        assert result == CheckResult("database", HealthStatus.OK)

    @pytest.mark.asyncio
    async def test_unreachable(self, store):
        store.ping = AsyncMock(side_effect=ConnectionRefusedError("refused"))

        result = await DatabaseHealthCheck(store).check()

        assert result.status == HealthStatus.ERROR
        assert result.message == "unreachable: ConnectionRefusedError"


@pytest.fixture
async def make_client():
    clients = []

    async def _make(server: HealthServer) -> TestClient:
        client = TestClient(TestServer(server.create_app()))
        await client.start_server()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


class TestHealthServer:
    """Tests for HealthServer endpoints."""

    @pytest.mark.asyncio
    async def test_health_endpoint_returns_ok(self, make_client):
        client = await make_client(HealthServer())
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_ready_no_checks(self, make_client):
        client = await make_client(HealthServer())
        resp = await client.get("/ready")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_ready_database_ok(self, make_client, store):
        server = HealthServer()
        server.add_check(DatabaseHealthCheck(store))
        client = await make_client(server)

        resp = await client.get("/ready")

        assert resp.status == 200
        assert await resp.json() == {"status": "ok", "checks": {"database": "ok"}}

    @pytest.mark.asyncio
    async def test_ready_check_fails(self, make_client):
        server = HealthServer()
        server.add_check(StaticCheck("database", HealthStatus.ERROR, "unreachable: OSError"))
        client = await make_client(server)

        resp = await client.get("/ready")

        assert resp.status == 503
        data = await resp.json()
        assert data["status"] == "not_ready"
        assert data["checks"]["database"] == "unreachable: OSError"

    @pytest.mark.asyncio
    async def test_ready_check_raises(self, make_client):
        server = HealthServer()
        server.add_check(FailingHealthCheck())
        client = await make_client(server)

        resp = await client.get("/ready")

        assert resp.status == 503
        assert (await resp.json())["checks"]["failing"] == "error: RuntimeError: Check failed"

    @pytest.mark.asyncio
    async def test_ready_service_not_running(self, make_client):
        service = MagicMock(is_running=False)
        client = await make_client(HealthServer(service=service))

        resp = await client.get("/ready")

        assert resp.status == 503
        assert await resp.json() == {"status": "not_ready", "checks": {"service": "not running"}}

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, make_client):
        client = await make_client(HealthServer())
        resp = await client.get("/metrics")
        assert resp.status == 200
        assert "text/plain" in resp.content_type
        assert "dripgate_claims_total" in await resp.text()

    @pytest.mark.asyncio
    async def test_admin_routes_need_service(self, make_client):
        client = await make_client(HealthServer())
        resp = await client.get("/admin/stats")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_admin_distributors(self, make_client):
        distributor = MagicMock()
        distributor.health.return_value = {"distributor_id": "community", "status": "ok"}
        service = MagicMock(is_running=True, distributors=[distributor])
        client = await make_client(HealthServer(service=service))

        resp = await client.get("/admin/distributors")

        assert await resp.json() == {
            "distributors": [{"distributor_id": "community", "status": "ok"}]
        }

    @pytest.mark.asyncio
    async def test_admin_stats(self, make_client, store):
        await store.record_claim(make_record(amount="0.05"))
        await store.record_claim(make_record(amount="0.10", wallet="0x" + "cd" * 20))
        service = MagicMock(is_running=True, store=store)
        client = await make_client(HealthServer(service=service))

        resp = await client.get("/admin/stats")

        data = await resp.json()
        assert data["total_claims"] == 2
        assert data["unique_wallets"] == 2
        assert data["total_amount"] == "0.15"


@pytest.mark.asyncio
async def test_health_server_lifecycle():
    """HealthServer start and stop lifecycle."""
    server = HealthServer(host="127.0.0.1", port=18080)

    await server.start()
    assert server._runner is not None
    assert server._site is not None

    await server.stop()

    assert server._runner is None
    assert server._site is None
