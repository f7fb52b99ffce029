"""Tests for the public claim server."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer
from conftest import WALLET
from pydantic import SecretStr

from dripgate import __version__
from dripgate.api.server import ClaimServer
from dripgate.errors import ErrorKind
from dripgate.faucet.distributor import ClaimResult, Distributor
from dripgate.faucet.resolver import WalletMode, WalletResolver
from dripgate.faucet.upstream import ClaimSubmissionResult
from dripgate.faucet.validators.once_only import OnceOnlyValidator

PATH = "/claim/community"


class FakeService:
    """Minimal stand-in for FaucetService routing."""

    def __init__(self, distributors):
        self._distributors = {d.path: d for d in distributors}

    @property
    def distributors(self):
        return list(self._distributors.values())

    def get_distributor(self, path):
        return self._distributors.get(path.rstrip("/"))


@pytest.fixture
def upstream():
    client = MagicMock()
    client.submit_claim = AsyncMock(
        return_value=ClaimSubmissionResult(success=True, transaction_id="tx1")
    )
    return client


@pytest.fixture
def distributor(upstream, store, clock):
    return Distributor(
        distributor_id="community",
        name="Community",
        path=PATH,
        upstream_api_key=SecretStr("partner-key"),
        payout_amount=Decimal("0.05"),
        resolver=WalletResolver(WalletMode.DIRECT, "community"),
        validators=[OnceOnlyValidator(store, "community")],
        upstream=upstream,
        store=store,
        clock=clock,
    )


@pytest.fixture
async def make_client():
    clients = []

    async def _make(*distributors):
        server = ClaimServer(FakeService(distributors))
        client = TestClient(TestServer(server.create_app()))
        await client.start_server()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


class TestClaimServer:
    """Tests for routing and HTTP status mapping."""

    @pytest.mark.asyncio
    async def test_index(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.get("/")

        assert resp.status == 200
        assert await resp.json() == {
            "service": "dripgate",
            "version": __version__,
            "endpoints": [PATH],
        }

    @pytest.mark.asyncio
    async def test_claim_success(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.post(
            PATH,
            json={"walletAddress": WALLET, "visitorId": "v-1"},
            headers={"x-request-id": "req-abc"},
        )

        assert resp.status == 200
        assert await resp.json() == {"success": True, "transactionId": "tx1", "amount": "0.05"}
        assert resp.headers["x-request-id"] == "req-abc"

    @pytest.mark.asyncio
    async def test_trailing_slash_routes(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.post(PATH + "/", json={"walletAddress": WALLET, "visitorId": "v"})

        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_generates_request_id(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.post(PATH, json={"walletAddress": WALLET, "visitorId": "v"})

        assert len(resp.headers["x-request-id"]) == 32

    @pytest.mark.asyncio
    async def test_duplicate_claim_is_429(self, make_client, distributor, upstream):
        client = await make_client(distributor)
        body = {"walletAddress": WALLET, "visitorId": "v-1"}

        await client.post(PATH, json=body)
        resp = await client.post(PATH, json=body)

        assert resp.status == 429
        assert (await resp.json())["success"] is False
        assert upstream.submit_claim.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_address_is_400(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.post(PATH, json={"walletAddress": "0x123", "visitorId": "v"})

        assert resp.status == 400
        assert await resp.json() == {
            "success": False,
            "error": "Invalid address format: 0x123",
        }

    @pytest.mark.asyncio
    async def test_invalid_json(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.post(
            PATH, data="{not json", headers={"content-type": "application/json"}
        )

        assert resp.status == 400
        assert await resp.json() == {"success": False, "error": "Invalid JSON body"}

    @pytest.mark.asyncio
    async def test_unknown_path(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.post("/claim/nope", json={})

        assert resp.status == 404
        assert await resp.json() == {"error": "Endpoint not found", "available": [PATH]}

    @pytest.mark.asyncio
    async def test_wrong_method(self, make_client, distributor):
        client = await make_client(distributor)

        resp = await client.get(PATH)

        assert resp.status == 405
        assert resp.headers["Allow"] == "POST"

    @pytest.mark.parametrize(
        "kind,status",
        [
            (ErrorKind.AUTHORIZATION, 401),
            (ErrorKind.UPSTREAM_UNAVAILABLE, 503),
            (ErrorKind.UPSTREAM, 400),
        ],
    )
    @pytest.mark.asyncio
    async def test_failure_statuses(self, make_client, kind, status):
        fake = MagicMock()
        fake.path = PATH
        fake.process_claim = AsyncMock(
            return_value=ClaimResult(success=False, error="reason", error_kind=kind)
        )
        client = await make_client(fake)

        resp = await client.post(PATH, json={"visitorId": "v"})

        assert resp.status == status
        assert await resp.json() == {"success": False, "error": "reason"}

    @pytest.mark.asyncio
    async def test_infrastructure_error_hidden(self, make_client):
        fake = MagicMock()
        fake.path = PATH
        fake.process_claim = AsyncMock(
            return_value=ClaimResult(
                success=False,
                error="connection refused to db:5432",
                error_kind=ErrorKind.INFRASTRUCTURE,
            )
        )
        client = await make_client(fake)

        resp = await client.post(PATH, json={"visitorId": "v"})

        assert resp.status == 500
        assert await resp.json() == {"success": False, "error": "Internal server error"}
