"""Tests for the claim ledger (in-memory and SQL stores)."""

from datetime import timedelta
from decimal import Decimal

import pytest
from conftest import NOW, OTHER_WALLET, WALLET, make_record

from dripgate.faucet.ledger import MemoryClaimStore, SQLClaimStore


@pytest.fixture(params=["memory", "sqlite"])
async def ledger(request, tmp_path):
    """Each test runs against both store implementations."""
    if request.param == "memory":
        store = MemoryClaimStore()
    else:
        store = SQLClaimStore(f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}")
    await store.initialize()
    yield store
    await store.close()


class TestRecordClaim:
    """Tests for appending records."""

    @pytest.mark.asyncio
    async def test_assigns_id_and_lowercases(self, ledger):
        mixed_case = WALLET.upper().replace("0X", "0x")
        stored = await ledger.record_claim(
            make_record(wallet=mixed_case, embedded_wallet=OTHER_WALLET.upper())
        )
        assert stored.id is not None
        assert stored.wallet_address == WALLET
        assert stored.embedded_wallet == OTHER_WALLET

    @pytest.mark.asyncio
    async def test_null_transfer_id_round_trips(self, ledger):
        await ledger.record_claim(make_record(upstream_tx_id="tx1", token_transfer_tx_id=None))
        [record] = await ledger.claims_for_wallet(WALLET)
        assert record.upstream_tx_id == "tx1"
        assert record.token_transfer_tx_id is None
        assert record.amount == Decimal("1")
        assert record.created_at == NOW


class TestLookups:
    """Tests for (wallet, distributor) reads."""

    @pytest.mark.asyncio
    async def test_has_claim_is_case_insensitive(self, ledger):
        await ledger.record_claim(make_record())
        assert await ledger.has_claim(WALLET.upper().replace("0X", "0x"), "community")
        assert not await ledger.has_claim(WALLET, "other")
        assert not await ledger.has_claim(OTHER_WALLET, "community")

    @pytest.mark.asyncio
    async def test_claims_since_newest_first(self, ledger):
        for hours in (75, 25, 50, 200):
            await ledger.record_claim(
                make_record(age=timedelta(hours=hours), upstream_tx_id=f"tx-{hours}")
            )
        records = await ledger.claims_since(WALLET, "community", NOW - timedelta(hours=168))
        assert [r.upstream_tx_id for r in records] == ["tx-25", "tx-50", "tx-75"]

    @pytest.mark.asyncio
    async def test_claims_for_wallet_filters_distributor(self, ledger):
        await ledger.record_claim(make_record(distributor_id="a"))
        await ledger.record_claim(make_record(distributor_id="b", age=timedelta(hours=1)))
        assert len(await ledger.claims_for_wallet(WALLET)) == 2
        only_b = await ledger.claims_for_wallet(WALLET, "b")
        assert [r.distributor_id for r in only_b] == ["b"]

    @pytest.mark.asyncio
    async def test_last_claim(self, ledger):
        assert await ledger.last_claim(WALLET, "community") is None
        await ledger.record_claim(make_record(age=timedelta(hours=5), upstream_tx_id="old"))
        await ledger.record_claim(make_record(age=timedelta(hours=1), upstream_tx_id="new"))
        last = await ledger.last_claim(WALLET, "community")
        assert last.upstream_tx_id == "new"

    @pytest.mark.asyncio
    async def test_claims_between(self, ledger):
        await ledger.record_claim(make_record(age=timedelta(hours=30)))
        await ledger.record_claim(make_record(wallet=OTHER_WALLET, age=timedelta(hours=2)))
        records = await ledger.claims_between(NOW - timedelta(hours=24), NOW + timedelta(seconds=1))
        assert [r.wallet_address for r in records] == [OTHER_WALLET]


class TestStats:
    """Tests for aggregate figures."""

    @pytest.mark.asyncio
    async def test_empty(self, ledger):
        stats = await ledger.stats(now=NOW)
        assert stats.total_claims == 0
        assert stats.unique_wallets == 0
        assert stats.total_amount == Decimal("0")
        assert stats.claims_24h == 0

    @pytest.mark.asyncio
    async def test_totals(self, ledger):
        await ledger.record_claim(make_record(amount="0.5", age=timedelta(hours=48)))
        await ledger.record_claim(make_record(amount="0.25", age=timedelta(hours=1)))
        await ledger.record_claim(
            make_record(wallet=OTHER_WALLET, amount="1", age=timedelta(hours=2))
        )
        stats = await ledger.stats(now=NOW)
        assert stats.total_claims == 3
        assert stats.unique_wallets == 2
        assert stats.total_amount == Decimal("1.75")
        assert stats.claims_24h == 2

    @pytest.mark.asyncio
    async def test_fractional_amounts_are_exact(self, ledger):
        """Amounts without an exact binary form are stored and summed exactly."""
        await ledger.record_claim(make_record(amount="0.05"))
        await ledger.record_claim(make_record(amount="0.05", distributor_id="other"))

        stats = await ledger.stats(now=NOW)
        [record, _] = await ledger.claims_for_wallet(WALLET)

        assert stats.total_amount == Decimal("0.10")
        assert record.amount == Decimal("0.05")


class TestSQLClaimStore:
    """SQL-specific behavior."""

    def test_sqlite_skips_pool_sizing(self):
        assert SQLClaimStore._pool_kwargs("sqlite+aiosqlite://", 10, 5, 10.0) == {}

    def test_postgres_pool_sizing(self):
        kwargs = SQLClaimStore._pool_kwargs("postgresql+asyncpg://u@h/db", 20, 3, 2.5)
        assert kwargs["pool_size"] == 20
        assert kwargs["max_overflow"] == 3
        assert kwargs["pool_timeout"] == 2.5

    @pytest.mark.asyncio
    async def test_ping(self, tmp_path):
        store = SQLClaimStore(f"sqlite+aiosqlite:///{tmp_path / 'ping.db'}")
        try:
            await store.ping()
        finally:
            await store.close()
