"""Tests for the once-only validator."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import WALLET, make_record

from dripgate.errors import ErrorKind
from dripgate.faucet.context import ClaimContext
from dripgate.faucet.validators.once_only import OnceOnlyValidator


def claim_context(wallet: str | None = WALLET) -> ClaimContext:
    return ClaimContext(
        visitor_fingerprint="v-1",
        client_ip="1.2.3.4",
        distributor_id="community",
        wallet_address=wallet,
    )


class TestOnceOnlyValidator:
    """Tests for lifetime single-claim enforcement."""

    @pytest.mark.asyncio
    async def test_new_wallet_passes(self, store):
        outcome = await OnceOnlyValidator(store, "community").validate(claim_context())
        assert outcome.success
        assert outcome.attachments == {"claim_status": "new"}

    @pytest.mark.asyncio
    async def test_any_prior_claim_fails(self, store):
        """A claim from a year ago still blocks."""
        await store.record_claim(make_record(age=timedelta(days=365)))

        outcome = await OnceOnlyValidator(store, "community").validate(claim_context())

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.RATE_LIMIT
        assert outcome.error_message == (
            "This wallet has already claimed from this distributor. "
            "Only one claim is allowed per wallet."
        )

    @pytest.mark.asyncio
    async def test_claim_on_other_distributor_ignored(self, store):
        await store.record_claim(make_record(distributor_id="other"))
        outcome = await OnceOnlyValidator(store, "community").validate(claim_context())
        assert outcome.success

    @pytest.mark.asyncio
    async def test_missing_address(self, store):
        outcome = await OnceOnlyValidator(store, "community").validate(claim_context(None))
        assert outcome.error_message == "No wallet address available for once-only validation"

    @pytest.mark.asyncio
    async def test_store_error_is_infrastructure(self):
        store = AsyncMock()
        store.has_claim.side_effect = TimeoutError("pool exhausted")

        outcome = await OnceOnlyValidator(store, "community").validate(claim_context())

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.INFRASTRUCTURE
