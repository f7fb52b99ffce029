"""Tests for claim context folding and validation outcomes."""

import dataclasses

import pytest
from conftest import OTHER_WALLET, WALLET

from dripgate.errors import ErrorKind
from dripgate.faucet.context import ClaimContext, ValidationOutcome


@pytest.fixture
def context():
    return ClaimContext(visitor_fingerprint="v-1", client_ip="1.2.3.4", distributor_id="d1")


class TestClaimContext:
    """Tests for immutable context folding."""

    def test_frozen(self, context):
        with pytest.raises(dataclasses.FrozenInstanceError):
            context.wallet_address = WALLET

    def test_default_mappings_are_read_only_and_empty(self, context):
        """Fresh contexts and outcomes start with empty, immutable mappings."""
        outcome = ValidationOutcome(success=True)

        assert context.attachments == {}
        assert context.provenance == {}
        assert outcome.attachments == {}
        with pytest.raises(TypeError):
            context.attachments["user_id"] = "u-1"
        with pytest.raises(TypeError):
            outcome.attachments["user_id"] = "u-1"

    def test_with_patch_returns_new_context(self, context):
        """Folding a patch leaves the original untouched."""
        patched = context.with_patch({"user_id": "u-1"}, "identity-proof")
        assert patched is not context
        assert context.get("user_id") is None
        assert patched.get("user_id") == "u-1"
        assert patched.provenance == {"user_id": "identity-proof"}

    def test_empty_patch_is_noop(self, context):
        assert context.with_patch({}, "once-only") is context

    def test_wallet_address_patch_is_lowercased(self, context):
        """A wallet_address attachment becomes the lowercase claimant address."""
        patched = context.with_patch({"wallet_address": WALLET.upper().replace("0X", "0x")}, "id")
        assert patched.claimant_address == WALLET

    def test_later_stage_wins(self, context):
        first = context.with_patch({"note": "a"}, "first")
        second = first.with_patch({"note": "b"}, "second")
        assert second.get("note") == "b"
        assert second.provenance["note"] == "second"

    def test_payout_prefers_embedded_wallet(self, context):
        """Embedded wallet receives the payout; the claimant address is the rate-limit key."""
        patched = context.with_patch(
            {"embedded_wallet": OTHER_WALLET, "wallet_address": WALLET}, "identity-proof"
        )
        assert patched.payout_address == OTHER_WALLET
        assert patched.claimant_address == WALLET

    def test_payout_falls_back_to_claimant(self, context):
        direct = dataclasses.replace(context, wallet_address=WALLET)
        assert direct.payout_address == WALLET


class TestValidationOutcome:
    """Tests for outcome constructors."""

    def test_ok(self):
        outcome = ValidationOutcome.ok(nft_balance=2)
        assert outcome.success
        assert outcome.attachments == {"nft_balance": 2}
        assert outcome.error_message is None

    def test_fail_default_kind(self):
        outcome = ValidationOutcome.fail("nope")
        assert not outcome.success
        assert outcome.error_message == "nope"
        assert outcome.error_kind == ErrorKind.VALIDATION
        assert outcome.attachments == {}

    def test_fail_with_kind(self):
        outcome = ValidationOutcome.fail("slow down", ErrorKind.RATE_LIMIT)
        assert outcome.error_kind == ErrorKind.RATE_LIMIT
