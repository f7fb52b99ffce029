"""Tests for the validator registry and builders."""

from unittest.mock import MagicMock

import pytest

from dripgate.errors import ConfigurationError
from dripgate.faucet.ledger import MemoryClaimStore
from dripgate.faucet.validators import (
    VALIDATOR_REGISTRY,
    IdentityProofValidator,
    NftOwnershipValidator,
    OnceOnlyValidator,
    TimeWindowConfig,
    TimeWindowValidator,
    Validator,
    ValidatorConfig,
    ValidatorDependencies,
    build_validator,
    parse_validator_config,
    register_validator,
)


@pytest.fixture
def deps():
    return ValidatorDependencies(distributor_id="community", store=MemoryClaimStore())


class TestRegistry:
    """Tests for registration and lookup."""

    def test_builtin_types_registered(self):
        assert {"identity-proof", "nft-ownership", "once-only", "time-window"} <= set(
            VALIDATOR_REGISTRY
        )

    def test_duplicate_registration_rejected(self):
        with pytest.raises(ValueError, match="already registered"):
            register_validator("once-only", ValidatorConfig)(lambda config, deps: None)

    def test_custom_validator(self, deps, monkeypatch):
        """New variants plug in without touching the distributor."""
        monkeypatch.setattr(
            "dripgate.faucet.validators.base.VALIDATOR_REGISTRY", dict(VALIDATOR_REGISTRY)
        )

        class AlwaysOk(Validator):
            name = "always-ok"

            async def validate(self, context):
                raise NotImplementedError

        register_validator("always-ok", ValidatorConfig)(lambda config, deps: AlwaysOk())

        assert isinstance(build_validator({"type": "always-ok"}, deps), AlwaysOk)


class TestParseValidatorConfig:
    """Tests for config entry parsing."""

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="Unknown validator type 'captcha'"):
            parse_validator_config({"type": "captcha"})

    def test_not_an_object(self):
        with pytest.raises(ConfigurationError, match="must be an object"):
            parse_validator_config(["once-only"])

    def test_schema_errors_wrapped(self):
        with pytest.raises(ConfigurationError, match="Invalid config for validator 'time-window'"):
            parse_validator_config({"type": "time-window", "max_claims_per_window": 0})

    def test_extra_fields_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_validator_config({"type": "once-only", "window": 5})

    def test_parsed_config_passthrough(self):
        config = TimeWindowConfig(period="day")
        assert parse_validator_config(config) is config


class TestBuildValidator:
    """Tests for building validators from config entries."""

    def test_once_only(self, deps):
        assert isinstance(build_validator({"type": "once-only"}, deps), OnceOnlyValidator)

    def test_time_window(self, deps):
        validator = build_validator({"type": "time-window", "period": "week"}, deps)
        assert isinstance(validator, TimeWindowValidator)

    def test_nft_requires_chain_client(self, deps):
        with pytest.raises(ConfigurationError, match="chain client"):
            build_validator(
                {"type": "nft-ownership", "contract_address": "0x" + "ef" * 20, "token_id": 1},
                deps,
            )

    def test_nft_uses_configured_rpc(self):
        factory = MagicMock()
        deps = ValidatorDependencies(
            distributor_id="holders", store=MemoryClaimStore(), chain_client=factory
        )

        validator = build_validator(
            {
                "type": "nft-ownership",
                "contract_address": "0x" + "ef" * 20,
                "token_id": 1,
                "rpc_url": "https://rpc.example",
            },
            deps,
        )

        assert isinstance(validator, NftOwnershipValidator)
        factory.assert_called_once_with("https://rpc.example/")

    def test_identity_requires_key_sets(self, deps):
        with pytest.raises(ConfigurationError, match="key-set cache"):
            build_validator(
                {"type": "identity-proof", "jwks_url": "https://idp.example/jwks.json"}, deps
            )

    def test_identity(self):
        deps = ValidatorDependencies(
            distributor_id="identity", store=MemoryClaimStore(), key_sets=MagicMock()
        )
        validator = build_validator(
            {"type": "identity-proof", "jwks_url": "https://idp.example/jwks.json"}, deps
        )
        assert isinstance(validator, IdentityProofValidator)
