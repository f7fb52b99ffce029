"""Distributor definitions loaded from the distributors file.

File layout::

    {
      "distributors": [
        {
          "id": "community",
          "name": "Community faucet",
          "path": "/claim/community",
          "upstream_api_key": "...",
          "payout_amount": "0.05",
          "wallet_mode": "identity-token",
          "validators": [
            {"type": "identity-proof", "jwks_url": "https://..."},
            {"type": "time-window", "period": "week", "max_claims_per_window": 3,
             "cooldown_hours": 24}
          ],
          "token_transfer": {"token_address": "0x...", "amount": "10"}
        }
      ]
    }

Every entry is validated eagerly; any problem is a ``ConfigurationError``.
"""

import json
import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from dripgate.blockchain.client import DEFAULT_GAS_LIMIT, ChainClientPool
from dripgate.blockchain.transfer import TokenTransferService
from dripgate.core.addresses import validate_address
from dripgate.core.jwks import KeySetCache
from dripgate.errors import ConfigurationError

from .distributor import Distributor
from .ledger import ClaimStore
from .resolver import WalletMode, WalletResolver
from .upstream import FaucetApiClient
from .validators import (
    ValidatorConfig,
    ValidatorDependencies,
    build_validator,
    parse_validator_config,
)
from .validators.base import utc_now

logger = logging.getLogger(__name__)

IDENTITY_VALIDATOR = "identity-proof"


class TokenTransferDefinition(BaseModel):
    """Optional secondary ERC-20 payout."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    token_address: str
    amount: Decimal = Field(gt=0)
    rpc_url: AnyHttpUrl | None = None
    chain_id: int | None = Field(default=None, gt=0)
    gas_limit: int = Field(default=DEFAULT_GAS_LIMIT, gt=21000)

    @field_validator("token_address")
    @classmethod
    def _check_token_address(cls, v: str) -> str:
        if not validate_address(v):
            raise ValueError(f"Invalid token address: {v}")
        return v


class DistributorDefinition(BaseModel):
    """One distributor entry."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    name: str = Field(min_length=1)
    path: str
    upstream_api_key: SecretStr
    payout_amount: Decimal = Field(gt=0)
    wallet_mode: WalletMode | None = None
    validators: list[ValidatorConfig]
    token_transfer: TokenTransferDefinition | None = None

    @field_validator("path")
    @classmethod
    def _check_path(cls, v: str) -> str:
        if not v.startswith("/") or v == "/":
            raise ValueError("path must start with '/' and not be the root path")
        return v.rstrip("/")

    @field_validator("validators", mode="before")
    @classmethod
    def _parse_validators(cls, v: Any) -> list[ValidatorConfig]:
        if not isinstance(v, list):
            raise ValueError("validators must be a list")
        return [parse_validator_config(entry) for entry in v]

    @model_validator(mode="after")
    def _check_wallet_mode(self) -> "DistributorDefinition":
        if not self.validators:
            raise ConfigurationError(f"Distributor {self.id!r} has no validators")

        has_identity = any(v.type == IDENTITY_VALIDATOR for v in self.validators)
        if self.wallet_mode is None:
            raise ConfigurationError(
                f"Distributor {self.id!r} must set wallet_mode "
                f"({WalletMode.IDENTITY_TOKEN.value!r} or {WalletMode.DIRECT.value!r})"
            )
        if self.wallet_mode == WalletMode.DIRECT and has_identity:
            raise ConfigurationError(
                f"Distributor {self.id!r} configures both direct wallet mode and an "
                "identity-proof validator"
            )
        if self.wallet_mode == WalletMode.IDENTITY_TOKEN and not has_identity:
            raise ConfigurationError(
                f"Distributor {self.id!r} uses identity-token mode without an "
                "identity-proof validator"
            )
        return self

    @property
    def validator_types(self) -> list[str]:
        return [v.type for v in self.validators]

    @property
    def needs_chain(self) -> bool:
        return self.token_transfer is not None or "nft-ownership" in self.validator_types


class DistributorsFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    distributors: list[DistributorDefinition] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_unique(self) -> "DistributorsFile":
        for attr in ("id", "path"):
            seen: set[str] = set()
            for definition in self.distributors:
                value = getattr(definition, attr)
                if value in seen:
                    raise ConfigurationError(f"Duplicate distributor {attr}: {value}")
                seen.add(value)
        return self


def parse_definitions(data: Any) -> list[DistributorDefinition]:
    """Validate decoded distributor-file JSON.

    Raises
    ------
    ConfigurationError
        If any entry is invalid.
    """
    try:
        return DistributorsFile.model_validate(data).distributors
    except ValidationError as e:
        raise ConfigurationError(f"Invalid distributors file: {e}") from e


def load_definitions(path: str | Path) -> list[DistributorDefinition]:
    """Read and validate the distributors file at ``path``.

    Raises
    ------
    ConfigurationError
        If the file is missing, is not JSON, or fails validation.
    """
    file_path = Path(path).expanduser()
    try:
        raw = file_path.read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read distributors file {file_path}: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Distributors file {file_path} is not valid JSON: {e}") from e

    definitions = parse_definitions(data)
    logger.info(
        "Distributor definitions loaded",
        extra={"path": str(file_path), "distributors": [d.id for d in definitions]},
    )
    return definitions


def build_distributor(
    definition: DistributorDefinition,
    *,
    upstream: FaucetApiClient,
    store: ClaimStore,
    session: aiohttp.ClientSession | None = None,
    key_sets: KeySetCache | None = None,
    chain_clients: ChainClientPool | None = None,
    receipt_timeout: float = 120.0,
    clock: Callable[[], datetime] = utc_now,
) -> Distributor:
    """Construct a ``Distributor`` and its validators from a definition.

    Raises
    ------
    ConfigurationError
        If a validator or the token transfer cannot be built.
    """
    deps = ValidatorDependencies(
        distributor_id=definition.id,
        store=store,
        session=session,
        key_sets=key_sets,
        chain_client=chain_clients.get if chain_clients is not None else None,
        clock=clock,
    )
    validators = [build_validator(config, deps) for config in definition.validators]

    token_transfer = None
    if definition.token_transfer is not None:
        if chain_clients is None:
            raise ConfigurationError(f"Distributor {definition.id!r}: token transfer needs a chain")
        transfer_def = definition.token_transfer
        client = chain_clients.get(
            str(transfer_def.rpc_url) if transfer_def.rpc_url else None,
            chain_id=transfer_def.chain_id,
        )
        token_transfer = TokenTransferService(
            client,
            transfer_def.token_address,
            transfer_def.amount,
            receipt_timeout=receipt_timeout,
            gas_limit=transfer_def.gas_limit,
        )

    return Distributor(
        distributor_id=definition.id,
        name=definition.name,
        path=definition.path,
        upstream_api_key=definition.upstream_api_key,
        payout_amount=definition.payout_amount,
        resolver=WalletResolver(definition.wallet_mode, definition.id),
        validators=validators,
        upstream=upstream,
        store=store,
        token_transfer=token_transfer,
        clock=clock,
    )
