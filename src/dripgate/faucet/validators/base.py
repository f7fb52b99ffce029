"""Validator contract and registry.

Every validator implements ``validate(context) -> ValidationOutcome``. Each
variant registers a pydantic schema and a builder under its configuration
name; the distributor file refers to validators by that name.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from dripgate.errors import ConfigurationError
from dripgate.faucet.context import ClaimContext, ValidationOutcome

if TYPE_CHECKING:
    import aiohttp

    from dripgate.blockchain.client import ChainClient
    from dripgate.core.jwks import KeySetCache
    from dripgate.faucet.ledger import ClaimStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Validator(ABC):
    """A single eligibility check in a distributor's chain."""

    name: str = "validator"

    @abstractmethod
    async def validate(self, context: ClaimContext) -> ValidationOutcome:
        """Check the claim.

        Parameters
        ----------
        context : ClaimContext
            Claim context including attachments from earlier validators.

        Returns
        -------
        ValidationOutcome
            Success with optional attachments, or failure with a message.
        """
        ...

    def missing_address(self) -> ValidationOutcome:
        return ValidationOutcome.fail(f"No wallet address available for {self.name} validation")


class ValidatorConfig(BaseModel):
    """Base schema for validator entries in the distributor file."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str


@dataclass(frozen=True)
class ValidatorDependencies:
    """Shared services a validator may need at construction time."""

    distributor_id: str
    store: "ClaimStore"
    session: "aiohttp.ClientSession | None" = None
    key_sets: "KeySetCache | None" = None
    chain_client: "Callable[[str | None], ChainClient] | None" = None
    clock: Callable[[], datetime] = utc_now


ConfigT = TypeVar("ConfigT", bound=ValidatorConfig)


@dataclass(frozen=True)
class ValidatorEntry(Generic[ConfigT]):
    """Schema plus builder for one validator variant."""

    name: str
    schema: type[ConfigT]
    builder: Callable[[ConfigT, ValidatorDependencies], Validator]


VALIDATOR_REGISTRY: dict[str, ValidatorEntry] = {}


def register_validator(name: str, schema: type[ConfigT]):
    """Register a builder function for validator ``name``."""

    def decorator(builder: Callable[[ConfigT, ValidatorDependencies], Validator]):
        if name in VALIDATOR_REGISTRY:
            raise ValueError(f"Validator already registered: {name}")
        VALIDATOR_REGISTRY[name] = ValidatorEntry(name=name, schema=schema, builder=builder)
        return builder

    return decorator


def parse_validator_config(raw: Mapping[str, Any] | ValidatorConfig) -> ValidatorConfig:
    """Validate one validator entry against its registered schema.

    Raises
    ------
    ConfigurationError
        If the type is unknown or the entry does not match the schema.
    """
    if isinstance(raw, ValidatorConfig):
        return raw
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Validator entry must be an object, got {type(raw).__name__}")

    name = raw.get("type")
    entry = VALIDATOR_REGISTRY.get(name)  # type: ignore[arg-type]
    if entry is None:
        known = ", ".join(sorted(VALIDATOR_REGISTRY))
        raise ConfigurationError(f"Unknown validator type {name!r} (known: {known})")

    try:
        return entry.schema.model_validate(dict(raw))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config for validator {name!r}: {e}") from e


def build_validator(
    config: Mapping[str, Any] | ValidatorConfig, deps: ValidatorDependencies
) -> Validator:
    """Build a validator from a config entry."""
    parsed = parse_validator_config(config)
    entry = VALIDATOR_REGISTRY[parsed.type]
    return entry.builder(parsed, deps)
