"""Claim validators.

Importing this package registers every built-in validator type.
"""

from .base import (
    VALIDATOR_REGISTRY,
    Validator,
    ValidatorConfig,
    ValidatorDependencies,
    build_validator,
    parse_validator_config,
    register_validator,
)
from .identity import IdentityProofConfig, IdentityProofValidator
from .nft import NftOwnershipConfig, NftOwnershipValidator
from .once_only import OnceOnlyConfig, OnceOnlyValidator
from .time_window import TimeWindowConfig, TimeWindowValidator

__all__ = [
    "VALIDATOR_REGISTRY",
    "IdentityProofConfig",
    "IdentityProofValidator",
    "NftOwnershipConfig",
    "NftOwnershipValidator",
    "OnceOnlyConfig",
    "OnceOnlyValidator",
    "TimeWindowConfig",
    "TimeWindowValidator",
    "Validator",
    "ValidatorConfig",
    "ValidatorDependencies",
    "build_validator",
    "parse_validator_config",
    "register_validator",
]
