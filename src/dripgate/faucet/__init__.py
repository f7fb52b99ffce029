"""Faucet components for DRIPGATE."""

from .context import ClaimContext, ValidationOutcome
from .definitions import DistributorDefinition, build_distributor, load_definitions
from .distributor import ClaimResult, Distributor
from .ledger import ClaimRecord, ClaimStore, MemoryClaimStore, SQLClaimStore
from .resolver import WalletMode, WalletResolver
from .service import FaucetService, FaucetStatus
from .upstream import ClaimSubmission, ClaimSubmissionResult, FaucetApiClient

__all__ = [
    "ClaimContext",
    "ClaimRecord",
    "ClaimResult",
    "ClaimStore",
    "ClaimSubmission",
    "ClaimSubmissionResult",
    "Distributor",
    "DistributorDefinition",
    "FaucetApiClient",
    "FaucetService",
    "FaucetStatus",
    "MemoryClaimStore",
    "SQLClaimStore",
    "ValidationOutcome",
    "WalletMode",
    "WalletResolver",
    "build_distributor",
    "load_definitions",
]
