"""Core DRIPGATE components."""

from .addresses import normalize_address, validate_address
from .jwks import KeySetCache, KeySetError, SigningKeyNotFoundError
from .wallet import PayoutWallet, WalletProvider

__all__ = [
    "KeySetCache",
    "KeySetError",
    "PayoutWallet",
    "SigningKeyNotFoundError",
    "WalletProvider",
    "normalize_address",
    "validate_address",
]
