"""Blockchain integration for DRIPGATE."""

from .client import ChainClient, ChainClientPool
from .transfer import TokenTransferService, TransferResult

__all__ = ["ChainClient", "ChainClientPool", "TokenTransferService", "TransferResult"]
