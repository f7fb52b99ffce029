"""HTTP API for DRIPGATE."""

from .server import ClaimServer

__all__ = ["ClaimServer"]
