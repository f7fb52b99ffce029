"""Wallet resolution for incoming claims.

Builds the initial ``ClaimContext`` from a request body and headers:
- visitor fingerprint and client IP
- bearer token (identity-token mode)
- wallet address from the body (direct mode)
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from dripgate.core.addresses import normalize_address, validate_address
from dripgate.errors import AuthorizationError, ClaimValidationError

from .context import ClaimContext

# Checked in order, first non-empty wins
_IP_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


class WalletMode(str, Enum):
    """Where a distributor takes the claimant address from."""

    IDENTITY_TOKEN = "identity-token"
    DIRECT = "direct"


def extract_client_ip(headers: Mapping[str, str]) -> str:
    """Pick the client IP from proxy headers.

    Priority: CDN header, first forwarded-for entry, real-ip header.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in _IP_HEADERS:
        value = lowered.get(name, "")
        if name == "x-forwarded-for":
            value = value.split(",")[0]
        value = value.strip()
        if value:
            return value
    return ""


def extract_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Return the bearer token from the Authorization header, if any."""
    lowered = {key.lower(): value for key, value in headers.items()}
    authorization = lowered.get("authorization", "")
    if not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer ") :].strip()
    return token or None


class WalletResolver:
    """Builds a ``ClaimContext`` for one distributor.

    Parameters
    ----------
    mode : WalletMode
        Identity-token or direct address mode.
    distributor_id : str
        Distributor the claims are made against.
    """

    def __init__(self, mode: WalletMode, distributor_id: str):
        self._mode = WalletMode(mode)
        self._distributor_id = distributor_id

    @property
    def mode(self) -> WalletMode:
        return self._mode

    def resolve(self, body: Any, headers: Mapping[str, str]) -> ClaimContext:
        """Resolve a claim request into its initial context.

        Parameters
        ----------
        body : Any
            Decoded JSON request body.
        headers : Mapping[str, str]
            Request headers.

        Returns
        -------
        ClaimContext
            The initial claim context.

        Raises
        ------
        ClaimValidationError
            If the body is malformed or the direct-mode address is invalid.
        AuthorizationError
            If identity-token mode is used without a bearer token.
        """
        if not isinstance(body, Mapping):
            raise ClaimValidationError("Request body must be a JSON object")

        visitor_id = body.get("visitorId")
        if not isinstance(visitor_id, str) or not visitor_id.strip():
            raise ClaimValidationError("Missing visitorId")

        client_ip = extract_client_ip(headers)

        if self._mode == WalletMode.IDENTITY_TOKEN:
            token = extract_bearer_token(headers)
            if token is None:
                raise AuthorizationError("Authorization token is required")
            return ClaimContext(
                visitor_fingerprint=visitor_id,
                client_ip=client_ip,
                distributor_id=self._distributor_id,
                identity_token=token,
            )

        address = body.get("walletAddress")
        if not isinstance(address, str) or not address:
            raise ClaimValidationError("Missing walletAddress")
        if not validate_address(address):
            raise ClaimValidationError(f"Invalid address format: {address}")

        return ClaimContext(
            visitor_fingerprint=visitor_id,
            client_ip=client_ip,
            distributor_id=self._distributor_id,
            wallet_address=normalize_address(address),
        )
