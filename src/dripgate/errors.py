"""Error taxonomy for DRIPGATE.

Configuration errors stop the process before it serves traffic. Claim errors
carry an ``ErrorKind`` that the HTTP layer maps to a status code.
"""

from enum import Enum


class ConfigurationError(Exception):
    """Raised when distributor or service configuration is invalid."""


class ErrorKind(str, Enum):
    """Category of a failed claim."""

    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    UPSTREAM = "upstream"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INFRASTRUCTURE = "infrastructure"

    @property
    def http_status(self) -> int:
        """HTTP status code reported to the caller."""
        return _HTTP_STATUS.get(self, 400)


_HTTP_STATUS = {
    ErrorKind.AUTHORIZATION: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.INFRASTRUCTURE: 500,
}


class ClaimError(Exception):
    """A claim was rejected.

    Parameters
    ----------
    message : str
        Human-readable reason, returned to the caller.
    kind : ErrorKind
        Error category.
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class AuthorizationError(ClaimError):
    """Missing, expired or unverifiable identity token."""

    kind = ErrorKind.AUTHORIZATION


class ClaimValidationError(ClaimError):
    """Malformed request or failed eligibility check."""

    kind = ErrorKind.VALIDATION


class RateLimitError(ClaimError):
    """Duplicate claim or time-window limit reached."""

    kind = ErrorKind.RATE_LIMIT


class UpstreamError(ClaimError):
    """Upstream faucet rejected the claim."""

    kind = ErrorKind.UPSTREAM


class UpstreamUnavailableError(ClaimError):
    """Upstream faucet is temporarily closed."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class InfrastructureError(ClaimError):
    """Database, RPC or network failure; safe for the caller to retry."""

    kind = ErrorKind.INFRASTRUCTURE


_ERROR_TYPES: dict[ErrorKind, type[ClaimError]] = {
    ErrorKind.AUTHORIZATION: AuthorizationError,
    ErrorKind.VALIDATION: ClaimValidationError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.UPSTREAM: UpstreamError,
    ErrorKind.UPSTREAM_UNAVAILABLE: UpstreamUnavailableError,
    ErrorKind.INFRASTRUCTURE: InfrastructureError,
}


def claim_error(message: str, kind: ErrorKind) -> ClaimError:
    """Build the ``ClaimError`` subclass for ``kind``."""
    return _ERROR_TYPES[kind](message)
