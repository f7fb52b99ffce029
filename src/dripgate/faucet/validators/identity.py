"""Identity-proof validator.

Verifies a signed identity token against a published key set, then extracts
the embedded (custodial) and external wallets it asserts. Optionally confirms
the embedded wallet with the identity provider.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Literal

import aiohttp
import jwt
from pydantic import AnyHttpUrl, Field, SecretStr, model_validator

from dripgate.core.addresses import normalize_address, validate_address
from dripgate.core.jwks import KeySetCache, KeySetError, SigningKeyNotFoundError
from dripgate.errors import ConfigurationError, ErrorKind
from dripgate.faucet.context import ClaimContext, ValidationOutcome

from .base import Validator, ValidatorConfig, ValidatorDependencies, register_validator

logger = logging.getLogger(__name__)

WALLET_TYPE = "EVM"


class IdentityProofConfig(ValidatorConfig):
    """Schema for ``identity-proof`` entries."""

    type: Literal["identity-proof"] = "identity-proof"
    jwks_url: AnyHttpUrl
    verify_url: AnyHttpUrl | None = None
    verify_secret: SecretStr | None = None
    audience: str | None = None
    algorithms: list[str] = Field(default_factory=lambda: ["RS256"], min_length=1)
    leeway_seconds: int = Field(default=5, ge=0)
    verify_timeout_seconds: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _check_verify(self) -> "IdentityProofConfig":
        if self.verify_url is not None and self.verify_secret is None:
            raise ValueError("verify_secret is required when verify_url is set")
        return self


def _first_evm_address(entries: Any) -> str | None:
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if isinstance(entry, Mapping) and entry.get("type") == WALLET_TYPE:
            address = entry.get("address")
            if isinstance(address, str) and address:
                return address
    return None


def extract_wallets(claims: Mapping[str, Any]) -> tuple[str, str] | str:
    """Pull (embedded, external) EVM wallets out of token claims.

    Returns
    -------
    tuple[str, str] | str
        Lowercased wallet pair, or an error message.
    """
    data = claims.get("data")
    if not isinstance(data, Mapping):
        return "Wallet data not found in token"

    embedded = _first_evm_address(data.get("wallets"))
    external = _first_evm_address(data.get("externalWallets"))
    if not embedded or not external:
        return "EVM wallets not found in token"
    if not validate_address(embedded) or not validate_address(external):
        return "Invalid wallet address in token"
    return normalize_address(embedded), normalize_address(external)


class IdentityProofValidator(Validator):
    """Validates identity tokens and resolves the claimant's wallets.

    Parameters
    ----------
    key_sets : KeySetCache
        Shared signing-key cache.
    jwks_url : str
        Key-set URL for this identity provider.
    session : aiohttp.ClientSession | None
        HTTP session, required when ``verify_url`` is set.
    verify_url : str | None
        Endpoint that confirms an embedded wallet belongs to the project.
    verify_secret : SecretStr | None
        Secret sent to ``verify_url``.
    audience : str | None
        Expected ``aud`` claim; not checked when None.
    algorithms : list[str]
        Accepted signing algorithms.
    leeway_seconds : int
        Clock skew tolerance for ``exp``/``iat``.
    verify_timeout_seconds : float
        Timeout for the verification call.
    """

    name = "identity-proof"

    def __init__(
        self,
        key_sets: KeySetCache,
        jwks_url: str,
        session: aiohttp.ClientSession | None = None,
        verify_url: str | None = None,
        verify_secret: SecretStr | None = None,
        audience: str | None = None,
        algorithms: list[str] | None = None,
        leeway_seconds: int = 5,
        verify_timeout_seconds: float = 5.0,
    ):
        if verify_url and session is None:
            raise ConfigurationError("identity-proof verification requires an HTTP session")
        self._key_sets = key_sets
        self._jwks_url = jwks_url
        self._session = session
        self._verify_url = verify_url
        self._verify_secret = verify_secret
        self._audience = audience
        self._algorithms = algorithms or ["RS256"]
        self._leeway = leeway_seconds
        self._verify_timeout = aiohttp.ClientTimeout(total=verify_timeout_seconds)

    async def validate(self, context: ClaimContext) -> ValidationOutcome:
        token = context.identity_token
        if not token:
            return ValidationOutcome.fail(
                "Authorization token is required", ErrorKind.AUTHORIZATION
            )

        try:
            claims = await self._verify_token(token)
        except _TokenRejected as e:
            return ValidationOutcome.fail(f"Invalid token: {e}", ErrorKind.AUTHORIZATION)

        wallets = extract_wallets(claims)
        if isinstance(wallets, str):
            return ValidationOutcome.fail(wallets, ErrorKind.AUTHORIZATION)
        embedded, external = wallets

        if self._verify_url:
            failure = await self._verify_embedded_wallet(embedded)
            if failure is not None:
                return failure

        data = claims.get("data") or {}
        return ValidationOutcome.ok(
            embedded_wallet=embedded,
            external_wallet=external,
            wallet_address=external,
            user_id=data.get("userId") or claims.get("sub"),
        )

    async def _verify_token(self, token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            raise _TokenRejected(str(e)) from e

        kid = header.get("kid")
        if not kid:
            raise _TokenRejected("missing 'kid' in token header")

        try:
            key = await self._key_sets.get_signing_key(self._jwks_url, kid)
        except SigningKeyNotFoundError as e:
            raise _TokenRejected(str(e)) from e
        except KeySetError as e:
            logger.error(
                "Signing keys unavailable",
                extra={"jwks_url": self._jwks_url, "error": str(e)},
            )
            raise _TokenRejected("unable to fetch signing keys") from e

        try:
            return jwt.decode(
                token,
                key.key,
                algorithms=self._algorithms,
                audience=self._audience,
                leeway=self._leeway,
                options={"verify_aud": self._audience is not None},
            )
        except jwt.PyJWTError as e:
            logger.info("Token verification failed", extra={"error": str(e), "kid": kid})
            raise _TokenRejected(str(e)) from e

    async def _verify_embedded_wallet(self, address: str) -> ValidationOutcome | None:
        """Confirm the embedded wallet; 404 means not provisioned yet and passes."""
        headers = {"x-external-api-key": self._verify_secret.get_secret_value()}
        try:
            async with self._session.post(
                self._verify_url,
                json={"address": address},
                headers=headers,
                timeout=self._verify_timeout,
            ) as resp:
                status = resp.status
                reason = resp.reason
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Wallet verification request failed",
                extra={"verify_url": self._verify_url, "error": str(e)},
            )
            return ValidationOutcome.fail(
                f"Wallet verification failed: {e or type(e).__name__}",
                ErrorKind.INFRASTRUCTURE,
            )

        if status == 404 or 200 <= status < 300:
            return None
        return ValidationOutcome.fail(
            f"Wallet verification failed: {status} {reason or ''}".rstrip(),
            ErrorKind.AUTHORIZATION,
        )


class _TokenRejected(Exception):
    pass


@register_validator("identity-proof", IdentityProofConfig)
def build_identity_proof(
    config: IdentityProofConfig, deps: ValidatorDependencies
) -> IdentityProofValidator:
    if deps.key_sets is None:
        raise ConfigurationError("identity-proof validator requires a key-set cache")
    return IdentityProofValidator(
        deps.key_sets,
        str(config.jwks_url),
        session=deps.session,
        verify_url=str(config.verify_url) if config.verify_url else None,
        verify_secret=config.verify_secret,
        audience=config.audience,
        algorithms=list(config.algorithms),
        leeway_seconds=config.leeway_seconds,
        verify_timeout_seconds=config.verify_timeout_seconds,
    )
