"""Distributor: one faucet endpoint and its claim pipeline.

Pipeline per claim:
- resolve the wallet and build the claim context
- run validators in configured order, stopping at the first failure
- submit the claim upstream (exactly once)
- optionally send a secondary ERC-20 transfer
- persist the claim record
"""

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import SecretStr

from dripgate.blockchain.transfer import TokenTransferService
from dripgate.errors import (
    ClaimError,
    ClaimValidationError,
    ConfigurationError,
    ErrorKind,
    InfrastructureError,
    claim_error,
)
from dripgate.observability.metrics import (
    CLAIM_DURATION,
    CLAIMS,
    TOKEN_TRANSFERS,
    UPSTREAM_DURATION,
    VALIDATOR_FAILURES,
)

from .context import ClaimContext
from .ledger import ClaimRecord, ClaimStore
from .resolver import WalletResolver
from .upstream import ClaimSubmission, FaucetApiClient
from .validators.base import Validator, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    """Terminal state of one claim."""

    success: bool
    transaction_id: str | None = None
    amount: Decimal | None = None
    transfer_id: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return (self.error_kind or ErrorKind.VALIDATION).http_status

    def to_dict(self) -> dict[str, Any]:
        """Response body for the claimant."""
        if not self.success:
            return {"success": False, "error": self.error}
        body: dict[str, Any] = {
            "success": True,
            "transactionId": self.transaction_id,
            "amount": str(self.amount) if self.amount is not None else None,
        }
        if self.transfer_id:
            body["transferId"] = self.transfer_id
        return body


class Distributor:
    """Claim pipeline for one distributor.

    Parameters
    ----------
    distributor_id : str
        Stable id, also the ledger partition key.
    name : str
        Display name.
    path : str
        HTTP path the distributor is served on.
    upstream_api_key : SecretStr
        Partner API key for the upstream faucet.
    payout_amount : Decimal
        Amount reported to claimants and stored per claim.
    resolver : WalletResolver
        Builds the initial claim context.
    validators : Sequence[Validator]
        Ordered validator chain; must not be empty.
    upstream : FaucetApiClient
        Upstream faucet client.
    store : ClaimStore
        Claim ledger.
    token_transfer : TokenTransferService, optional
        Secondary ERC-20 payout.
    clock : Callable[[], datetime]
        Source of ``created_at`` timestamps.
    """

    def __init__(
        self,
        distributor_id: str,
        name: str,
        path: str,
        upstream_api_key: SecretStr,
        payout_amount: Decimal,
        resolver: WalletResolver,
        validators: Sequence[Validator],
        upstream: FaucetApiClient,
        store: ClaimStore,
        token_transfer: TokenTransferService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not validators:
            raise ConfigurationError(f"No validators for distributor {distributor_id}")

        self._id = distributor_id
        self._name = name
        self._path = path
        self._api_key = upstream_api_key
        self._payout_amount = payout_amount
        self._resolver = resolver
        self._validators = list(validators)
        self._upstream = upstream
        self._store = store
        self._token_transfer = token_transfer
        self._clock = clock

        logger.info(
            "Distributor initialized",
            extra={
                "distributor_id": distributor_id,
                "path": path,
                "validators": self.validator_names,
                "token_transfer": token_transfer is not None,
            },
        )

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def path(self) -> str:
        return self._path

    @property
    def validator_names(self) -> list[str]:
        return [v.name for v in self._validators]

    async def process_claim(
        self,
        body: Any,
        headers: Mapping[str, str],
        request_id: str | None = None,
    ) -> ClaimResult:
        """Run the full pipeline for one claim request.

        Parameters
        ----------
        body : Any
            Decoded JSON request body.
        headers : Mapping[str, str]
            Request headers.
        request_id : str, optional
            Correlation id for logs.

        Returns
        -------
        ClaimResult
            Success with the upstream transaction id, or failure with the
            originating error message.
        """
        start = time.perf_counter()
        try:
            result = await self._process(body, headers, request_id)
        except ClaimError as e:
            logger.info(
                "Claim rejected",
                extra={
                    "request_id": request_id,
                    "distributor_id": self._id,
                    "error": e.message,
                    "error_kind": e.kind.value,
                },
            )
            CLAIMS.labels(distributor=self._id, status=e.kind.value).inc()
            return ClaimResult(success=False, error=e.message, error_kind=e.kind)
        except Exception:
            logger.exception(
                "Claim pipeline failed",
                extra={"request_id": request_id, "distributor_id": self._id},
            )
            kind = InfrastructureError.kind
            CLAIMS.labels(distributor=self._id, status=kind.value).inc()
            return ClaimResult(success=False, error="Internal error", error_kind=kind)
        finally:
            CLAIM_DURATION.labels(distributor=self._id).observe(time.perf_counter() - start)

        CLAIMS.labels(distributor=self._id, status="success").inc()
        return result

    async def _process(
        self, body: Any, headers: Mapping[str, str], request_id: str | None
    ) -> ClaimResult:
        context = self._resolver.resolve(body, headers)
        context = await self._run_validators(context, request_id)

        payout_address = context.payout_address
        if not payout_address:
            raise ClaimValidationError("No wallet address available")

        tx_id = await self._submit_upstream(context, payout_address, request_id)
        transfer_id = await self._send_tokens(payout_address, request_id)
        await self._persist(context, tx_id, transfer_id, request_id)

        logger.info(
            "Claim processed",
            extra={
                "request_id": request_id,
                "distributor_id": self._id,
                "wallet_address": context.claimant_address,
                "transaction_id": tx_id,
                "transfer_id": transfer_id,
            },
        )
        return ClaimResult(
            success=True,
            transaction_id=tx_id,
            amount=self._payout_amount,
            transfer_id=transfer_id,
        )

    async def _run_validators(self, context: ClaimContext, request_id: str | None) -> ClaimContext:
        for validator in self._validators:
            try:
                outcome = await validator.validate(context)
            except Exception as e:
                logger.error(
                    "Validator raised",
                    extra={
                        "request_id": request_id,
                        "distributor_id": self._id,
                        "validator": validator.name,
                    },
                    exc_info=True,
                )
                raise InfrastructureError(f"{validator.name} validation failed") from e

            if not outcome.success:
                VALIDATOR_FAILURES.labels(distributor=self._id, validator=validator.name).inc()
                raise claim_error(
                    outcome.error_message or "Validation failed",
                    outcome.error_kind or ErrorKind.VALIDATION,
                )
            context = context.with_patch(outcome.attachments, validator.name)
        return context

    async def _submit_upstream(
        self, context: ClaimContext, payout_address: str, request_id: str | None
    ) -> str | None:
        submission = ClaimSubmission(
            address=payout_address,
            client_ip=context.client_ip,
            visitor_id=context.visitor_fingerprint,
        )
        with UPSTREAM_DURATION.labels(distributor=self._id).time():
            response = await self._upstream.submit_claim(
                self._api_key.get_secret_value(), submission, request_id
            )
        if not response.success:
            raise claim_error(
                response.message or "Claim rejected",
                response.error_kind or ErrorKind.UPSTREAM,
            )
        return response.transaction_id

    async def _send_tokens(self, recipient: str, request_id: str | None) -> str | None:
        if self._token_transfer is None:
            return None
        result = await self._token_transfer.transfer(recipient, request_id)
        TOKEN_TRANSFERS.labels(
            distributor=self._id, status="success" if result.success else "failure"
        ).inc()
        if not result.success:
            # non-fatal: the upstream grant already happened
            logger.warning(
                "Token transfer failed; claim continues",
                extra={"request_id": request_id, "distributor_id": self._id, "error": result.error},
            )
            return None
        return result.tx_hash

    async def _persist(
        self,
        context: ClaimContext,
        tx_id: str | None,
        transfer_id: str | None,
        request_id: str | None,
    ) -> None:
        record = ClaimRecord(
            distributor_id=self._id,
            wallet_address=context.claimant_address or context.payout_address,
            visitor_fingerprint=context.visitor_fingerprint,
            client_ip=context.client_ip,
            upstream_tx_id=tx_id,
            token_transfer_tx_id=transfer_id,
            amount=self._payout_amount,
            created_at=self._clock(),
            embedded_wallet=context.get("embedded_wallet"),
        )
        try:
            await self._store.record_claim(record)
        except Exception as e:
            logger.error(
                "Claim granted upstream but not recorded",
                extra={
                    "request_id": request_id,
                    "distributor_id": self._id,
                    "wallet_address": record.wallet_address,
                    "transaction_id": tx_id,
                    "transfer_id": transfer_id,
                },
                exc_info=True,
            )
            raise InfrastructureError("Claim could not be recorded") from e

    def health(self) -> dict[str, Any]:
        """Static health summary for this distributor."""
        return {
            "status": "ok",
            "distributor_id": self._id,
            "name": self._name,
            "path": self._path,
            "wallet_mode": self._resolver.mode.value,
            "validators": self.validator_names,
            "payout_amount": str(self._payout_amount),
            "token_transfer": self._token_transfer is not None,
        }
