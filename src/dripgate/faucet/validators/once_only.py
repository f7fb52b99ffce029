"""Once-only validator: at most one lifetime claim per wallet per distributor."""

import logging
from typing import Literal

from dripgate.errors import ErrorKind
from dripgate.faucet.context import ClaimContext, ValidationOutcome
from dripgate.faucet.ledger import ClaimStore

from .base import Validator, ValidatorConfig, ValidatorDependencies, register_validator

logger = logging.getLogger(__name__)


class OnceOnlyConfig(ValidatorConfig):
    type: Literal["once-only"] = "once-only"


class OnceOnlyValidator(Validator):
    """Rejects wallets that already have a claim record.

    Parameters
    ----------
    store : ClaimStore
        Claim ledger.
    distributor_id : str
        Distributor whose records are checked.
    """

    name = "once-only"

    def __init__(self, store: ClaimStore, distributor_id: str):
        self._store = store
        self._distributor_id = distributor_id

    async def validate(self, context: ClaimContext) -> ValidationOutcome:
        wallet = context.claimant_address
        if not wallet:
            return self.missing_address()

        try:
            claimed = await self._store.has_claim(wallet, self._distributor_id)
        except Exception as e:
            logger.error(
                "Once-only lookup failed",
                extra={"distributor_id": self._distributor_id, "error": str(e)},
                exc_info=True,
            )
            return ValidationOutcome.fail(
                f"Once-only validation failed: {e}", ErrorKind.INFRASTRUCTURE
            )

        if claimed:
            return ValidationOutcome.fail(
                "This wallet has already claimed from this distributor. "
                "Only one claim is allowed per wallet.",
                ErrorKind.RATE_LIMIT,
            )

        return ValidationOutcome.ok(claim_status="new")


@register_validator("once-only", OnceOnlyConfig)
def build_once_only(config: OnceOnlyConfig, deps: ValidatorDependencies) -> OnceOnlyValidator:
    return OnceOnlyValidator(deps.store, deps.distributor_id)
