"""NFT-ownership validator (ERC-1155 ``balanceOf``)."""

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import AnyHttpUrl, Field, field_validator

from dripgate.core.addresses import validate_address
from dripgate.errors import ConfigurationError, ErrorKind
from dripgate.faucet.context import ClaimContext, ValidationOutcome

from .base import Validator, ValidatorConfig, ValidatorDependencies, register_validator

if TYPE_CHECKING:
    from dripgate.blockchain.client import ChainClient

logger = logging.getLogger(__name__)


class NftOwnershipConfig(ValidatorConfig):
    type: Literal["nft-ownership"] = "nft-ownership"
    contract_address: str
    token_id: int = Field(ge=0)
    rpc_url: AnyHttpUrl | None = None

    @field_validator("contract_address")
    @classmethod
    def _check_contract(cls, v: str) -> str:
        if not validate_address(v):
            raise ValueError(f"Invalid contract address: {v}")
        return v


class NftOwnershipValidator(Validator):
    """Requires the claimant to hold at least one unit of an ERC-1155 token.

    Parameters
    ----------
    client : ChainClient
        Chain client used for the read.
    contract_address : str
        ERC-1155 contract.
    token_id : int
        Required token id.
    """

    name = "nft-ownership"

    def __init__(self, client: "ChainClient", contract_address: str, token_id: int):
        self._client = client
        self._contract_address = contract_address
        self._token_id = token_id

    async def validate(self, context: ClaimContext) -> ValidationOutcome:
        wallet = context.claimant_address
        if not wallet:
            return self.missing_address()
        if not validate_address(wallet):
            return ValidationOutcome.fail("Invalid wallet address format")

        try:
            balance = await self._client.erc1155_balance_of(
                self._contract_address, wallet, self._token_id
            )
        except Exception as e:
            logger.error(
                "NFT balance read failed",
                extra={
                    "contract_address": self._contract_address,
                    "token_id": self._token_id,
                    "error": str(e),
                },
            )
            return ValidationOutcome.fail(
                f"NFT ownership validation failed: {e or type(e).__name__}",
                ErrorKind.INFRASTRUCTURE,
            )

        if balance == 0:
            return ValidationOutcome.fail(
                f"NFT ownership validation failed for address {wallet}. "
                f"Required token ID {self._token_id} not owned."
            )

        return ValidationOutcome.ok(nft_balance=balance)


@register_validator("nft-ownership", NftOwnershipConfig)
def build_nft_ownership(
    config: NftOwnershipConfig, deps: ValidatorDependencies
) -> NftOwnershipValidator:
    if deps.chain_client is None:
        raise ConfigurationError("nft-ownership validator requires a chain client")
    client = deps.chain_client(str(config.rpc_url) if config.rpc_url else None)
    return NftOwnershipValidator(client, config.contract_address, config.token_id)
