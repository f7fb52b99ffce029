"""Secondary ERC-20 payout sent after a successful faucet grant."""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dripgate.blockchain.client import DEFAULT_GAS_LIMIT, ChainClient
from dripgate.core.addresses import validate_address
from dripgate.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Outcome of one token transfer."""

    success: bool
    tx_hash: str | None = None
    error: str | None = None


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human token amount to integer base units.

    Raises
    ------
    ValueError
        If the amount has more fractional digits than the token supports.
    """
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(scaled)


class TokenTransferService:
    """Sends a fixed ERC-20 amount to claimants.

    Parameters
    ----------
    client : ChainClient
        Chain client with a signing wallet.
    token_address : str
        ERC-20 contract address.
    amount : Decimal
        Human-readable amount sent per claim.
    receipt_timeout : float
        Seconds to wait for one confirmation.
    gas_limit : int
        Gas limit for the transfer transaction.
    """

    def __init__(
        self,
        client: ChainClient,
        token_address: str,
        amount: Decimal,
        receipt_timeout: float = 120.0,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ):
        if not validate_address(token_address):
            raise ConfigurationError(f"Invalid token address: {token_address}")
        try:
            positive = Decimal(amount) > 0
        except InvalidOperation as e:
            raise ConfigurationError(f"Invalid token amount: {amount}") from e
        if not positive:
            raise ConfigurationError("Token transfer amount must be positive")
        if client.wallet_address is None:
            raise ConfigurationError("Token transfer requires a payout private key")

        self._client = client
        self._token_address = token_address
        self._amount = Decimal(amount)
        self._receipt_timeout = receipt_timeout
        self._gas_limit = gas_limit

    @property
    def token_address(self) -> str:
        return self._token_address

    @property
    def amount(self) -> Decimal:
        return self._amount

    async def transfer(self, recipient: str, request_id: str | None = None) -> TransferResult:
        """Send the configured amount to ``recipient``.

        Never raises; every failure is reported in the result.
        """
        if not validate_address(recipient):
            return TransferResult(success=False, error=f"Invalid recipient address: {recipient}")

        tx_hash = None
        try:
            decimals = await self._client.erc20_decimals(self._token_address)
            value = to_base_units(self._amount, decimals)
            logger.info(
                "Starting token transfer",
                extra={
                    "request_id": request_id,
                    "recipient": recipient,
                    "amount": str(self._amount),
                    "decimals": decimals,
                },
            )
            tx_hash = await self._client.transfer_erc20(
                self._token_address, recipient, value, gas_limit=self._gas_limit
            )
            receipt = await self._client.wait_for_receipt(tx_hash, timeout=self._receipt_timeout)
        except Exception as e:
            logger.error(
                "Token transfer failed",
                extra={
                    "request_id": request_id,
                    "recipient": recipient,
                    "tx_hash": tx_hash,
                    "error": str(e),
                },
            )
            return TransferResult(success=False, tx_hash=tx_hash, error=str(e) or type(e).__name__)

        if receipt.get("status") != 1:
            logger.error(
                "Token transfer reverted",
                extra={"request_id": request_id, "tx_hash": tx_hash},
            )
            return TransferResult(
                success=False, tx_hash=tx_hash, error=f"Transaction reverted: {tx_hash}"
            )

        logger.info(
            "Token transfer confirmed",
            extra={
                "request_id": request_id,
                "tx_hash": tx_hash,
                "block_number": receipt.get("blockNumber"),
            },
        )
        return TransferResult(success=True, tx_hash=tx_hash)
