"""Async EVM JSON-RPC client for dripgate contract reads and token payouts."""

import asyncio
import logging
from typing import Any

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.types import TxReceipt

from dripgate.core.wallet import WalletProvider
from dripgate.errors import ConfigurationError

logger = logging.getLogger(__name__)

ERC1155_ABI = [
    {
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ERC20_ABI = [
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "success", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

DEFAULT_GAS_LIMIT = 100000


class ChainClient:
    """Thin async wrapper around web3 for the calls dripgate makes.

    Parameters
    ----------
    rpc_url : str
        EVM JSON-RPC endpoint.
    timeout : float
        Seconds allowed for each RPC call.
    wallet : WalletProvider, optional
        Signing wallet; required only for transfers.
    chain_id : int, optional
        Expected chain id. Read from the node when not given.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        wallet: WalletProvider | None = None,
        chain_id: int | None = None,
    ):
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._wallet = wallet
        self._chain_id = chain_id
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
                exception_retry_configuration=None,
            )
        )
        self._decimals: dict[str, int] = {}
        # one in-flight transfer per signer so nonces stay sequential
        self._send_lock = asyncio.Lock()

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    @property
    def wallet_address(self) -> str | None:
        return self._wallet.address if self._wallet else None

    async def _call(self, awaitable: Any) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._call(self._w3.eth.chain_id)
        return self._chain_id

    async def erc1155_balance_of(self, contract_address: str, owner: str, token_id: int) -> int:
        """Read ``balanceOf(owner, token_id)`` on an ERC-1155 contract.

        Parameters
        ----------
        contract_address : str
            The token contract.
        owner : str
            Address whose balance is read.
        token_id : int
            ERC-1155 token id.

        Returns
        -------
        int
            Raw balance.
        """
        contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=ERC1155_ABI
        )
        balance = await self._call(
            contract.functions.balanceOf(Web3.to_checksum_address(owner), token_id).call()
        )
        return int(balance)

    async def erc20_decimals(self, token_address: str) -> int:
        """Return the token's ``decimals()``; cached per token."""
        key = token_address.lower()
        if key not in self._decimals:
            contract = self._w3.eth.contract(
                address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
            )
            self._decimals[key] = int(await self._call(contract.functions.decimals().call()))
        return self._decimals[key]

    async def transfer_erc20(
        self,
        token_address: str,
        to: str,
        value: int,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ) -> str:
        """Sign and submit ``transfer(to, value)`` on an ERC-20 contract.

        Parameters
        ----------
        token_address : str
            The token contract.
        to : str
            Recipient address.
        value : int
            Amount in base units.
        gas_limit : int, optional
            Gas limit for the transaction. Default is 100000.

        Returns
        -------
        str
            The 0x-prefixed transaction hash.

        Raises
        ------
        RuntimeError
            If the client has no signing wallet.
        """
        if self._wallet is None:
            raise RuntimeError("ChainClient has no signing wallet")

        sender = self._wallet.address
        checksum_to = Web3.to_checksum_address(to)
        contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
        )

        async with self._send_lock:
            chain_id = await self.chain_id()
            nonce = await self._call(self._w3.eth.get_transaction_count(sender, "pending"))
            gas_price = await self._call(self._w3.eth.gas_price)
            tx = await self._call(
                contract.functions.transfer(checksum_to, value).build_transaction(
                    {
                        "from": sender,
                        "gas": gas_limit,
                        "gasPrice": gas_price,
                        "nonce": nonce,
                        "chainId": chain_id,
                    }
                )
            )
            signed = self._wallet.get_account().sign_transaction(tx)
            tx_hash = await self._call(self._w3.eth.send_raw_transaction(signed.raw_transaction))

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(
            "ERC-20 transfer submitted",
            extra={
                "tx_hash": tx_hex,
                "to": checksum_to,
                "token_address": token_address,
                "value": value,
            },
        )
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> TxReceipt:
        """Wait for a transaction receipt.

        Raises
        ------
        web3.exceptions.TimeExhausted
            If the transaction is not mined within ``timeout``.
        """
        return await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

    async def close(self) -> None:
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


class ChainClientPool:
    """One ``ChainClient`` per (RPC URL, chain id), shared across distributors.

    Parameters
    ----------
    default_rpc_url : str, optional
        Used when a caller does not name an RPC URL.
    timeout : float
        Per-call RPC timeout.
    wallet : WalletProvider, optional
        Signing wallet handed to every client.
    """

    def __init__(
        self,
        default_rpc_url: str | None = None,
        timeout: float = 10.0,
        wallet: WalletProvider | None = None,
    ):
        self._default_rpc_url = default_rpc_url
        self._timeout = timeout
        self._wallet = wallet
        self._clients: dict[tuple[str, int | None], ChainClient] = {}

    def get(self, rpc_url: str | None = None, chain_id: int | None = None) -> ChainClient:
        """Return the client for ``rpc_url`` (or the default URL) and ``chain_id``.

        A ``chain_id`` of ``None`` means the id is read from the node on first
        use, so it gets its own client.

        Raises
        ------
        ConfigurationError
            If neither URL is set.
        """
        url = rpc_url or self._default_rpc_url
        if not url:
            raise ConfigurationError("No RPC URL configured (set rpc_url or DRIPGATE_RPC_URL)")
        key = (url, chain_id)
        client = self._clients.get(key)
        if client is None:
            client = ChainClient(url, timeout=self._timeout, wallet=self._wallet, chain_id=chain_id)
            self._clients[key] = client
        return client

    def __len__(self) -> int:
        return len(self._clients)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
