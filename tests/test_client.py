"""Tests for the async chain client."""

from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import pytest
from web3 import Web3

from dripgate.blockchain.client import ChainClient, ChainClientPool
from dripgate.errors import ConfigurationError

TEST_ADDRESS = "0xFCAd0B19bB29D4674531d6f115237E16AfCE377c"
TEST_RECIPIENT = "0x" + "74" * 20
TOKEN = "0x" + "ef" * 20


async def _value(value):
    return value


@pytest.fixture
def mock_web3():
    """Patch AsyncWeb3 with a mock whose eth calls are awaitable."""
    with patch("dripgate.blockchain.client.AsyncWeb3") as mock_w3_class:
        mock_w3 = MagicMock()
        mock_w3_class.return_value = mock_w3
        eth = mock_w3.eth
        type(eth).chain_id = PropertyMock(side_effect=lambda: _value(65010004))
        type(eth).gas_price = PropertyMock(side_effect=lambda: _value(1000000000))
        eth.get_transaction_count = AsyncMock(return_value=7)
        eth.send_raw_transaction = AsyncMock(return_value=bytes.fromhex("ab" * 32))
        eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1})
        yield mock_w3_class, mock_w3


@pytest.fixture
def mock_wallet():
    wallet = MagicMock()
    wallet.address = TEST_ADDRESS
    account = MagicMock()
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"signed")
    wallet.get_account.return_value = account
    return wallet


class TestChainClient:
    """Tests for ChainClient."""

    def test_provider_configured(self, mock_web3):
        mock_w3_class, _ = mock_web3

        ChainClient("http://localhost:8545", timeout=3.0)

        args, kwargs = mock_w3_class.AsyncHTTPProvider.call_args
        assert args == ("http://localhost:8545",)
        assert kwargs["exception_retry_configuration"] is None

    @pytest.mark.asyncio
    async def test_chain_id_cached(self, mock_web3):
        client = ChainClient("http://localhost:8545")

        assert await client.chain_id() == 65010004
        assert await client.chain_id() == 65010004

    @pytest.mark.asyncio
    async def test_configured_chain_id_skips_rpc(self, mock_web3):
        _, mock_w3 = mock_web3
        type(mock_w3.eth).chain_id = PropertyMock(side_effect=AssertionError("not read"))

        assert await ChainClient("http://x", chain_id=1).chain_id() == 1

    @pytest.mark.asyncio
    async def test_erc1155_balance_of(self, mock_web3):
        _, mock_w3 = mock_web3
        contract = mock_w3.eth.contract.return_value
        contract.functions.balanceOf.return_value.call = AsyncMock(return_value=2)
        client = ChainClient("http://localhost:8545")

        balance = await client.erc1155_balance_of(TOKEN, TEST_RECIPIENT, 5)

        assert balance == 2
        contract.functions.balanceOf.assert_called_once_with(
            Web3.to_checksum_address(TEST_RECIPIENT), 5
        )

    @pytest.mark.asyncio
    async def test_erc20_decimals_cached(self, mock_web3):
        _, mock_w3 = mock_web3
        decimals_call = AsyncMock(return_value=6)
        mock_w3.eth.contract.return_value.functions.decimals.return_value.call = decimals_call
        client = ChainClient("http://localhost:8545")

        assert await client.erc20_decimals(TOKEN) == 6
        assert await client.erc20_decimals(TOKEN.upper().replace("0X", "0x")) == 6
        decimals_call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_transfer_erc20(self, mock_web3, mock_wallet):
        """Transfer builds, signs and submits with the pending nonce."""
        _, mock_w3 = mock_web3
        build = AsyncMock(return_value={"to": TOKEN, "data": "0x"})
        mock_w3.eth.contract.return_value.functions.transfer.return_value.build_transaction = build
        client = ChainClient("http://localhost:8545", wallet=mock_wallet)

        tx_hash = await client.transfer_erc20(TOKEN, TEST_RECIPIENT, 10**18)

        assert tx_hash == "0x" + "ab" * 32
        mock_w3.eth.get_transaction_count.assert_awaited_once_with(TEST_ADDRESS, "pending")
        params = build.call_args.args[0]
        assert params["nonce"] == 7
        assert params["chainId"] == 65010004
        assert params["gas"] == 100000
        mock_wallet.get_account.return_value.sign_transaction.assert_called_once()
        mock_w3.eth.send_raw_transaction.assert_awaited_once_with(b"signed")

    @pytest.mark.asyncio
    async def test_transfer_requires_wallet(self, mock_web3):
        with pytest.raises(RuntimeError, match="no signing wallet"):
            await ChainClient("http://localhost:8545").transfer_erc20(TOKEN, TEST_RECIPIENT, 1)

    def test_wallet_address(self, mock_web3, mock_wallet):
        assert ChainClient("http://x", wallet=mock_wallet).wallet_address == TEST_ADDRESS
        assert ChainClient("http://x").wallet_address is None


class TestChainClientPool:
    """Tests for per-URL client sharing."""

    def test_shares_client_per_url(self, mock_web3):
        pool = ChainClientPool("http://default")

        assert pool.get() is pool.get("http://default")
        assert pool.get("http://other") is not pool.get()
        assert len(pool) == 2

    def test_chain_id_is_part_of_the_key(self, mock_web3):
        """A client pinned to one chain id is not reused for another."""
        pool = ChainClientPool("http://default")

        pinned = pool.get(chain_id=65010004)

        assert pool.get(chain_id=65010004) is pinned
        assert pool.get() is not pinned
        assert pool.get(chain_id=1) is not pinned
        assert len(pool) == 3

    def test_no_url_configured(self):
        with pytest.raises(ConfigurationError, match="No RPC URL configured"):
            ChainClientPool().get()

    @pytest.mark.asyncio
    async def test_close(self, mock_web3):
        _, mock_w3 = mock_web3
        mock_w3.provider.disconnect = AsyncMock()
        pool = ChainClientPool("http://default")
        pool.get()

        await pool.close()

        mock_w3.provider.disconnect.assert_awaited_once()
        assert len(pool) == 0
