"""Faucet Service for DRIPGATE.

Owns everything the distributors share:
- HTTP session (upstream faucet, key sets, verification calls)
- Key-set cache
- Claim ledger
- Chain clients and the payout wallet
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import aiohttp

from dripgate.blockchain.client import ChainClientPool
from dripgate.config import DripgateConfig
from dripgate.core.jwks import KeySetCache
from dripgate.core.wallet import PayoutWallet, WalletProvider
from dripgate.errors import ConfigurationError

from .definitions import DistributorDefinition, build_distributor
from .distributor import Distributor
from .ledger import ClaimStore, MemoryClaimStore, SQLClaimStore
from .upstream import FaucetApiClient
from .validators.base import utc_now

logger = logging.getLogger(__name__)


def create_store(config: DripgateConfig) -> ClaimStore:
    """Build the claim store named by ``DATABASE_URL``."""
    if not config.database_url:
        logger.warning("DATABASE_URL not set; claims are kept in memory only")
        return MemoryClaimStore()
    return SQLClaimStore(
        config.database_url,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_timeout=config.db_pool_timeout,
    )


def create_wallet(config: DripgateConfig) -> WalletProvider | None:
    if not config.has_payout_key:
        return None
    return PayoutWallet(
        private_key=config.payout_private_key,
        private_key_file=config.payout_private_key_file,
    )


@dataclass
class FaucetStatus:
    """Current service status."""

    healthy: bool
    database_ok: bool
    distributors: list[dict[str, Any]] = field(default_factory=list)
    key_sets: dict[str, Any] = field(default_factory=dict)
    message: str = ""


class FaucetService:
    """Main service owning all distributors and their shared resources.

    Parameters
    ----------
    config : DripgateConfig
        Service configuration.
    definitions : Sequence[DistributorDefinition]
        Validated distributor definitions.
    store : ClaimStore, optional
        Claim ledger; built from ``DATABASE_URL`` when omitted.
    wallet : WalletProvider, optional
        Payout wallet; built from the payout key settings when omitted.
    clock : Callable[[], datetime]
        Source of the current UTC time.
    """

    def __init__(
        self,
        config: DripgateConfig,
        definitions: Sequence[DistributorDefinition],
        store: ClaimStore | None = None,
        wallet: WalletProvider | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._config = config
        self._definitions = list(definitions)
        self._store = store if store is not None else create_store(config)
        self._wallet = wallet if wallet is not None else create_wallet(config)
        self._clock = clock
        self._session: aiohttp.ClientSession | None = None
        self._key_sets: KeySetCache | None = None
        self._chain_clients: ChainClientPool | None = None
        self._distributors: dict[str, Distributor] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def store(self) -> ClaimStore:
        return self._store

    @property
    def key_sets(self) -> KeySetCache | None:
        return self._key_sets

    @property
    def distributors(self) -> list[Distributor]:
        return list(self._distributors.values())

    def get_distributor(self, path: str) -> Distributor | None:
        """Find the distributor served on ``path``."""
        return self._distributors.get(path.rstrip("/"))

    async def start(self) -> None:
        """Open shared resources and build every distributor.

        Raises
        ------
        ConfigurationError
            If a distributor cannot be built.
        """
        if self._running:
            logger.warning("Faucet service already running")
            return

        await self._store.initialize()
        self._session = aiohttp.ClientSession()
        try:
            self._key_sets = KeySetCache(
                self._session,
                timeout=self._config.jwks_timeout,
                min_refresh_interval=self._config.jwks_min_refresh_seconds,
            )
            self._chain_clients = ChainClientPool(
                self._config.rpc_url, timeout=self._config.rpc_timeout, wallet=self._wallet
            )
            upstream = FaucetApiClient(
                self._session, self._config.upstream_url, timeout=self._config.upstream_timeout
            )
            for definition in self._definitions:
                distributor = build_distributor(
                    definition,
                    upstream=upstream,
                    store=self._store,
                    session=self._session,
                    key_sets=self._key_sets,
                    chain_clients=self._chain_clients,
                    receipt_timeout=self._config.receipt_timeout,
                    clock=self._clock,
                )
                self._distributors[distributor.path] = distributor
        except ConfigurationError:
            await self._release()
            raise

        self._running = True
        logger.info(
            "Faucet service started",
            extra={
                "distributors": [d.id for d in self.distributors],
                "chain_clients": len(self._chain_clients),
                "payout_wallet": self._wallet.address if self._wallet else None,
            },
        )

    async def stop(self) -> None:
        """Close shared resources."""
        if not self._running:
            return
        await self._release()
        self._running = False
        logger.info("Faucet service stopped")

    async def _release(self) -> None:
        self._distributors.clear()
        if self._chain_clients is not None:
            await self._chain_clients.close()
            self._chain_clients = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._key_sets = None
        await self._store.close()

    async def get_status(self) -> FaucetStatus:
        """Get current service status."""
        database_ok = True
        try:
            await self._store.ping()
        except Exception as e:
            logger.warning("Claim ledger ping failed", extra={"error": str(e)})
            database_ok = False

        healthy = self._running and database_ok
        if not self._running:
            message = "Faucet service not running"
        elif not database_ok:
            message = "Claim ledger unreachable"
        else:
            message = "Faucet operational"

        return FaucetStatus(
            healthy=healthy,
            database_ok=database_ok,
            distributors=[d.health() for d in self.distributors],
            key_sets=self._key_sets.stats() if self._key_sets else {},
            message=message,
        )
