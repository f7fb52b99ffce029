"""Claim ledger for DRIPGATE.

Features:
- Append-only record of every granted claim
- Lookups by (wallet, distributor) for once-only and time-window limits
- SQLAlchemy async storage in production, in-memory store for development
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, String, case, func, select, text
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator, TypeEngine
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class ClaimRecord:
    """A granted claim. Never updated or deleted once written."""

    distributor_id: str
    wallet_address: str
    visitor_fingerprint: str
    client_ip: str
    upstream_tx_id: str | None
    token_transfer_tx_id: str | None
    amount: Decimal
    created_at: datetime
    embedded_wallet: str | None = None
    id: int | None = None


@dataclass
class LedgerStats:
    """Aggregate ledger figures."""

    total_claims: int
    unique_wallets: int
    total_amount: Decimal
    claims_24h: int


class ClaimStore(ABC):
    """Storage for claim records.

    Wallet addresses are lowercased on every read and write.
    """

    async def initialize(self) -> None:
        """Prepare storage (create tables)."""

    async def close(self) -> None:
        """Release storage resources."""

    async def ping(self) -> None:
        """Raise if storage is unreachable."""

    @abstractmethod
    async def record_claim(self, record: ClaimRecord) -> ClaimRecord:
        """Append a claim record.

        Returns
        -------
        ClaimRecord
            The stored record with ``id`` populated.
        """
        ...

    @abstractmethod
    async def has_claim(self, wallet_address: str, distributor_id: str) -> bool:
        """Whether any claim exists for (wallet, distributor)."""
        ...

    @abstractmethod
    async def claims_since(
        self, wallet_address: str, distributor_id: str, since: datetime
    ) -> list[ClaimRecord]:
        """Claims for (wallet, distributor) with ``created_at >= since``, newest first."""
        ...

    @abstractmethod
    async def claims_for_wallet(
        self, wallet_address: str, distributor_id: str | None = None
    ) -> list[ClaimRecord]:
        """All claims for a wallet, newest first."""
        ...

    @abstractmethod
    async def claims_between(
        self, start: datetime, end: datetime, distributor_id: str | None = None
    ) -> list[ClaimRecord]:
        """Claims with ``start <= created_at < end``, newest first."""
        ...

    @abstractmethod
    async def stats(self, now: datetime | None = None) -> LedgerStats:
        """Aggregate ledger figures."""
        ...

    async def last_claim(self, wallet_address: str, distributor_id: str) -> ClaimRecord | None:
        """Most recent claim for (wallet, distributor)."""
        claims = await self.claims_for_wallet(wallet_address, distributor_id)
        return claims[0] if claims else None


class MemoryClaimStore(ClaimStore):
    """In-memory claim store for development and testing."""

    def __init__(self) -> None:
        self._records: list[ClaimRecord] = []

    async def record_claim(self, record: ClaimRecord) -> ClaimRecord:
        stored = replace(
            record,
            id=len(self._records) + 1,
            wallet_address=record.wallet_address.lower(),
            embedded_wallet=record.embedded_wallet.lower() if record.embedded_wallet else None,
        )
        self._records.append(stored)
        return stored

    def _matching(self, wallet_address: str, distributor_id: str | None) -> list[ClaimRecord]:
        wallet = wallet_address.lower()
        matches = [
            r
            for r in self._records
            if r.wallet_address == wallet
            and (distributor_id is None or r.distributor_id == distributor_id)
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def has_claim(self, wallet_address: str, distributor_id: str) -> bool:
        return bool(self._matching(wallet_address, distributor_id))

    async def claims_since(
        self, wallet_address: str, distributor_id: str, since: datetime
    ) -> list[ClaimRecord]:
        return [r for r in self._matching(wallet_address, distributor_id) if r.created_at >= since]

    async def claims_for_wallet(
        self, wallet_address: str, distributor_id: str | None = None
    ) -> list[ClaimRecord]:
        return self._matching(wallet_address, distributor_id)

    async def claims_between(
        self, start: datetime, end: datetime, distributor_id: str | None = None
    ) -> list[ClaimRecord]:
        matches = [
            r
            for r in self._records
            if start <= r.created_at < end
            and (distributor_id is None or r.distributor_id == distributor_id)
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def stats(self, now: datetime | None = None) -> LedgerStats:
        cutoff = (now or _utc_now()) - timedelta(hours=24)
        return LedgerStats(
            total_claims=len(self._records),
            unique_wallets=len({r.wallet_address for r in self._records}),
            total_amount=sum((r.amount for r in self._records), Decimal("0")),
            claims_24h=sum(1 for r in self._records if r.created_at > cutoff),
        )


class Amount(TypeDecorator):
    """Exact decimal column.

    ``NUMERIC(36, 18)`` where the backend has a native decimal type; decimal
    text on SQLite, which would otherwise round-trip through a float.
    """

    impl = Numeric(36, 18)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine:
        if dialect.supports_native_decimal:
            return dialect.type_descriptor(Numeric(36, 18))
        return dialect.type_descriptor(String(80))

    def process_bind_param(self, value, dialect: Dialect):
        if value is None or dialect.supports_native_decimal:
            return value
        return str(Decimal(value))

    def process_result_value(self, value, dialect: Dialect):
        return None if value is None else Decimal(str(value))


class Base(DeclarativeBase):
    pass


class ClaimRow(Base):
    """SQL table backing the claim ledger."""

    __tablename__ = "claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    distributor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    embedded_wallet: Mapped[str | None] = mapped_column(String(64), nullable=True)
    visitor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    client_ip: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    upstream_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    token_transfer_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Amount(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_claims_wallet_distributor_created", "wallet_address", "distributor_id", "created_at"),
        Index("idx_claims_created", "created_at"),
    )

    def to_record(self) -> ClaimRecord:
        return ClaimRecord(
            id=self.id,
            distributor_id=self.distributor_id,
            wallet_address=self.wallet_address,
            embedded_wallet=self.embedded_wallet,
            visitor_fingerprint=self.visitor_id,
            client_ip=self.client_ip,
            upstream_tx_id=self.upstream_tx_id,
            token_transfer_tx_id=self.token_transfer_tx_id,
            amount=Decimal(self.amount),
            created_at=_as_utc(self.created_at),
        )


class SQLClaimStore(ClaimStore):
    """Claim store on an SQLAlchemy async engine.

    Parameters
    ----------
    database_url : str
        SQLAlchemy async URL (``postgresql+asyncpg://`` or ``sqlite+aiosqlite://``).
    pool_size : int
        Persistent connections kept in the pool (PostgreSQL only).
    max_overflow : int
        Extra connections allowed above ``pool_size`` (PostgreSQL only).
    pool_timeout : float
        Seconds to wait for a free connection before failing.
    echo : bool
        Log SQL statements.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        max_overflow: int = 5,
        pool_timeout: float = 10.0,
        echo: bool = False,
    ):
        self._url = database_url
        self._engine: AsyncEngine = create_async_engine(
            database_url,
            echo=echo,
            **self._pool_kwargs(database_url, pool_size, max_overflow, pool_timeout),
        )
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    @staticmethod
    def _pool_kwargs(url: str, pool_size: int, max_overflow: int, pool_timeout: float) -> dict:
        # SQLite uses a static/single-connection pool that rejects sizing arguments
        if url.startswith("sqlite"):
            return {}
        return {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_pre_ping": True,
        }

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def initialize(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Claim ledger ready", extra={"url_scheme": self._url.split(":", 1)[0]})

    async def close(self) -> None:
        await self._engine.dispose()

    async def ping(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def record_claim(self, record: ClaimRecord) -> ClaimRecord:
        row = ClaimRow(
            distributor_id=record.distributor_id,
            wallet_address=record.wallet_address.lower(),
            embedded_wallet=record.embedded_wallet.lower() if record.embedded_wallet else None,
            visitor_id=record.visitor_fingerprint,
            client_ip=record.client_ip,
            upstream_tx_id=record.upstream_tx_id,
            token_transfer_tx_id=record.token_transfer_tx_id,
            amount=record.amount,
            created_at=record.created_at,
        )
        async with self._sessions.begin() as session:
            session.add(row)
            await session.flush()
            stored = row.to_record()

        logger.debug(
            "Claim recorded",
            extra={"claim_id": stored.id, "distributor_id": stored.distributor_id},
        )
        return stored

    async def _fetch(self, *conditions) -> list[ClaimRecord]:
        stmt = select(ClaimRow).where(*conditions).order_by(ClaimRow.created_at.desc())
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [row.to_record() for row in rows]

    async def has_claim(self, wallet_address: str, distributor_id: str) -> bool:
        stmt = (
            select(ClaimRow.id)
            .where(
                ClaimRow.wallet_address == wallet_address.lower(),
                ClaimRow.distributor_id == distributor_id,
            )
            .limit(1)
        )
        async with self._sessions() as session:
            found = (await session.execute(stmt)).scalar_one_or_none()
        return found is not None

    async def claims_since(
        self, wallet_address: str, distributor_id: str, since: datetime
    ) -> list[ClaimRecord]:
        return await self._fetch(
            ClaimRow.wallet_address == wallet_address.lower(),
            ClaimRow.distributor_id == distributor_id,
            ClaimRow.created_at >= since,
        )

    async def claims_for_wallet(
        self, wallet_address: str, distributor_id: str | None = None
    ) -> list[ClaimRecord]:
        conditions = [ClaimRow.wallet_address == wallet_address.lower()]
        if distributor_id is not None:
            conditions.append(ClaimRow.distributor_id == distributor_id)
        return await self._fetch(*conditions)

    async def claims_between(
        self, start: datetime, end: datetime, distributor_id: str | None = None
    ) -> list[ClaimRecord]:
        conditions = [ClaimRow.created_at >= start, ClaimRow.created_at < end]
        if distributor_id is not None:
            conditions.append(ClaimRow.distributor_id == distributor_id)
        return await self._fetch(*conditions)

    async def stats(self, now: datetime | None = None) -> LedgerStats:
        cutoff = (now or _utc_now()) - timedelta(hours=24)
        stmt = select(
            func.count(ClaimRow.id),
            func.count(func.distinct(ClaimRow.wallet_address)),
            func.coalesce(func.sum(ClaimRow.amount), 0),
            func.coalesce(func.sum(case((ClaimRow.created_at > cutoff, 1), else_=0)), 0),
        )
        async with self._sessions() as session:
            total, wallets, amount, recent = (await session.execute(stmt)).one()
            if not self._engine.dialect.supports_native_decimal:
                # text amounts: SUM() would go through a float
                amounts = (await session.execute(select(ClaimRow.amount))).scalars()
                amount = sum(amounts, Decimal("0"))
        return LedgerStats(
            total_claims=int(total),
            unique_wallets=int(wallets),
            total_amount=Decimal(str(amount)),
            claims_24h=int(recent),
        )
