"""Health, metrics and admin endpoints for DRIPGATE.

Endpoints:
- /health: Liveness probe (200 if process is alive)
- /ready: Readiness probe (200 if every check passes, 503 otherwise)
- /metrics: Prometheus metrics endpoint
- /admin/distributors: Configured distributors
- /admin/stats: Claim ledger totals

Served on the metrics port, separate from the public claim server.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from aiohttp import web
from prometheus_client import REGISTRY, generate_latest

if TYPE_CHECKING:
    from dripgate.faucet.ledger import ClaimStore
    from dripgate.faucet.service import FaucetService

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health check status values."""

    OK = "ok"
    ERROR = "error"
    NOT_READY = "not_ready"


@dataclass
class CheckResult:
    """Result of a single health check."""

    name: str
    status: HealthStatus
    message: str | None = None


@dataclass
class HealthResult:
    """Combined health check result."""

    status: HealthStatus
    checks: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result = {"status": self.status.value}
        if self.checks:
            result["checks"] = self.checks
        return result


class HealthCheck(ABC):
    """Abstract base class for readiness checks."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def check(self) -> CheckResult:
        """Perform the check."""
        ...


class DatabaseHealthCheck(HealthCheck):
    """Ready when the claim ledger answers a trivial query."""

    def __init__(self, store: "ClaimStore"):
        self._store = store

    @property
    def name(self) -> str:
        return "database"

    async def check(self) -> CheckResult:
        try:
            await self._store.ping()
        except Exception as e:
            logger.warning("Database check failed", extra={"error": str(e)})
            return CheckResult(self.name, HealthStatus.ERROR, f"unreachable: {type(e).__name__}")
        return CheckResult(self.name, HealthStatus.OK)


class HealthServer:
    """HTTP server for health, metrics and admin endpoints.

    Parameters
    ----------
    host : str
        Host to bind to.
    port : int
        Port to bind to.
    service : FaucetService, optional
        Enables the ``/admin`` routes.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        service: "FaucetService | None" = None,
    ):
        self._host = host
        self._port = port
        self._service = service
        self._checks: list[HealthCheck] = []
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def add_check(self, check: HealthCheck) -> None:
        self._checks.append(check)

    def create_app(self) -> web.Application:
        """Build the aiohttp application (also used by tests)."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/metrics", self._handle_metrics)
        if self._service is not None:
            app.router.add_get("/admin/distributors", self._handle_distributors)
            app.router.add_get("/admin/stats", self._handle_stats)
        return app

    async def start(self) -> None:
        """Start the health server."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        logger.info(
            "Health server started",
            extra={"host": self._host, "port": self._port},
        )

    async def stop(self) -> None:
        """Stop the health server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("Health server stopped")

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        result = await self._check_readiness()
        status_code = 200 if result.status == HealthStatus.OK else 503
        return web.json_response(result.to_dict(), status=status_code)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(REGISTRY),
            content_type="text/plain",
            charset="utf-8",
        )

    async def _handle_distributors(self, _request: web.Request) -> web.Response:
        distributors = [d.health() for d in self._service.distributors]
        return web.json_response({"distributors": distributors})

    async def _handle_stats(self, _request: web.Request) -> web.Response:
        stats = await self._service.store.stats()
        return web.json_response(
            {
                "total_claims": stats.total_claims,
                "unique_wallets": stats.unique_wallets,
                "total_amount": str(stats.total_amount),
                "claims_24h": stats.claims_24h,
            }
        )

    async def _check_readiness(self) -> HealthResult:
        if self._service is not None and not self._service.is_running:
            return HealthResult(status=HealthStatus.NOT_READY, checks={"service": "not running"})
        if not self._checks:
            return HealthResult(status=HealthStatus.OK)

        checks: dict[str, str] = {}
        all_ok = True
        for check in self._checks:
            try:
                result = await check.check()
            except Exception as e:
                logger.exception("Health check failed", extra={"check": check.name})
                checks[check.name] = f"error: {type(e).__name__}: {e}"
                all_ok = False
                continue
            if result.status == HealthStatus.OK:
                checks[result.name] = "ok"
            else:
                checks[result.name] = result.message or "error"
                all_ok = False

        return HealthResult(
            status=HealthStatus.OK if all_ok else HealthStatus.NOT_READY,
            checks=checks,
        )
