"""Public claim server.

Routes every configured distributor path to its claim pipeline:
- ``GET /`` lists the claim endpoints
- ``POST <distributor.path>`` processes one claim
"""

import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from aiohttp import web

from dripgate import __version__
from dripgate.errors import ErrorKind
from dripgate.observability.logging import clear_request_id, set_request_id

if TYPE_CHECKING:
    from dripgate.faucet.service import FaucetService

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def _json(body: dict[str, Any], status: int = 200, **kwargs: Any) -> web.Response:
    return web.json_response(body, status=status, **kwargs)


class ClaimServer:
    """HTTP front end for all distributors.

    Parameters
    ----------
    service : FaucetService
        Running faucet service.
    host : str
        Host to bind to.
    port : int
        Port to bind to.
    """

    def __init__(self, service: "FaucetService", host: str = "0.0.0.0", port: int = 3000):  # noqa: S104
        self._service = service
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def create_app(self) -> web.Application:
        """Build the aiohttp application (also used by tests)."""
        app = web.Application()
        app.router.add_get("/", self._handle_index)
        app.router.add_route("*", "/{tail:.+}", self._handle_claim)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info(
            "Claim server started",
            extra={
                "host": self._host,
                "port": self._port,
                "endpoints": [d.path for d in self._service.distributors],
            },
        )

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("Claim server stopped")

    def _endpoints(self) -> list[str]:
        return [d.path for d in self._service.distributors]

    async def _handle_index(self, _request: web.Request) -> web.Response:
        return _json(
            {"service": "dripgate", "version": __version__, "endpoints": self._endpoints()}
        )

    async def _handle_claim(self, request: web.Request) -> web.Response:
        distributor = self._service.get_distributor(request.path)
        if distributor is None:
            logger.warning("Unknown endpoint", extra={"path": request.path})
            return _json(
                {"error": "Endpoint not found", "available": self._endpoints()}, status=404
            )

        if request.method != "POST":
            return _json(
                {"error": "Method not allowed", "allowed": ["POST"]},
                status=405,
                headers={"Allow": "POST"},
            )

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _json({"success": False, "error": "Invalid JSON body"}, status=400)

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        set_request_id(request_id)
        try:
            result = await distributor.process_claim(body, request.headers, request_id)
        finally:
            clear_request_id()

        response = result.to_dict()
        if result.error_kind == ErrorKind.INFRASTRUCTURE:
            response["error"] = INTERNAL_ERROR_MESSAGE
        return _json(response, status=result.http_status, headers={REQUEST_ID_HEADER: request_id})
