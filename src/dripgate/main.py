#!/usr/bin/env python3
"""DRIPGATE - policy gate in front of a partner token faucet.

Entry point for the DRIPGATE service.
"""

import asyncio
import logging
import signal
import sys

from pydantic import ValidationError

from dripgate.api.server import ClaimServer
from dripgate.cli import create_parser, run_cli
from dripgate.config import DripgateConfig
from dripgate.errors import ConfigurationError
from dripgate.faucet.definitions import load_definitions
from dripgate.faucet.service import FaucetService
from dripgate.observability.health import DatabaseHealthCheck, HealthServer
from dripgate.observability.logging import configure_logging


def parse_args(argv: list[str] | None = None):
    """Parse command line arguments."""
    return create_parser().parse_args(argv)


async def run_service(config: DripgateConfig | None = None) -> int:
    """Run the DRIPGATE service (long-running mode).

    Wires up and starts all service components:
    - FaucetService with every configured distributor
    - HealthServer for probes, metrics and admin routes
    - ClaimServer for public claim traffic

    Returns
    -------
    int
        Process exit code.
    """
    if config is None:
        try:
            config = DripgateConfig()
        except ValidationError as e:
            configure_logging()
            problems = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
            logging.getLogger(__name__).error("Invalid settings", extra={"errors": problems})
            return 1

    configure_logging(level=config.log_level, log_format=config.log_format.value)

    logger = logging.getLogger(__name__)
    logger.info(
        "DRIPGATE starting",
        extra={
            "distributors_file": config.distributors_file,
            "upstream_url": config.upstream_url,
            "database": "configured" if config.database_url else "in-memory",
        },
    )

    try:
        definitions = load_definitions(config.distributors_file)
        faucet = FaucetService(config, definitions)
        await faucet.start()
    except ConfigurationError as e:
        logger.error("Invalid configuration", extra={"error": str(e)})
        return 1

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_shutdown_signal(sig_name: str) -> None:
        logger.info("Received signal, initiating shutdown", extra={"signal": sig_name})
        shutdown_event.set()

    loop.add_signal_handler(signal.SIGTERM, lambda: on_shutdown_signal("SIGTERM"))
    loop.add_signal_handler(signal.SIGINT, lambda: on_shutdown_signal("SIGINT"))

    health_server = HealthServer(host=config.host, port=config.metrics_port, service=faucet)
    health_server.add_check(DatabaseHealthCheck(faucet.store))
    claim_server = ClaimServer(faucet, host=config.host, port=config.port)

    try:
        await health_server.start()
        await claim_server.start()
        logger.info("DRIPGATE service ready")
        await shutdown_event.wait()
        logger.info("DRIPGATE shutting down")
    except OSError as e:
        logger.error("Could not start HTTP servers", extra={"error": str(e)})
        return 1
    finally:
        loop.remove_signal_handler(signal.SIGTERM)
        loop.remove_signal_handler(signal.SIGINT)
        await claim_server.stop()
        await health_server.stop()
        await faucet.stop()
        logger.info("DRIPGATE shutdown complete")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for DRIPGATE."""
    args = parse_args(argv)

    if args.command and args.command != "run":
        exit_code = run_cli(args)
        if exit_code >= 0:
            sys.exit(exit_code)
        create_parser().print_help()
        sys.exit(0)

    sys.exit(asyncio.run(run_service()))


if __name__ == "__main__":
    main()
