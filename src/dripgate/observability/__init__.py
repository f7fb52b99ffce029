"""Observability module for DRIPGATE."""

from .health import DatabaseHealthCheck, HealthCheck, HealthServer, HealthStatus
from .logging import clear_request_id, configure_logging, get_logger, set_request_id
from .metrics import (
    CLAIM_DURATION,
    CLAIMS,
    TOKEN_TRANSFERS,
    UPSTREAM_DURATION,
    VALIDATOR_FAILURES,
)

__all__ = [
    # Health
    "DatabaseHealthCheck",
    "HealthCheck",
    "HealthServer",
    "HealthStatus",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "set_request_id",
    # Metrics
    "CLAIM_DURATION",
    "CLAIMS",
    "TOKEN_TRANSFERS",
    "UPSTREAM_DURATION",
    "VALIDATOR_FAILURES",
]
