"""Time-window validator.

Two constraints, both must hold:
- at most ``max_claims_per_window`` claims inside a rolling window
- at least ``cooldown_seconds`` between consecutive claims
"""

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Literal

from pydantic import Field, model_validator

from dripgate.errors import ConfigurationError, ErrorKind
from dripgate.faucet.context import ClaimContext, ValidationOutcome
from dripgate.faucet.ledger import ClaimStore

from .base import (
    Validator,
    ValidatorConfig,
    ValidatorDependencies,
    register_validator,
    utc_now,
)

logger = logging.getLogger(__name__)

PERIOD_SECONDS = {
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
    "month": 30 * 86400,
    "year": 365 * 86400,
}

DEFAULT_WINDOW_SECONDS = PERIOD_SECONDS["week"]
DEFAULT_COOLDOWN_SECONDS = 86400


def format_duration(delta: timedelta) -> str:
    """Format a wait time for user display, rounded up to the second."""
    total = max(0, math.ceil(delta.total_seconds()))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    if minutes:
        return f"{minutes}m {seconds}s" if seconds else f"{minutes}m"
    return f"{seconds}s"


def check_window_consistency(
    window_seconds: int, max_claims_per_window: int, cooldown_seconds: int
) -> None:
    """Reject configs where the cooldown makes the window limit unreachable.

    Raises
    ------
    ConfigurationError
        If ``cooldown_seconds * (max_claims_per_window - 1) > window_seconds``.
    """
    if window_seconds <= 0:
        raise ConfigurationError("Time window must be positive")
    if max_claims_per_window < 1:
        raise ConfigurationError("max_claims_per_window must be at least 1")
    if cooldown_seconds < 0:
        raise ConfigurationError("Cooldown cannot be negative")

    span = cooldown_seconds * (max_claims_per_window - 1)
    if span > window_seconds:
        raise ConfigurationError(
            f"Inconsistent time-window config: cooldown of {cooldown_seconds}s x "
            f"({max_claims_per_window} - 1) = {span}s exceeds the {window_seconds}s window "
            f"({span / 3600:g}h > {window_seconds / 3600:g}h)"
        )


class TimeWindowConfig(ValidatorConfig):
    """Schema for ``time-window`` entries.

    ``period`` and ``cooldown_hours`` are shorthands for ``window_seconds``
    and ``cooldown_seconds``.
    """

    type: Literal["time-window"] = "time-window"
    window_seconds: int | None = Field(default=None, gt=0)
    period: Literal["hour", "day", "week", "month", "year"] | None = None
    max_claims_per_window: int = Field(default=1, ge=1)
    cooldown_seconds: int | None = Field(default=None, ge=0)
    cooldown_hours: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check(self) -> "TimeWindowConfig":
        if self.window_seconds is not None and self.period is not None:
            raise ValueError("Set either window_seconds or period, not both")
        if self.cooldown_seconds is not None and self.cooldown_hours is not None:
            raise ValueError("Set either cooldown_seconds or cooldown_hours, not both")
        check_window_consistency(
            self.effective_window_seconds,
            self.max_claims_per_window,
            self.effective_cooldown_seconds,
        )
        return self

    @property
    def effective_window_seconds(self) -> int:
        if self.window_seconds is not None:
            return self.window_seconds
        if self.period is not None:
            return PERIOD_SECONDS[self.period]
        return DEFAULT_WINDOW_SECONDS

    @property
    def effective_cooldown_seconds(self) -> int:
        if self.cooldown_seconds is not None:
            return self.cooldown_seconds
        if self.cooldown_hours is not None:
            return math.ceil(self.cooldown_hours * 3600)
        return DEFAULT_COOLDOWN_SECONDS


class TimeWindowValidator(Validator):
    """Caps claims per rolling window and enforces a cooldown between claims.

    Parameters
    ----------
    store : ClaimStore
        Claim ledger.
    distributor_id : str
        Distributor whose records are checked.
    window_seconds : int
        Length of the rolling window.
    max_claims_per_window : int
        Claims allowed inside the window.
    cooldown_seconds : int
        Minimum time between consecutive claims.
    clock : Callable[[], datetime]
        Source of the current UTC time.

    Raises
    ------
    ConfigurationError
        If the cooldown makes the window limit unreachable.
    """

    name = "time-window"

    def __init__(
        self,
        store: ClaimStore,
        distributor_id: str,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_claims_per_window: int = 1,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        check_window_consistency(window_seconds, max_claims_per_window, cooldown_seconds)
        self._store = store
        self._distributor_id = distributor_id
        self._window = timedelta(seconds=window_seconds)
        self._max_claims = max_claims_per_window
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock

    async def validate(self, context: ClaimContext) -> ValidationOutcome:
        wallet = context.claimant_address
        if not wallet:
            return self.missing_address()

        now = self._clock()
        try:
            records = await self._store.claims_since(
                wallet, self._distributor_id, now - self._window
            )
        except Exception as e:
            logger.error(
                "Time-window lookup failed",
                extra={"distributor_id": self._distributor_id, "error": str(e)},
                exc_info=True,
            )
            return ValidationOutcome.fail(
                f"Time-window validation failed: {e}", ErrorKind.INFRASTRUCTURE
            )

        if not records:
            return ValidationOutcome.ok(claims_in_window=0)

        count = len(records)
        if count >= self._max_claims:
            oldest = min(r.created_at for r in records)
            next_slot = oldest + self._window
            if next_slot > now:
                return ValidationOutcome.fail(
                    f"Limit reached ({count}/{self._max_claims}). "
                    f"Next slot in {format_duration(next_slot - now)}",
                    ErrorKind.RATE_LIMIT,
                )

        last = max(r.created_at for r in records)
        elapsed = now - last
        if elapsed < self._cooldown:
            return ValidationOutcome.fail(
                f"Cooldown active. Please wait {format_duration(self._cooldown - elapsed)} "
                "before next claim",
                ErrorKind.RATE_LIMIT,
            )

        return ValidationOutcome.ok(claims_in_window=count, last_claim_at=last.isoformat())


@register_validator("time-window", TimeWindowConfig)
def build_time_window(config: TimeWindowConfig, deps: ValidatorDependencies) -> TimeWindowValidator:
    return TimeWindowValidator(
        deps.store,
        deps.distributor_id,
        window_seconds=config.effective_window_seconds,
        max_claims_per_window=config.max_claims_per_window,
        cooldown_seconds=config.effective_cooldown_seconds,
        clock=deps.clock,
    )
