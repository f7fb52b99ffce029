"""Claim context and validation outcomes.

A ``ClaimContext`` is immutable. Validators never mutate it; they return a
``ValidationOutcome`` whose attachments the distributor folds into a new
context, recording which stage introduced each key.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from dripgate.errors import ErrorKind


def _empty() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class ClaimContext:
    """Everything known about a claim at a given pipeline stage."""

    visitor_fingerprint: str
    client_ip: str
    distributor_id: str
    identity_token: str | None = None
    wallet_address: str | None = None
    attachments: Mapping[str, Any] = field(default_factory=_empty)
    provenance: Mapping[str, str] = field(default_factory=_empty)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up an attachment added by an earlier stage."""
        return self.attachments.get(key, default)

    @property
    def claimant_address(self) -> str | None:
        """Address used as the rate-limit key (lowercase)."""
        return self.wallet_address

    @property
    def payout_address(self) -> str | None:
        """Address that receives the payout.

        The embedded wallet from an identity token wins over the claimant
        address.
        """
        return self.get("embedded_wallet") or self.wallet_address

    def with_patch(self, patch: Mapping[str, Any], stage: str) -> "ClaimContext":
        """Return a new context with ``patch`` merged in.

        Later values win on key collision. ``wallet_address`` in a patch
        replaces the claimant address and is lowercased.
        """
        if not patch:
            return self

        attachments = dict(self.attachments)
        provenance = dict(self.provenance)
        wallet_address = self.wallet_address

        for key, value in patch.items():
            if key == "wallet_address":
                wallet_address = value.lower() if isinstance(value, str) else value
            attachments[key] = value
            provenance[key] = stage

        return replace(
            self,
            wallet_address=wallet_address,
            attachments=MappingProxyType(attachments),
            provenance=MappingProxyType(provenance),
        )


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of a single validator."""

    success: bool
    error_message: str | None = None
    error_kind: ErrorKind | None = None
    attachments: Mapping[str, Any] = field(default_factory=_empty)

    @classmethod
    def ok(cls, **attachments: Any) -> "ValidationOutcome":
        return cls(success=True, attachments=MappingProxyType(attachments))

    @classmethod
    def fail(
        cls, message: str, kind: ErrorKind = ErrorKind.VALIDATION
    ) -> "ValidationOutcome":
        return cls(success=False, error_message=message, error_kind=kind)
