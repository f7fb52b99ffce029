"""Prometheus metrics for DRIPGATE.

Metrics:
- dripgate_claims_total: Counter of claims by distributor and outcome
- dripgate_validator_failures_total: Counter of validator rejections
- dripgate_upstream_duration_seconds: Histogram of upstream faucet calls
- dripgate_token_transfers_total: Counter of secondary token transfers
- dripgate_claim_duration_seconds: Histogram of end-to-end claim handling
"""

from prometheus_client import Counter, Histogram

# Counters
CLAIMS = Counter(
    "dripgate_claims_total",
    "Total number of claims processed",
    ["distributor", "status"],
)

VALIDATOR_FAILURES = Counter(
    "dripgate_validator_failures_total",
    "Claims rejected by a validator",
    ["distributor", "validator"],
)

TOKEN_TRANSFERS = Counter(
    "dripgate_token_transfers_total",
    "Secondary ERC-20 transfers",
    ["distributor", "status"],
)

# Histograms
UPSTREAM_DURATION = Histogram(
    "dripgate_upstream_duration_seconds",
    "Upstream faucet request duration",
    ["distributor"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

CLAIM_DURATION = Histogram(
    "dripgate_claim_duration_seconds",
    "Claim processing duration",
    ["distributor"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)
