"""Pytest configuration and fixtures for DRIPGATE tests."""

import logging
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import structlog

from dripgate.faucet.ledger import ClaimRecord, MemoryClaimStore

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

WALLET = "0x" + "ab" * 20
OTHER_WALLET = "0x" + "cd" * 20


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Clear DRIPGATE-related environment variables before each test."""
    env_prefixes = ("DRIPGATE_", "DATABASE_")
    for key in list(os.environ.keys()):
        if key.startswith(env_prefixes):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo configure_logging() so handlers never outlive a captured stream."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def store():
    return MemoryClaimStore()


@pytest.fixture
def clock():
    """Fixed clock at NOW."""
    return lambda: NOW


def make_record(
    wallet: str = WALLET,
    distributor_id: str = "community",
    age: timedelta = timedelta(0),
    amount: str = "1",
    now: datetime = NOW,
    **overrides,
) -> ClaimRecord:
    values = {
        "distributor_id": distributor_id,
        "wallet_address": wallet,
        "visitor_fingerprint": "visitor-1",
        "client_ip": "203.0.113.7",
        "upstream_tx_id": "tx-old",
        "token_transfer_tx_id": None,
        "amount": Decimal(amount),
        "created_at": now - age,
    }
    values.update(overrides)
    return ClaimRecord(**values)


@pytest.fixture(scope="session")
def rsa_private_key():
    from cryptography.hazmat.primitives.asymmetric import rsa

    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_jwk(private_key, kid: str) -> dict:
    """JWK dict for the public half of ``private_key``."""
    import json

    from jwt.algorithms import RSAAlgorithm

    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return jwk


def sign_token(private_key, claims: dict, kid: str | None = "key-1") -> str:
    import jwt

    headers = {"kid": kid} if kid else {}
    return jwt.encode(claims, private_key, algorithm="RS256", headers=headers)
