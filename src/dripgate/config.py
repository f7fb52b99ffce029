"""Configuration management for DRIPGATE using Pydantic Settings."""

from enum import Enum

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    CONSOLE = "console"


class DripgateConfig(BaseSettings):
    """DRIPGATE service configuration loaded from environment variables.

    Distributors are described separately in the JSON file named by
    ``DRIPGATE_DISTRIBUTORS_FILE``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    distributors_file: str = Field(alias="DRIPGATE_DISTRIBUTORS_FILE")

    # Upstream faucet
    upstream_url: str = Field(
        default="https://api.faucet.quicknode.com", alias="DRIPGATE_UPSTREAM_URL"
    )
    upstream_timeout: float = Field(default=10.0, alias="DRIPGATE_UPSTREAM_TIMEOUT", gt=0)
    # Partner account key for administration; distributors carry their own claim keys
    partner_api_key: SecretStr | None = Field(default=None, alias="DRIPGATE_PARTNER_API_KEY")

    # Chain (NFT reads, token transfers)
    rpc_url: str | None = Field(default=None, alias="DRIPGATE_RPC_URL")
    rpc_timeout: float = Field(default=10.0, alias="DRIPGATE_RPC_TIMEOUT", gt=0)
    receipt_timeout: float = Field(default=120.0, alias="DRIPGATE_RECEIPT_TIMEOUT", gt=0)

    # Identity tokens
    jwks_timeout: float = Field(default=5.0, alias="DRIPGATE_JWKS_TIMEOUT", gt=0)
    jwks_min_refresh_seconds: float = Field(
        default=10.0, alias="DRIPGATE_JWKS_MIN_REFRESH_SECONDS", ge=0
    )

    # Claim ledger; in-memory when unset
    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    db_pool_size: int = Field(default=10, alias="DRIPGATE_DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=5, alias="DRIPGATE_DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: float = Field(default=10.0, alias="DRIPGATE_DB_POOL_TIMEOUT", gt=0)

    # Payout wallet (token transfers only)
    payout_private_key: SecretStr | None = Field(
        default=None, alias="DRIPGATE_PAYOUT_PRIVATE_KEY"
    )
    payout_private_key_file: str | None = Field(
        default=None, alias="DRIPGATE_PAYOUT_PRIVATE_KEY_FILE"
    )

    # HTTP
    host: str = Field(default="0.0.0.0", alias="DRIPGATE_HOST")
    port: int = Field(default=3000, alias="DRIPGATE_PORT", ge=1, le=65535)

    # Observability
    metrics_port: int = Field(default=8080, alias="DRIPGATE_METRICS_PORT", ge=1, le=65535)
    log_level: str = Field(default="INFO", alias="DRIPGATE_LOG_LEVEL")
    log_format: LogFormat = Field(default=LogFormat.JSON, alias="DRIPGATE_LOG_FORMAT")

    @property
    def has_payout_key(self) -> bool:
        return self.payout_private_key is not None or self.payout_private_key_file is not None
