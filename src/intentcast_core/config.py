"""Canonical configuration surface for IntentCast services."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseModel):
    """Blockchain ledger configuration (Base Sepolia USDC by default)."""
    rpc_url: str = "https://sepolia.base.org"
    chain_id: int = 84532
    usdc_address: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    usdc_decimals: int = 6
    rpc_timeout_seconds: float = 15.0
    confirmation_timeout_seconds: float = 60.0
    poll_interval_seconds: float = 2.0


class IntentCastSettings(BaseSettings):
    """Main IntentCast configuration."""

    model_config = SettingsConfigDict(
        env_prefix="INTENTCAST_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "test", "sandbox", "prod"] = "dev"
    log_level: str = "INFO"

    # API
    app_name: str = "IntentCast"
    api_prefix: str = "/api/v1"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    allowed_origins: str = "*"
    require_wallet_auth: bool = True

    # Record store: empty or memory:// keeps everything in process memory
    database_url: str = ""

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)

    # Payments
    x402_network: str = "eip155:84532"
    fulfill_timeout_seconds: float = 30.0
    service_wallet_private_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "service_wallet_private_key",
            "INTENTCAST_SERVICE_WALLET_PRIVATE_KEY",
            "SERVICE_PRIVATE_KEY",
        ),
    )
    service_wallet_address: str = ""
    stake_address: str = ""

    # Intent defaults
    default_deadline_hours: int = 24

    # Rate limiting
    rate_limit_enabled: bool = True
    read_requests_per_minute: int = 100
    write_requests_per_minute: int = 20

    @field_validator("database_url", mode="before")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Route plain Postgres URLs through the asyncpg driver."""
        v = (v or "").strip()
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql+asyncpg://", 1)
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        if v.startswith("sqlite:///"):
            return v.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return v

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def uses_durable_store(self) -> bool:
        return bool(self.database_url) and not self.database_url.startswith("memory://")

    @property
    def is_production(self) -> bool:
        return self.environment not in ("dev", "test")


@lru_cache
def load_settings(env_file: str | None = None) -> IntentCastSettings:
    """Load IntentCastSettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return IntentCastSettings(_env_file=env_path)
