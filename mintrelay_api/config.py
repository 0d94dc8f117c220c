"""
Configuration for the Mint Relay API.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .units import parse_units


class Settings(BaseSettings):
    """
    API configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API Server
    host: str = Field(
        default="127.0.0.1",
        description="API host (127.0.0.1 for local only, 0.0.0.0 for external)",
        alias="HOST",
    )
    port: int = Field(
        default=8000,
        description="API port",
        validation_alias="PORT",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins"
    )

    # Chain
    base_rpc: str = Field(
        default="https://1rpc.io/base",
        description="EVM RPC URL (Base)",
        alias="BASE_RPC",
    )
    chain_id: Optional[int] = Field(
        default=None,
        description="EVM chain ID (fetched from the RPC when unset)",
    )
    rpc_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for each read-only RPC call",
    )
    mint_timeout_seconds: float = Field(
        default=180.0,
        gt=0,
        description="Max wait for the mint transaction to be mined",
    )
    required_confirmations: int = Field(
        default=2,
        ge=1,
        description="Confirmations required on the payment transaction before minting",
        alias="REQUIRED_CONFIRMATIONS",
    )

    # Relayer
    relayer_private_key: Optional[str] = Field(
        default=None,
        description="Private key of the relayer allowed to call mint()",
        alias="RELAYER_PRIVATE_KEY",
    )

    # Contracts
    token_contract: Optional[str] = Field(
        default=None,
        description="Mintable token contract (also the payment collector)",
        alias="TOKEN_CONTRACT",
    )
    usdc_contract: Optional[str] = Field(
        default=None,
        description="Payment token (USDC) contract",
        alias="USDC_CONTRACT",
    )

    # Pricing
    price_usdc: str = Field(
        default="5",
        description="Exact payment expected, in whole USDC",
        alias="PRICE_USDC",
    )
    usdc_decimals: int = Field(default=6, ge=0, le=77, alias="USDC_DECIMALS")
    mint_amount: str = Field(
        default="5000",
        description="Tokens minted per payment, in whole tokens",
        alias="MINT_AMOUNT",
    )
    token_decimals: int = Field(default=18, ge=0, le=77, alias="TOKEN_DECIMALS")

    # Idempotency ledger
    upstash_redis_rest_url: Optional[str] = Field(
        default=None,
        description="Upstash Redis REST URL",
        alias="UPSTASH_REDIS_REST_URL",
    )
    upstash_redis_rest_token: Optional[str] = Field(
        default=None,
        description="Upstash Redis REST token",
        alias="UPSTASH_REDIS_REST_TOKEN",
    )
    ledger_database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL for the ledger (used when Upstash is not configured)",
        alias="LEDGER_DATABASE_URL",
    )
    processed_ttl_seconds: int = Field(
        default=86400,
        gt=0,
        description="How long a processed payment stays marked",
    )

    @property
    def expected_payment_units(self) -> int:
        """Expected payment in USDC base units."""
        return parse_units(self.price_usdc, self.usdc_decimals)

    @property
    def mint_units(self) -> int:
        """Mint amount in token base units."""
        return parse_units(self.mint_amount, self.token_decimals)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
