"""
Configuration management for the Diamond Deployer.
Handles environment variables and settings for diamond deployment and upgrades.
"""

from typing import Annotated, Any, Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Diamond Deployer"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Blockchain Configuration
    RPC_URL: Optional[str] = None
    # Per-network overrides, "sepolia=https://...,base=https://..."
    NETWORK_RPC_URLS: Annotated[Dict[str, str], NoDecode] = {}

    # Private key for signing (from .env)
    PRIVATE_KEY: Optional[str] = None

    # RPC resilience
    GAS_LIMIT_MULTIPLIER: float = 1.2
    MAX_RETRIES: int = 3
    RETRY_DELAY_MS: int = 2000
    RETRY_BACKOFF: str = "fixed"
    RECEIPT_TIMEOUT_SECONDS: int = 120

    # Minimum deployer balance before a warning is logged (0.01 ETH)
    MIN_BALANCE_WEI: int = 10**16

    # Diamond configuration and artifacts
    DIAMONDS_PATH: str = "diamonds"
    ARTIFACTS_PATH: str = "artifacts"
    CUT_FACET_NAME: str = "DiamondCutFacet"

    # Deployment records
    RECORD_BACKEND: str = "json"
    DEPLOYMENTS_PATH: str = "deployments"
    MONGO_URI: Optional[str] = None
    MONGO_DB_NAME: str = "diamond_deployer"

    # Reconciliation
    BATCH_CUTS: bool = True
    STRICT_PRIORITY_TIES: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"

    @field_validator("NETWORK_RPC_URLS", mode="before")
    @classmethod
    def parse_network_rpc_urls(cls, v):
        """Parse network RPC URLs from "name=url" pairs or a mapping."""
        if isinstance(v, str):
            urls = {}
            for pair in v.split(","):
                if not pair.strip():
                    continue
                name, _, url = pair.partition("=")
                urls[name.strip()] = url.strip()
            return urls
        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment setting."""
        allowed_envs = ["development", "staging", "production"]
        if v not in allowed_envs:
            raise ValueError(f"Environment must be one of {allowed_envs}")
        return v

    @field_validator("GAS_LIMIT_MULTIPLIER")
    @classmethod
    def validate_gas_limit_multiplier(cls, v):
        if not 1.0 <= v <= 2.0:
            raise ValueError("GAS_LIMIT_MULTIPLIER must be between 1.0 and 2.0")
        return v

    @field_validator("MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v):
        if not 1 <= v <= 10:
            raise ValueError("MAX_RETRIES must be between 1 and 10")
        return v

    @field_validator("RETRY_DELAY_MS")
    @classmethod
    def validate_retry_delay(cls, v):
        if not 100 <= v <= 30000:
            raise ValueError("RETRY_DELAY_MS must be between 100 and 30000")
        return v

    @field_validator("RETRY_BACKOFF")
    @classmethod
    def validate_retry_backoff(cls, v):
        allowed = ["fixed", "linear", "exponential"]
        if v not in allowed:
            raise ValueError(f"RETRY_BACKOFF must be one of {allowed}")
        return v

    @field_validator("RECORD_BACKEND")
    @classmethod
    def validate_record_backend(cls, v):
        allowed = ["json", "mongodb"]
        if v not in allowed:
            raise ValueError(f"RECORD_BACKEND must be one of {allowed}")
        return v

    def get_rpc_url(self, network_name: str) -> Optional[str]:
        """Get the RPC URL for a network (per-network override first)."""
        return self.NETWORK_RPC_URLS.get(network_name) or self.RPC_URL

    def get_retry_policy_kwargs(self) -> Dict[str, Any]:
        """Get keyword arguments for a RetryPolicy."""
        return {
            "max_retries": self.MAX_RETRIES,
            "retry_delay_ms": self.RETRY_DELAY_MS,
            "backoff": self.RETRY_BACKOFF,
            "gas_limit_multiplier": self.GAS_LIMIT_MULTIPLIER,
            "receipt_timeout_seconds": self.RECEIPT_TIMEOUT_SECONDS,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Create global settings instance
settings = Settings()


def is_production() -> bool:
    """Check if running in production environment."""
    return settings.ENVIRONMENT == "production"


def is_development() -> bool:
    """Check if running in development environment."""
    return settings.ENVIRONMENT == "development"
