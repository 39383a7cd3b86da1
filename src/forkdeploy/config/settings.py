"""
Runtime settings using Pydantic.

Provides environment-based configuration loading with FORKDEPLOY_ prefix.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for a deployment run."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FORKDEPLOY_",
        extra="ignore",
    )

    # Inputs
    config_path: Path = Path("deployment/config/config.yaml")

    # Outputs
    output_dir: Path = Path("deployment/output")
    ledger_path: Path = Path("deployment/output/ledger.json")

    # Backend
    backend: str = "simulated"

    # Step retry settings
    max_attempts: int = Field(3, ge=1)
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
