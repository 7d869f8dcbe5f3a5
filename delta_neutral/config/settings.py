"""
Engine settings with Pydantic validation.

Supports loading secrets from multiple sources (in order of priority):
1. Environment variables (highest priority)
2. Secret files in secrets/ directory
3. .env file (lowest priority)

Protocol parameters (safety margins, minimum amounts, fee rates, oracle
expiry, keeper thresholds) live in risk.yaml next to this module and are
read through load_risk_config().
"""
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Base directory
BASE_DIR = Path(__file__).parent.parent.parent
CONFIG_DIR = Path(__file__).parent
SECRETS_DIR = BASE_DIR / "secrets"


def load_secret_from_file(filename: str) -> Optional[str]:
    """
    Load a secret from a file in the secrets directory.

    Args:
        filename: Name of the file in secrets/ directory

    Returns:
        The secret value (stripped of whitespace), or None if file doesn't exist
    """
    secret_path = SECRETS_DIR / filename
    if secret_path.exists():
        try:
            with open(secret_path, "r") as f:
                return f.read().strip()
        except (IOError, OSError):
            return None
    return None


def get_secret(env_var: str, secret_file: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret from environment variable or file.

    Priority:
    1. Environment variable
    2. Secret file
    3. Default value
    """
    env_value = os.getenv(env_var)
    if env_value:
        return env_value

    file_value = load_secret_from_file(secret_file)
    if file_value:
        return file_value

    return default


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables and secret files.

    Example:
        # Using environment variable
        export AUTHORITY_SECRET=some-long-random-string

        # Using secret file
        echo "some-long-random-string" > secrets/authority_secret.txt
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    paper_trading: bool = Field(default=True, alias="PAPER_TRADING")

    # Persistence
    state_db_path: Optional[str] = Field(default=None, alias="STATE_DB_PATH")

    # Addresses
    fee_collector_addr: str = Field(default="fee_collector", alias="FEE_COLLECTOR_ADDR")
    controller_addr: str = Field(default="controller", alias="CONTROLLER_ADDR")

    # Signing key for capability tokens - loaded from env or secrets file
    authority_secret: str = Field(
        default_factory=lambda: get_secret("AUTHORITY_SECRET", "authority_secret.txt", ""),
        alias="AUTHORITY_SECRET",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def check_required_secrets(self) -> list[str]:
        """
        Check if all required secrets are configured.

        Returns:
            List of missing secret names (empty if all present)
        """
        missing = []
        if self.is_production and not self.authority_secret:
            missing.append("AUTHORITY_SECRET (authority_secret.txt or env var)")
        if not self.paper_trading and not self.state_db_path:
            missing.append("STATE_DB_PATH (env var)")
        return missing


# Global settings instance (lazy-loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings


# Protocol parameters loaded from YAML
_risk_config: Optional[dict] = None


def load_risk_config() -> dict:
    """Load protocol parameters from risk.yaml."""
    global _risk_config
    if _risk_config is None:
        risk_yaml_path = CONFIG_DIR / "risk.yaml"
        if not risk_yaml_path.exists():
            raise FileNotFoundError(f"Risk config not found: {risk_yaml_path}")

        with open(risk_yaml_path, "r") as f:
            _risk_config = yaml.safe_load(f)

    return _risk_config


def get_collateral_config() -> dict:
    """Get collateral-ratio section from config."""
    return load_risk_config().get("collateral", {})


def get_amount_limits() -> dict:
    """Get minimum uusd amounts section."""
    return load_risk_config().get("amounts", {})


def get_fee_config() -> dict:
    """Get fee collection section."""
    return load_risk_config().get("fees", {})


def get_oracle_config() -> dict:
    """Get oracle freshness section."""
    return load_risk_config().get("oracle", {})


def get_keeper_config() -> dict:
    """Get keeper threshold section."""
    return load_risk_config().get("keeper", {})


def get_asset_lists() -> dict:
    """Get mirror asset allow-list and preemptive-close list."""
    return load_risk_config().get("assets", {})


def get_token_config() -> dict:
    """Get token naming section."""
    return load_risk_config().get("tokens", {})
