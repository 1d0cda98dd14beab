"""Centralized configuration management for the PlayerHouse spin service.

Loads all configuration from environment variables with sensible defaults.
"""

from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Config(BaseSettings):
    """Main configuration class for the spin service."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Network Configuration
    default_network: str = Field(default="arbitrum", description="Network used when no preference is stored")
    relay_project_id: str = Field(default="", description="Project id for the operation relay URLs")

    # Owner signers
    owner_private_key: str = Field(default="", description="Custodial (embedded) owner private key")
    extension_wallet_rpc_url: str = Field(default="", description="JSON-RPC bridge of an extension wallet")

    # Service
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=4030)

    # Database
    database_path: str = Field(default="./playerhouse.db")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    # Bet validation
    min_bet: float = Field(default=0.1, description="Lowest accepted bet in fee-token units")
    max_bet: float = Field(default=0.5, description="Highest accepted bet in fee-token units")
    default_bet: float = Field(default=0.1, description="Bet of the corrected re-intent")
    default_paylines: int = Field(default=20)
    reissue_delay_seconds: float = Field(default=0.25)

    # Gas payment
    fee_reserve_units: int = Field(default=100_000, description="Estimated fee reserve (0.1 token, 6 decimals)")
    sponsor_cooldown_seconds: float = Field(default=60.0)

    # Confirmation
    fallback_delay_seconds: float = Field(default=2.0)
    poll_retries: int = Field(default=5)
    poll_interval_seconds: float = Field(default=2.0)

    # Setup
    setup_delay_seconds: float = Field(default=1.0)
    network_switch_settle_seconds: float = Field(default=1.0)


# Global config instance
config = Config()


def validate_config_for_service(service: Literal["server"]) -> None:
    """Validate that required configuration is present for a specific service.

    Args:
        service: The service name to validate configuration for.

    Raises:
        ValueError: If required configuration is missing.
    """
    from src.playerhouse.networks import is_known_network

    errors = []

    if service == "server":
        if not config.owner_private_key and not config.extension_wallet_rpc_url:
            errors.append("Either OWNER_PRIVATE_KEY or EXTENSION_WALLET_RPC_URL must be set")
        if not is_known_network(config.default_network):
            errors.append(f"DEFAULT_NETWORK '{config.default_network}' is not a known network")
        if config.min_bet > config.max_bet:
            errors.append("MIN_BET must not exceed MAX_BET")
        if not config.min_bet <= config.default_bet <= config.max_bet:
            errors.append(f"DEFAULT_BET {config.default_bet} must lie within [MIN_BET, MAX_BET]")
        if not 1 <= config.default_paylines <= 255:
            errors.append(f"DEFAULT_PAYLINES {config.default_paylines} must lie within [1, 255]")

    if errors:
        error_msg = f"Configuration errors for {service} service:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)
