"""Application settings via pydantic-settings."""

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Simulator configuration loaded from environment variables with BTCSIM_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="BTCSIM_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Sessions ---
    max_sessions: int = 1_000

    # --- Keys / entropy ---
    key_entropy_bits: int = 256
    seed_entropy_bits: int = 128
    seed_word_count: int = 12

    # --- Transactions ---
    default_fee: Decimal = Decimal("0.001")
    default_transfer_amount: Decimal = Decimal("1.5")
    initial_utxo_amounts: list[Decimal] = [Decimal("2.5"), Decimal("1.0"), Decimal("0.8")]

    # --- Network / consensus ---
    # Pedagogical flavour, not protocol constants.
    tx_validity_probability: float = 0.90
    block_validation_probability: float = 0.95
    base_block_height: int = 800_000
    propagation_stagger_ms: int = 200
    vote_stagger_ms: int = 300
    sync_step_percent: int = 20
    sync_interval_ms: int = 500

    # --- Forks ---
    fork_resolution_delay_ms: int = 3_000
    fork_race_timeout_ms: int = 1_200_000  # 20 minutes of simulated time
    mean_block_interval_ms: int = 600_000  # 10 minutes
    max_fork_rounds: int = 10

    # --- HD wallet ---
    hd_purpose: int = 44
    hd_coin_type: int = 0
    receiving_address_count: int = 3
    change_address_count: int = 2
    watch_only_address_count: int = 3


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
