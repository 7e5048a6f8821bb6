"""
Insurance Relay Configuration
=============================
All environment variables in one place. Pydantic Settings validates
types at startup so a bad endpoint or timeout fails fast, not halfway
through a relay round trip.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Loaded from environment variables or a .env file."""

    # --- Prediction backend ---
    backend_base_url: str = "http://127.0.0.1:5050"
    backend_timeout_seconds: float = 10.0

    # --- Relay channel ---
    relay_base_url: str = "http://127.0.0.1:8000"
    # The channel itself never times out a reply, so the client does.
    relay_reply_timeout_seconds: float = 30.0
    reactivate_on_deactivate: bool = True
    max_reactivation_attempts: int = 3

    # --- Aggregation ---
    aggregation_window_days: int = 30

    # --- Request defaults (applied by the request builder only) ---
    default_age: int = 18
    default_bmi: float = 25.0
    default_heart_rate: float = 70.0
    default_steps: float = 10000.0
    default_sleep_hours: float = 7.0

    # --- App settings ---
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:8081", "http://localhost:19006"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
