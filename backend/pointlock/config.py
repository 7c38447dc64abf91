"""
backend/pointlock/config.py

Purpose:
    Central settings loading for the wagering economy backend.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "pointlock"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Weekly allowance (bonus coins)
    WEEKLY_ALLOWANCE_AMOUNT: int = 1000
    ALLOWANCE_COOLDOWN_DAYS: int = 7

    # Optimistic-lock retry for every wallet write
    WALLET_MAX_RETRY_ATTEMPTS: int = 3
    WALLET_RETRY_BACKOFF_MS: int = 50  # multiplied by attempt number

    # Batch allowance distribution (scheduler)
    ALLOWANCE_BATCH_ENABLED: bool = False
    ALLOWANCE_BATCH_SIZE: int = 100
    ALLOWANCE_BATCH_INTERVAL_HOURS: int = 6

    # Slip limits
    SLIP_MAX_PICKS: int = 10
    DRAFT_VALIDATION_MAX_PICKS: int = 8

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
