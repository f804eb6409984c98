"""
backend/lumilink/config.py

Purpose:
    Central settings loading for the badge engine.

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
    MONGO_DB: str = "lumilink"
    LOG_LEVEL: str = "INFO"

    # Badge catalog (empty = built-in definitions)
    BADGE_CATALOG_FILE: str = ""

    # Bounded external calls; a timeout skips one badge check
    METRIC_SOURCE_TIMEOUT_SECONDS: float = 2.0
    LEDGER_TIMEOUT_SECONDS: float = 2.0

    # Periodic catch-up sweep over all users
    BADGE_SWEEP_ENABLED: bool = False
    BADGE_SWEEP_INTERVAL_MINUTES: int = 30

    BADGE_LEADERBOARD_MAX: int = 100

    # Event bus (in-process)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 10000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 2000
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 200
    EVENT_HANDLER_ACTIVITY_ENABLED: bool = True
    EVENT_HANDLER_ACTIVITY_CONCURRENCY: int = 4
    EVENT_HANDLER_NOTIFY_ENABLED: bool = True

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
