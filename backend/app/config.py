"""
backend/app/config.py

Purpose:
    Central settings loading for backend services.

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
    MONGO_URI: str
    MONGO_DB: str = "vipslips"
    JWT_SECRET: str
    JWT_SECRET_OLD: str = ""  # Set during rotation; cleared after 7 days
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Betslip rules
    LEG_MIN_ODDS: float = 1.01  # Leg odds must be strictly greater
    LEG_ORDER_INSERT_RETRIES: int = 3
    BULK_SETTLE_MAX_IDS: int = 200

    # Subscription rules
    REJECT_REASON_MIN_LENGTH: int = 5
    SUBSCRIPTION_EXPIRING_SOON_DAYS: int = 5

    # End-date sweep (APScheduler)
    SUBSCRIPTION_SWEEP_ENABLED: bool = True
    SUBSCRIPTION_SWEEP_INTERVAL_MINUTES: int = 60

    # Seed admin user (leave empty to skip seeding)
    SEED_ADMIN_EMAIL: str = ""

    # Event bus (in-process notifications)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 10000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 2000
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 200
    EVENT_HANDLER_NOTIFICATIONS_ENABLED: bool = True

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
