"""
Environment Configuration Utility

Provides environment detection and the application settings read from
environment variables (.env is loaded by database.py / server.py).

ENVIRONMENT values:
- production: admin endpoints should be protected with ADMIN_API_KEY
- development: default
- test: automated testing
"""
import os
import logging
from typing import List, Optional

from pydantic import BaseModel

# Valid environment values
VALID_ENVIRONMENTS = {"production", "development", "test"}

# Get current environment (default to development for safety)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").lower()

# Validate environment value
if ENVIRONMENT not in VALID_ENVIRONMENTS:
    logging.warning(f"Invalid ENVIRONMENT '{ENVIRONMENT}', defaulting to 'development'")
    ENVIRONMENT = "development"

TRUE_VALUES = {"1", "true", "yes", "on"}


def is_production() -> bool:
    """Check if running in production environment."""
    return ENVIRONMENT == "production"


def get_bool_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def get_int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logging.warning(f"Invalid integer for {name}={value!r}, using {default}")
        return default


class AppSettings(BaseModel):
    """Runtime settings. Build with load_settings(); override freely in tests."""
    environment: str = "development"

    # Credit policy
    free_trial_credits: int = 5
    # Give credits back when image generation fails after a deduction.
    # Off by default: a failed generation still costs its credits.
    refund_on_failure: bool = False

    # Persistence (first configured wins: MongoDB, then JSON files, else memory only)
    mongo_url: Optional[str] = None
    db_name: Optional[str] = None
    credits_data_dir: Optional[str] = None

    # Payments
    stripe_secret_key: Optional[str] = None
    public_app_url: str = "http://localhost:3000"

    # Admin
    admin_api_key: Optional[str] = None

    # Generation
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-image"
    gemini_timeout_seconds: int = 120

    cors_origins: List[str] = ["http://localhost:3000"]


def load_settings() -> AppSettings:
    """Read AppSettings from the process environment."""
    return AppSettings(
        environment=ENVIRONMENT,
        free_trial_credits=get_int_env("FREE_TRIAL_CREDITS", 5),
        refund_on_failure=get_bool_env("REFUND_ON_FAILURE", False),
        mongo_url=os.environ.get("MONGO_URL") or None,
        db_name=os.environ.get("DB_NAME") or None,
        credits_data_dir=os.environ.get("CREDITS_DATA_DIR") or None,
        stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY") or None,
        public_app_url=os.environ.get("PUBLIC_APP_URL", "http://localhost:3000"),
        admin_api_key=os.environ.get("ADMIN_API_KEY") or None,
        gemini_api_key=os.environ.get("GEMINI_API_KEY") or None,
        gemini_model=os.environ.get("GEMINI_MODEL", "gemini-2.5-flash-image"),
        gemini_timeout_seconds=get_int_env("GEMINI_TIMEOUT_SECONDS", 120),
        cors_origins=[
            origin.strip()
            for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ],
    )


# Log environment on module load
logging.info(f"Environment: {ENVIRONMENT}")
