"""
Process-wide configuration for the marketplace billing backend
"""
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

# Load environment variables first
load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    stripe_secret_key: str
    stripe_webhook_secret: str
    supabase_url: str
    supabase_service_role_key: str
    supabase_jwt_secret: Optional[str] = None
    frontend_url: str = "http://localhost:3000"
    webhook_tolerance: int = 300
    log_level: str = "INFO"


def _require(name: str, *fallbacks: str) -> str:
    for key in (name, *fallbacks):
        value = os.getenv(key)
        if value:
            return value
    raise ValueError(f"{name} environment variable is required")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Build settings from the environment once per process
    """
    return Settings(
        stripe_secret_key=_require("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=_require("STRIPE_WEBHOOK_SECRET"),
        supabase_url=_require("SUPABASE_URL"),
        supabase_service_role_key=_require("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY"),
        supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        webhook_tolerance=int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def reset_settings_cache() -> None:
    """Forget cached settings (tests change the environment between cases)."""
    get_settings.cache_clear()
