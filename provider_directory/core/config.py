"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("supabase", "postgres", "memory")


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_anon_key: str = ""
    database_url: str = ""
    store_backend: str = "supabase"
    yelp_api_key: str = ""
    yelp_default_location: str = "San Francisco, CA"
    sync_limit: int = 50
    worker_port: int = 9000

    @property
    def sync_enabled(self) -> bool:
        return bool(self.yelp_api_key)


def require_yelp_api_key(settings: Settings) -> str:
    if not settings.yelp_api_key:
        raise ConfigError("Yelp API key not configured. Set YELP_API_KEY in your environment or .env file.")
    return settings.yelp_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    supabase_anon_key = os.getenv("SUPABASE_ANON_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    store_backend = os.getenv("STORE_BACKEND", "supabase").strip().lower()
    yelp_api_key = os.getenv("YELP_API_KEY", "")
    yelp_default_location = os.getenv("YELP_DEFAULT_LOCATION", "San Francisco, CA")
    sync_limit = int(os.getenv("SYNC_LIMIT", "50"))
    worker_port = int(os.getenv("WORKER_PORT", "9000"))

    if store_backend not in STORE_BACKENDS:
        raise ConfigError(f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got '{store_backend}'")
    if store_backend == "supabase" and not (supabase_url and supabase_anon_key):
        logger.warning("SUPABASE_URL or SUPABASE_ANON_KEY is not set; store requests will fail.")
    if store_backend == "postgres" and not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not yelp_api_key:
        logger.warning("YELP_API_KEY is not configured; Yelp sync is disabled.")

    return Settings(
        supabase_url=supabase_url,
        supabase_anon_key=supabase_anon_key,
        database_url=database_url,
        store_backend=store_backend,
        yelp_api_key=yelp_api_key,
        yelp_default_location=yelp_default_location,
        sync_limit=sync_limit,
        worker_port=worker_port,
    )
