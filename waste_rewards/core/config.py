# ⚙️ Service Configuration
# Environment-driven settings for the store, Redis, sessions and the advisory client

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from the project root, then from the working directory
load_dotenv(dotenv_path=Path(__file__).parent.parent.parent / ".env")
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}={raw!r}; using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid number for {name}={raw!r}; using default {default}")
        return default


def get_mongodb_config():
    """
    Get MongoDB configuration with fallback options
    Priority: MONGO_URI > MONGODB_URL > MONGODB_URI > default local
    """
    mongo_uri = (
        os.getenv("MONGO_URI")
        or os.getenv("MONGODB_URL")
        or os.getenv("MONGODB_URI")
        or "mongodb://localhost:27017"
    )
    db_name = os.getenv("MONGODB_NAME", "waste_rewards")
    return mongo_uri, db_name


@dataclass
class Settings:
    """Runtime settings; every field has a development default."""

    app_id: str = "local-app"
    store_backend: str = "mongo"
    mongo_uri: str = "mongodb://localhost:27017"
    mongodb_name: str = "waste_rewards"
    redis_url: str = ""
    secret_key: str = "change-me-in-env-waste-rewards-secret"
    session_ttl_minutes: int = 60 * 24 * 30
    advisory_endpoint: str = "http://localhost:8000/api/ai/gemini"
    advisory_timeout_seconds: float = 10.0
    advisory_cache_ttl: int = 3600
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    transaction_max_attempts: int = 5
    image_max_width: int = 800
    image_quality: int = 70
    log_level: str = "INFO"
    slow_request_ms: int = 2500
    cors_origins: list = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        mongo_uri, db_name = get_mongodb_config()
        origins = os.getenv("CORS_ORIGINS", "*")
        settings = cls(
            app_id=os.getenv("APP_ID") or "local-app",
            store_backend=os.getenv("STORE_BACKEND", "mongo").strip().lower(),
            mongo_uri=mongo_uri,
            mongodb_name=db_name,
            redis_url=os.getenv("REDIS_URL", ""),
            secret_key=os.getenv("SECRET_KEY", cls.secret_key),
            session_ttl_minutes=_env_int("SESSION_TTL_MINUTES", cls.session_ttl_minutes),
            advisory_endpoint=os.getenv("ADVISORY_ENDPOINT", cls.advisory_endpoint),
            advisory_timeout_seconds=_env_float("ADVISORY_TIMEOUT_SECONDS", cls.advisory_timeout_seconds),
            advisory_cache_ttl=_env_int("ADVISORY_CACHE_TTL", cls.advisory_cache_ttl),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", cls.gemini_model),
            gemini_api_base=os.getenv("GEMINI_API_BASE", cls.gemini_api_base),
            transaction_max_attempts=max(1, _env_int("TRANSACTION_MAX_ATTEMPTS", cls.transaction_max_attempts)),
            image_max_width=_env_int("IMAGE_MAX_WIDTH", cls.image_max_width),
            image_quality=_env_int("IMAGE_QUALITY", cls.image_quality),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            slow_request_ms=_env_int("SLOW_REQUEST_MS", cls.slow_request_ms),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
        if settings.store_backend not in ("mongo", "memory"):
            logger.warning(f"⚠️ Unknown STORE_BACKEND={settings.store_backend!r}; falling back to mongo")
            settings.store_backend = "mongo"
        if settings.secret_key == cls.secret_key:
            logger.warning("⚠️ SECRET_KEY is not set; using the development key")
        return settings

    def describe(self) -> str:
        """Loggable summary without secrets."""
        uri = self.mongo_uri.split("@")[-1] if "@" in self.mongo_uri else self.mongo_uri
        return (
            f"namespace={self.app_id} store={self.store_backend} mongo={uri} db={self.mongodb_name} "
            f"redis={'on' if self.redis_url else 'off'} advisory={self.advisory_endpoint}"
        )
