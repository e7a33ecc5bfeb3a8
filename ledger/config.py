import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

INSECURE_SESSION_SECRET = "fallback-secret-key-change-me"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    session_secret: str = INSECURE_SESSION_SECRET
    session_ttl_hours: int = 24
    session_cookie_name: str = "admin_session"
    session_cookie_secure: bool = False
    bcrypt_rounds: int = 10
    default_admin_username: str = "admin"
    default_admin_password: str = "admin123"
    database_url: Optional[str] = None
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    secret = os.getenv("SESSION_SECRET")
    if not secret:
        logger.warning("SESSION_SECRET is not set. Using an insecure default key for development.")
        secret = INSECURE_SESSION_SECRET

    return Settings(
        session_secret=secret,
        session_ttl_hours=int(os.getenv("SESSION_TTL_HOURS", 24)),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "admin_session"),
        session_cookie_secure=_env_bool("SESSION_COOKIE_SECURE", False),
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", 10)),
        default_admin_username=os.getenv("DEFAULT_ADMIN_USERNAME", "admin"),
        default_admin_password=os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123"),
        database_url=os.getenv("DATABASE_URL") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
    )
