# src/presskit_auth/config.py

import logging
from pathlib import Path
from typing import Any, Literal, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Determine the base directory of this config file
# .env is at the service root, two levels up from src/presskit_auth/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    logger.info(f"[CONFIG] Loaded .env file from: {ENV_FILE_PATH}")
else:
    logger.info(f"[CONFIG] .env file not found at {ENV_FILE_PATH}. Relying on environment variables.")

# Browsers cap cookie lifetime at 400 days.
FOUR_HUNDRED_DAYS = 400 * 24 * 60 * 60


class Settings(BaseSettings):
    # === Supabase project ===
    SUPABASE_URL: AnyHttpUrl
    SUPABASE_ANON_KEY: str
    # HS256 secret for legacy projects; when unset tokens are checked against the project's JWKS
    SUPABASE_JWT_SECRET: Optional[str] = None
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # === Redirects ===
    DEFAULT_REDIRECT_PATH: str = "/dashboard"
    LOGIN_PATH: str = "/login"

    # === Auth cookies ===
    AUTH_COOKIE_SECURE: bool = True
    AUTH_COOKIE_DOMAIN: Optional[str] = None
    AUTH_COOKIE_MAX_AGE: int = FOUR_HUNDRED_DAYS
    AUTH_COOKIE_SAMESITE: Literal["lax", "strict", "none"] = "lax"

    # === Session event stream ===
    SESSION_EVENTS_KEEPALIVE_SECONDS: float = 15.0

    # === Logging ===
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["plain", "json"] = "plain"

    # === Derived properties ===
    @property
    def SUPABASE_AUTH_URL(self) -> str:
        return f"{str(self.SUPABASE_URL).rstrip('/')}/auth/v1"

    @property
    def SUPABASE_PROJECT_REF(self) -> str:
        return urlparse(str(self.SUPABASE_URL)).hostname.split(".")[0]

    @property
    def AUTH_STORAGE_KEY(self) -> str:
        # Same cookie name the browser SDK uses, so both sides share one session
        return f"sb-{self.SUPABASE_PROJECT_REF}-auth-token"

    @property
    def JWKS_URI(self) -> str:
        return f"{self.SUPABASE_AUTH_URL}/.well-known/jwks.json"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("DEFAULT_REDIRECT_PATH", "LOGIN_PATH", mode="before")
    @classmethod
    def require_relative_path(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.startswith("/") or v.startswith("//"):
            raise ValueError(f"Expected a same-origin path starting with '/', got {v!r}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalise_log_level(cls, v: Any) -> str:
        level = str(v).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown LOG_LEVEL: {v!r}")
        return level


try:
    settings = Settings()
    logger.info(f"[CONFIG] Supabase Auth URL: {settings.SUPABASE_AUTH_URL}")
    logger.info(f"[CONFIG] Auth storage key: {settings.AUTH_STORAGE_KEY}")
except Exception as e:
    logger.error(f"[CONFIG] Error instantiating Settings: {e}")
    raise
