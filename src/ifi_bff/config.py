# src/ifi_bff/config.py

import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the project root, two levels up from src/ifi_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    logger.info("iFi-BFF: loaded .env file from %s", ENV_FILE_PATH)
else:
    logger.debug("iFi-BFF: no .env file at %s, relying on environment variables", ENV_FILE_PATH)


class Settings(BaseSettings):
    # === Backend API (opaque collaborator) ===
    API_BASE_URL: str = "http://localhost:3000/api"
    HTTP_TIMEOUT_SECONDS: float = 10.0
    HTTP_VERIFY_TLS: bool = True

    # === Pages ===
    LOGIN_PATH: str = "/html/Login.html"
    ONBOARDING_PATH: str = "/html/onboarding.html"

    # === Session guard ===
    MAX_LOGIN_REDIRECTS: int = 2
    USER_REFRESH_INTERVAL_SECONDS: float = 5 * 60

    # === Onboarding cache ===
    ONBOARDING_CACHE_TTL_SECONDS: float = 5 * 60

    # === Page bootstrap ===
    DATA_SERVICE_MAX_WAIT_MS: int = 5000
    DATA_SERVICE_POLL_INTERVAL_MS: int = 100

    # === Session cookies ===
    SESSION_COOKIE_NAME: str = "session_id"
    TAB_COOKIE_NAME: str = "tab_id"
    SESSION_COOKIE_MAX_AGE: int = 60 * 60 * 4  # 4 hours
    SESSION_COOKIE_SECURE: bool = False

    # === Derived endpoints ===
    @property
    def ONBOARDING_DATA_URL(self) -> str:
        return f"{self.API_BASE_URL}/user/onboarding-data"

    @property
    def USER_PROFILE_URL(self) -> str:
        return f"{self.API_BASE_URL}/auth/me"

    @property
    def LOGOUT_URL(self) -> str:
        return f"{self.API_BASE_URL}/auth/logout"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("API_BASE_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("API_BASE_URL must be a non-empty string.")
        return v.strip().rstrip("/")

    @model_validator(mode="after")
    def check_positive_intervals(self) -> "Settings":
        if self.ONBOARDING_CACHE_TTL_SECONDS <= 0:
            raise ValueError("ONBOARDING_CACHE_TTL_SECONDS must be positive.")
        if self.DATA_SERVICE_POLL_INTERVAL_MS <= 0:
            raise ValueError("DATA_SERVICE_POLL_INTERVAL_MS must be positive.")
        if self.MAX_LOGIN_REDIRECTS < 0:
            raise ValueError("MAX_LOGIN_REDIRECTS cannot be negative.")
        return self


try:
    settings = Settings()
except Exception:
    logger.exception("iFi-BFF: error instantiating Settings")
    raise
