"""Application settings, read from the environment (and an optional .env file)."""

import json
from typing import Any, List

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_service_list(v: Any) -> List[str]:
    """Parse a list of URLs from a JSON array or a comma-separated string."""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [url.strip() for url in v.split(",") if url.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Course Feedback"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    SECRET_KEY: str = "CHANGE_ME_TO_A_RANDOM_SECRET"

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite:///./course_feedback.db"
    DB_ECHO: bool = False

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"

    # ==========================================
    # Participant metadata collection
    # ==========================================
    # Stored as comma-separated string (or JSON array), parsed to list
    IP_LOOKUP_SERVICES_STR: str = (
        "https://api.ipify.org?format=json,"
        "https://ipapi.co/json/,"
        "https://ip.seeip.org/jsonip"
    )
    IP_LOOKUP_TIMEOUT: float = 2.0  # seconds, per service
    METADATA_TIMEOUT: float = 5.0  # seconds, whole probe chain

    # Cookie-session field holding the anonymous participant ID
    ANONYMOUS_ID_KEY: str = "anonymous_id"

    SEED_DEMO_DATA: bool = True

    @property
    def IP_LOOKUP_SERVICES(self) -> List[str]:
        """Parse IP lookup service URLs from the configured string"""
        return parse_service_list(self.IP_LOOKUP_SERVICES_STR)


settings = Settings()
