"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional

import httpx

from pushtester.services.push import constants


class Settings(BaseSettings):
    """Settings loaded from environment variables and an optional .env file"""

    # APNs endpoints
    APNS_PRODUCTION_URL: str = constants.APNS_PRODUCTION_URL
    APNS_SANDBOX_URL: str = constants.APNS_SANDBOX_URL

    # Transport
    APNS_REQUEST_TIMEOUT: float = 30.0  # Whole request budget in seconds
    APNS_CONNECT_TIMEOUT: float = 10.0
    APNS_HTTP2: bool = True  # APNs only speaks HTTP/2

    # Default credentials for the CLI (flags take precedence)
    APNS_TEAM_ID: Optional[str] = None
    APNS_KEY_ID: Optional[str] = None
    APNS_KEY_FILE: Optional[str] = None  # Path to the .p8 auth key
    APNS_BUNDLE_ID: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "WARNING"
    LOG_JSON: bool = False
    LOG_FILE: Optional[str] = None

    @field_validator('APNS_PRODUCTION_URL', 'APNS_SANDBOX_URL', mode='after')
    @classmethod
    def validate_endpoint_url(cls, v: str) -> str:
        """APNs endpoints must be HTTPS origins without a trailing slash."""
        v = v.strip()
        if not v.startswith("https://"):
            raise ValueError(f"APNs endpoint must use https: {v}")
        return v.rstrip("/")

    @field_validator('APNS_REQUEST_TIMEOUT', 'APNS_CONNECT_TIMEOUT', mode='after')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator('LOG_LEVEL', mode='after')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL names a standard logging level."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def endpoint_for(self, environment) -> str:
        """Return the APNs origin for an Environment (or its string value)."""
        if str(getattr(environment, "value", environment)) == "production":
            return self.APNS_PRODUCTION_URL
        return self.APNS_SANDBOX_URL

    def timeout(self) -> httpx.Timeout:
        """Build the httpx timeout used for a single send."""
        return httpx.Timeout(self.APNS_REQUEST_TIMEOUT, connect=self.APNS_CONNECT_TIMEOUT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
