"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from giftcards.services.code_generator import CANONICAL_CODE_PATTERN


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Persistence - one state document stored under state_key
    database_url: str = "sqlite:///./giftcards.db"
    state_key: str = "giftcard-state"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Gift Card API"
    api_version: str = "0.1.0"
    api_description: str = "Prepaid gift card issuing and redemption service"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True
    service_name: str = "giftcards-api"

    # Card policy (amounts in minor units, $5.00 - $1000.00)
    min_amount_minor: int = 500
    max_amount_minor: int = 100_000
    min_expiry_days: int = 1
    max_expiry_days: int = 365
    max_code_attempts: int = 5

    # Rate limiting
    rate_limit_window_seconds: int = 3600
    generate_max_attempts: int = 20
    redeem_max_attempts: int = 10
    admin_unlock_max_attempts: int = 10
    rate_limit_admin_unlock: bool = False

    # Admin access
    admin_unlock_code: str = "0000-0000-0000-0000"
    admin_unlock_threshold: int = 10
    reset_escalation_on_failed_redeem: bool = False
    admin_email: str = "admin@example.com"
    admin_password_hash: str = ""  # Argon2 hash, empty disables password login
    generation_key_hash: str = ""  # Argon2 hash of the optional generation authKey

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start with a store it cannot open or with card
        policy bounds that would reject every request.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("sqlite", "postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a SQLite or PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.state_key:
            errors.append("STATE_KEY cannot be empty")

        if self.min_amount_minor <= 0 or self.min_amount_minor > self.max_amount_minor:
            errors.append(
                f"Invalid amount bounds: {self.min_amount_minor}..{self.max_amount_minor}"
            )

        if self.min_expiry_days <= 0 or self.min_expiry_days > self.max_expiry_days:
            errors.append(
                f"Invalid expiry bounds: {self.min_expiry_days}..{self.max_expiry_days}"
            )

        if self.max_code_attempts < 1:
            errors.append("MAX_CODE_ATTEMPTS must be at least 1")

        if self.rate_limit_window_seconds <= 0:
            errors.append("RATE_LIMIT_WINDOW_SECONDS must be positive")

        if self.admin_unlock_threshold < 1:
            errors.append("ADMIN_UNLOCK_THRESHOLD must be at least 1")

        if not CANONICAL_CODE_PATTERN.match(self.admin_unlock_code):
            errors.append("ADMIN_UNLOCK_CODE must be in XXXX-XXXX-XXXX-XXXX form (A-Z, 0-9)")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
