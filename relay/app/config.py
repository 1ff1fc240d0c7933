"""
Configuration module for the Jira Relay.

This module uses Pydantic Settings to load and validate environment variables
for the listening socket, CORS policy, rate limiting and the outbound Jira
request policy (timeout and browser-like headers).

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9,fa;q=0.8"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Constructed once at startup and handed to ``create_app``; handlers read it
    from ``app.state.settings`` rather than from the environment.
    """

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the relay server",
    )

    PORT: int = Field(
        default=3000,
        description="Port to bind the relay server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # CORS Configuration
    # =========================================================================

    JIRA_PROXY_ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins ('*' for any)",
    )

    # =========================================================================
    # Rate Limiting (applied to /api/* routes)
    # =========================================================================

    RATE_LIMIT_WINDOW_MINUTES: int = Field(
        default=15,
        description="Length of the rate-limit window in minutes",
        ge=1,
    )

    RATE_LIMIT_MAX_REQUESTS: int = Field(
        default=200,
        description="Maximum requests per client IP within one window",
        ge=1,
    )

    # =========================================================================
    # Upstream (Jira) Request Policy
    # =========================================================================

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=20.0,
        description="Total time allowed for one upstream call, body included",
        gt=0,
    )

    UPSTREAM_USER_AGENT: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent presented to Jira (empty string omits the header)",
    )

    UPSTREAM_ACCEPT_LANGUAGE: str = Field(
        default=DEFAULT_ACCEPT_LANGUAGE,
        description="Accept-Language presented to Jira (empty string omits the header)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return JIRA_PROXY_ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs; ``["*"]`` when every origin is allowed.
        """
        origins = [
            origin.strip()
            for origin in self.JIRA_PROXY_ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]
        return origins or ["*"]

    @property
    def rate_limit(self) -> str:
        """Rate limit in the notation understood by slowapi/limits."""
        return f"{self.RATE_LIMIT_MAX_REQUESTS} per {self.RATE_LIMIT_WINDOW_MINUTES} minutes"

    @property
    def rate_limit_message(self) -> str:
        return (
            "Too many requests from this IP, please try again after "
            f"{self.RATE_LIMIT_WINDOW_MINUTES} minutes."
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate LOG_LEVEL is a standard logging level name.

        Raises:
            ValueError: If the level is not recognised
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        level = v.strip().upper()
        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return level

    @field_validator("UPSTREAM_USER_AGENT", "UPSTREAM_ACCEPT_LANGUAGE")
    @classmethod
    def strip_header_value(cls, v: str) -> str:
        return v.strip()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Raises:
        ValidationError: If environment variables are present but invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Review the loaded settings and return a status report.

    Called during application startup; warnings are logged, never fatal.

    Returns:
        Dictionary with any warnings and the effective policy values.

    Example:
        >>> report = validate_configuration(Settings())
        >>> report["warnings"]
        ['JIRA_PROXY_ALLOWED_ORIGINS allows any origin']
    """
    warnings = []

    if "*" in settings.allowed_origins_list:
        warnings.append("JIRA_PROXY_ALLOWED_ORIGINS allows any origin")

    if settings.UPSTREAM_TIMEOUT_SECONDS > 60:
        warnings.append(
            "UPSTREAM_TIMEOUT_SECONDS is above 60s; callers may give up before Jira does"
        )

    if not settings.UPSTREAM_USER_AGENT:
        warnings.append("UPSTREAM_USER_AGENT is empty; Jira's edge may reject bare clients")

    return {
        "warnings": warnings,
        "allowed_origins": settings.allowed_origins_list,
        "rate_limit": settings.rate_limit,
        "upstream_timeout_seconds": settings.UPSTREAM_TIMEOUT_SECONDS,
    }
