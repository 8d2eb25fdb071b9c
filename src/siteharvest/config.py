"""
Configuration for siteharvest.

Uses Pydantic Settings for type-safe environment variable loading. Every
setting can be supplied as ``SITEHARVEST_<NAME>`` in the environment or in a
``.env`` file; CLI flags override them.
"""

from functools import lru_cache
from typing import Literal

from pydantic import ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings

from siteharvest.exceptions import ConfigurationError
from siteharvest.http import DEFAULT_USER_AGENT

type FetchStrategy = Literal["http", "browser"]


class CrawlSettings(BaseSettings):
    """Crawler settings."""

    model_config = ConfigDict(
        env_prefix="SITEHARVEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Crawl limits
    max_pages: int = Field(default=200, ge=1, description="Maximum pages collected per crawl")
    per_page_timeout: float = Field(default=15.0, gt=0, le=300, description="Per-attempt fetch timeout (s)")
    max_concurrent_fetches: int = Field(default=5, ge=1, le=50, description="Concurrent page fetches")
    respect_robots: bool = Field(default=False, description="Skip URLs disallowed by robots.txt")

    # Fetching
    strategy: FetchStrategy = Field(default="http", description="Page fetch strategy: http or browser")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header for all requests")
    headless: bool = Field(default=True, description="Run the browser in headless mode")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("strategy", mode="before")
    @classmethod
    def normalise_strategy(cls, v: str) -> str:
        """Accept any case for the strategy name."""
        return v.lower() if isinstance(v, str) else v


def load_settings() -> CrawlSettings:
    """
    Load settings from the environment and .env.

    Returns:
        Validated CrawlSettings.

    Raises:
        ConfigurationError: If a SITEHARVEST_* value is invalid.
    """
    try:
        return CrawlSettings()
    except PydanticValidationError as e:
        names = sorted({str(error["loc"][0]) for error in e.errors() if error.get("loc")})
        raise ConfigurationError(
            f"Invalid configuration: {e.error_count()} error(s) in {', '.join(names) or 'settings'}",
            setting=names[0] if names else None,
        ) from e


@lru_cache
def get_settings() -> CrawlSettings:
    """Get cached settings instance."""
    return load_settings()
