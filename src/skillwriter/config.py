"""Application configuration with validation."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def _default_cache_dir() -> Path:
    return Path.home() / ".skillwriter"


class Settings(BaseSettings):
    """
    Runtime settings with validation.

    Every field can be overridden with a ``SKILLWRITER_``-prefixed
    environment variable or a ``.env`` file in the working directory.
    """

    # Cache
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root of the reference and prompt-hash caches"
    )
    prompt_cache_max_age_days: int = Field(
        default=7,
        description="Days a prompt-hash cache entry stays valid"
    )

    # Backend execution
    timeout_seconds: float = Field(
        default=180.0,
        description="Per-section backend timeout in seconds"
    )
    default_model: str = Field(
        default="sonnet",
        description="Logical model id used when none is given"
    )
    debug: bool = Field(
        default=False,
        description="Write raw stream, text and stderr logs under <work dir>/logs"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="text",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ('json', 'text'):
            raise ValueError("Invalid log format. Must be 'json' or 'text'")
        return v_lower

    @field_validator('timeout_seconds')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v

    class Config:
        env_prefix = "SKILLWRITER_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
