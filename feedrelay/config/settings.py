"""
FeedRelay Configuration System
==============================

Configuration management with environment variables and Pydantic models.
Environment variables (``FEEDRELAY_`` prefix, ``__`` for nested sections)
override Field defaults.
"""

from pathlib import Path
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SchedulerSettings(BaseModel):
    """Per-feed polling loop configuration."""
    default_interval_minutes: int = Field(default=60, ge=1, description="Polling interval for feeds that do not set one")
    history_capacity: int = Field(default=200, ge=1, le=10000, description="Identifiers remembered per feed")
    initial_notify_count: int = Field(default=2, ge=0, le=50, description="Items announced on a feed's first scan")
    sample_size: int = Field(default=5, ge=1, le=50, description="Items kept as a sample for field discovery")
    error_detail_length: int = Field(default=100, ge=10, le=1000, description="Max error message chars in status details")
    startup_delay_min_seconds: float = Field(default=2.0, ge=0, description="Lower bound of the startup stagger")
    startup_delay_max_seconds: float = Field(default=7.0, ge=0, description="Upper bound of the startup stagger")
    new_feed_delay_seconds: float = Field(default=1.0, ge=0, description="Delay before the first scan of a newly added feed")

    @model_validator(mode="after")
    def validate_startup_window(self):
        """Ensure the stagger window is not inverted."""
        if self.startup_delay_max_seconds < self.startup_delay_min_seconds:
            raise ValueError("startup_delay_max_seconds must be >= startup_delay_min_seconds")
        return self


class DeliverySettings(BaseModel):
    """Notification formatting and pacing."""
    min_send_interval_seconds: float = Field(default=1.0, ge=0, le=60, description="Minimum spacing between sends to one target")
    content_field_limit: int = Field(default=2000, ge=50, description="Max chars for content-bearing fields")
    metadata_field_limit: int = Field(default=200, ge=20, description="Max chars for other fields")
    embed_body_limit: int = Field(default=4000, ge=100, le=4096, description="Max chars of an embed description")
    telegram_message_limit: int = Field(default=4096, ge=200, le=4096, description="Max chars of one Telegram message")
    embed_title_limit: int = Field(default=250, ge=10, le=256, description="Max chars of embed title and author")
    embed_color: int = Field(default=0x0099FF, ge=0, le=0xFFFFFF, description="Embed side colour")
    footer_text: str = Field(default="FeedRelay", description="Embed footer text")


class LimitsSettings(BaseModel):
    """Network limits."""
    request_timeout: int = Field(default=30, ge=5, le=300, description="Request timeout in seconds")
    max_feed_bytes: int = Field(default=10 * 1024 * 1024, ge=1024, description="Largest feed document accepted")


class DatabaseSettings(BaseModel):
    """Database configuration."""
    path: str = Field(default="data/feedrelay.db", description="SQLite database file path")
    pool_size: int = Field(default=5, ge=1, le=20, description="Connection pool size")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/feedrelay.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")

    @field_validator("file_path")
    @classmethod
    def empty_path_disables_file(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class FeedRelaySettings(BaseSettings):
    """Main application settings."""

    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    limits: LimitsSettings = Field(default_factory=LimitsSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_name: str = Field(default="FeedRelay", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "FEEDRELAY_",
        "extra": "ignore",
    }

    def validate_configuration(self) -> None:
        """Validate complete configuration."""
        errors = []

        try:
            db_path = Path(self.database.path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Invalid database path: {e}")

        if self.logging.file_path:
            try:
                log_path = Path(self.logging.file_path)
                log_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID,
            )

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings() -> FeedRelaySettings:
    """Load settings from environment variables and defaults.

    Returns:
        Loaded and validated settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = FeedRelaySettings()
        settings.validate_configuration()
        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_INVALID,
        ) from e


# Global settings instance
_settings: Optional[FeedRelaySettings] = None


def get_settings(reload: bool = False) -> FeedRelaySettings:
    """Get global settings instance (singleton pattern).

    Args:
        reload: Force reload of settings

    Returns:
        Global settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings()

    return _settings
