"""
Configuration settings for the cinepath application.

Centralized configuration using Pydantic Settings for type-safe environment
variable handling. All settings can be overridden via environment variables
with the CINEPATH_ prefix.

Example:
    export CINEPATH_LOG_LEVEL=DEBUG
    export CINEPATH_TMDB_API_KEY=...
    python -m cinepath.main crawl-schedules
"""

import logging.config
from pathlib import Path
from typing import Any
from typing import Dict
from typing import Optional

import structlog
from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables with the
    CINEPATH_ prefix (e.g., CINEPATH_LOG_LEVEL=DEBUG).
    """

    model_config = SettingsConfigDict(
        env_prefix="CINEPATH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    db_path: Path = Field(
        default=Path("data/tokyo_cinepath.db"),
        description="Path to SQLite database file"
    )

    log_dir: Path = Field(
        default=Path("logs"),
        description="Directory for the rotating JSON run log"
    )

    # Web server configuration
    host: str = Field(
        default="0.0.0.0",
        description="Host address to bind the API server"
    )

    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port number for the API server"
    )

    # Outbound HTTP behaviour
    request_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="HTTP request timeout in seconds"
    )

    user_agent: str = Field(
        default="TokyoCinePath/1.1 (+https://github.com/tokyo-cinepath)",
        description="User-Agent string for HTTP requests"
    )

    # Showtime source (eiga.com, Tokyo = prefecture 13)
    base_url: str = Field(
        default="https://eiga.com",
        description="Base URL of the film-information website"
    )

    region_path: str = Field(
        default="/theater/13/",
        description="URL path of the regional cinema listing"
    )

    cinema_sync_delay: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Seconds to wait after each cinema page during cinema sync"
    )

    # Geocoding
    geocoder_url: str = Field(
        default="https://nominatim.openstreetmap.org/search",
        description="Nominatim search endpoint"
    )

    # Metadata sources
    tmdb_api_url: str = Field(
        default="https://api.themoviedb.org/3",
        description="TMDB API base URL"
    )

    tmdb_image_url: str = Field(
        default="https://image.tmdb.org/t/p",
        description="TMDB image CDN base URL"
    )

    tmdb_api_key: Optional[str] = Field(
        default=None,
        description="TMDB API key"
    )

    omdb_api_url: str = Field(
        default="http://www.omdbapi.com/",
        description="OMDb API endpoint"
    )

    omdb_api_key: Optional[str] = Field(
        default=None,
        description="OMDb API key"
    )

    douban_search_url: str = Field(
        default="https://www.douban.com/search",
        description="Douban search page"
    )

    enable_douban_rating: bool = Field(
        default=False,
        description="Query Douban during enrichment (off: it triggers login walls)"
    )

    douban_delay: float = Field(
        default=3.0,
        ge=0.0,
        le=60.0,
        description="Seconds to wait before every Douban request"
    )

    timezone: str = Field(
        default="Asia/Tokyo",
        description="Timezone used to decide what 'today' is"
    )

    # Development and debugging
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging and error traces"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got {v}")
        return upper_v

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Path) -> Path:
        """Ensure database directory exists."""
        v.parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def listing_url(self) -> str:
        """Get the complete URL of the regional cinema listing."""
        return f"{self.base_url.rstrip('/')}{self.region_path}"

    @property
    def logging_config(self) -> Dict[str, Any]:
        """
        dictConfig for the ``cinepath`` logger tree.

        Console output is plain text (JSON in debug mode); the rotating file
        under ``log_dir`` is always JSON so runs can be grepped and replayed.
        """
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "plain": {
                    "format": "%(asctime)s %(levelname)-7s %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                    "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": self.log_level,
                    "formatter": "json" if self.debug_mode else "plain",
                    "stream": "ext://sys.stdout",
                },
                "run_file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "level": "INFO",
                    "formatter": "json",
                    "filename": str(self.log_dir / "cinepath.log"),
                    "maxBytes": 10 * 1024 * 1024,
                    "backupCount": 5,
                    "encoding": "utf-8",
                },
            },
            "loggers": {
                "cinepath": {
                    "level": self.log_level,
                    "handlers": ["console", "run_file"],
                    "propagate": False,
                },
                # Request lines and SQL chatter stay out of batch output
                "aiohttp.access": {"level": "WARNING", "handlers": ["console"], "propagate": False},
                "aiosqlite": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            },
            "root": {"level": "WARNING", "handlers": ["console"]},
        }

    def setup_logging(self) -> None:
        """Apply logging_config and route structlog through the stdlib handlers."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        logging.config.dictConfig(self.logging_config)

        renderer = structlog.dev.ConsoleRenderer() if self.debug_mode else structlog.processors.JSONRenderer()
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
                renderer,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )


# Global settings instance, used by the CLI entry point only
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings
