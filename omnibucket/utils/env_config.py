"""
Environment-based configuration for Omnibucket.

Settings come from environment variables, optionally seeded from a .env
file at the project root.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv
import structlog

logger = structlog.get_logger(__name__)

MIN_UPLOAD_CONCURRENCY = 1
MAX_UPLOAD_CONCURRENCY = 20

# Load environment variables from .env file
env_file = Path(__file__).parent.parent.parent / ".env"
if env_file.exists():
    load_dotenv(env_file, override=True)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(key, "").lower()
    return value in ("true", "1", "yes", "on") if value else default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer value from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_env_path(key: str, default: Path) -> Path:
    """Get a user-expanded path from environment variable."""
    value = os.getenv(key)
    return Path(value).expanduser() if value else default


def clamp_concurrency(value: int) -> int:
    """Clamp an upload concurrency limit into 1-20."""
    return max(MIN_UPLOAD_CONCURRENCY, min(MAX_UPLOAD_CONCURRENCY, value))


@dataclass
class AppSettings:
    """Application settings from environment variables."""

    # Environment
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    debug: bool = field(default_factory=lambda: get_env_bool("DEBUG", True))

    # Application info (constants - not configurable via environment)
    app_name: str = "Omnibucket"
    app_version: str = "0.1.0"

    # Local data
    data_dir: Path = field(default_factory=lambda: get_env_path("OMNIBUCKET_DATA_DIR", Path.home() / ".omnibucket"))
    metadata_file: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["OMNIBUCKET_METADATA_FILE"]).expanduser()
        if os.getenv("OMNIBUCKET_METADATA_FILE")
        else None
    )
    settings_file: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["OMNIBUCKET_SETTINGS_FILE"]).expanduser()
        if os.getenv("OMNIBUCKET_SETTINGS_FILE")
        else None
    )

    # Upload Configuration
    upload_max_concurrent: int = field(default_factory=lambda: get_env_int("UPLOAD_MAX_CONCURRENT", 5))
    upload_keep_original: bool = field(default_factory=lambda: get_env_bool("UPLOAD_KEEP_ORIGINAL", False))
    upload_generate_blurhash: bool = field(default_factory=lambda: get_env_bool("UPLOAD_GENERATE_BLURHASH", False))

    # Storage Configuration
    signed_url_expires_in: int = field(default_factory=lambda: get_env_int("SIGNED_URL_EXPIRES_IN", 3600))
    list_page_size: int = field(default_factory=lambda: get_env_int("LIST_PAGE_SIZE", 100))
    download_chunk_size: int = field(default_factory=lambda: get_env_int("DOWNLOAD_CHUNK_SIZE", 65536))
    download_timeout: int = field(default_factory=lambda: get_env_int("DOWNLOAD_TIMEOUT", 300))

    # Logging Configuration
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json_format: bool = field(default_factory=lambda: get_env_bool("LOG_JSON_FORMAT", False))

    def __post_init__(self):
        """Validate configuration after initialization."""
        # Set debug based on environment if not explicitly set
        if self.environment == "production" and not os.getenv("DEBUG"):
            self.debug = False

        if self.metadata_file is None:
            self.metadata_file = self.data_dir / "metadata.json"
        if self.settings_file is None:
            self.settings_file = self.data_dir / "upload-settings.json"

        clamped = clamp_concurrency(self.upload_max_concurrent)
        if clamped != self.upload_max_concurrent:
            logger.warning(
                f"UPLOAD_MAX_CONCURRENT={self.upload_max_concurrent} is outside "
                f"{MIN_UPLOAD_CONCURRENCY}-{MAX_UPLOAD_CONCURRENCY}, using {clamped}"
            )
            self.upload_max_concurrent = clamped

        if self.signed_url_expires_in <= 0:
            logger.warning("SIGNED_URL_EXPIRES_IN must be positive, using 3600")
            self.signed_url_expires_in = 3600
        if not 1 <= self.list_page_size <= 1000:
            logger.warning("LIST_PAGE_SIZE must be within 1-1000, using 100")
            self.list_page_size = 100

    def get_upload_config(self) -> dict:
        """Get upload configuration as a dictionary."""
        return {
            "max_concurrent": self.upload_max_concurrent,
            "keep_original": self.upload_keep_original,
            "generate_blurhash": self.upload_generate_blurhash,
        }

    def get_storage_config(self) -> dict:
        """Get storage configuration as a dictionary."""
        return {
            "signed_url_expires_in": self.signed_url_expires_in,
            "list_page_size": self.list_page_size,
            "download_chunk_size": self.download_chunk_size,
            "download_timeout": self.download_timeout,
        }


# Global settings instance
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get the global application settings instance."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
        logger.info(f"Loaded settings for environment: {_settings.environment}")
    return _settings


def reload_settings() -> AppSettings:
    """Reload the global application settings."""
    global _settings
    # Force reload of environment variables
    if env_file.exists():
        load_dotenv(env_file, override=True)
    _settings = AppSettings()
    logger.info(f"Reloaded settings for environment: {_settings.environment}")
    return _settings
