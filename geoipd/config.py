"""
Configuration module for geoipd
"""

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError


def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")


def _read_version_from_repo(default: str = "dev") -> str:
    try:
        version_file = Path(__file__).resolve().parents[1] / "VERSION"
        v = version_file.read_text(encoding="utf-8").strip()
        if v:
            return v
    except OSError:
        pass
    return os.getenv("APP_VERSION", default)


API_VERSION = _read_version_from_repo()

# Database download configuration
DEFAULT_EDITION = "GeoLite2-Country"
DEFAULT_DOWNLOAD_URL = (
    "https://download.maxmind.com/app/geoip_download"
    "?edition_id=@EDITION@&license_key=@LICENSE_KEY@&suffix=tar.gz"
)
CHECKSUM_URL_SUFFIX = ".md5"
DATABASE_EXT = "mmdb"

# HTTP layer
MAX_BODY_BYTES = 2048

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for one service instance"""

    data_dir: Path
    edition: str = DEFAULT_EDITION
    license_key: str = ""
    download_url: str = DEFAULT_DOWNLOAD_URL
    cache_size: int = 1024
    refresh_interval: float = 7 * 24 * 60 * 60
    http_timeout: float = 30.0
    shutdown_timeout: float = 5.0
    host: str = "127.0.0.1"
    port: int = 5000
    scheduler_enabled: bool = True

    def __post_init__(self):
        if self.cache_size < 1:
            raise ConfigError(f"cache size must be at least 1, got {self.cache_size}")
        if self.refresh_interval <= 0:
            raise ConfigError("refresh interval must be positive")
        if not self.edition:
            raise ConfigError("edition must not be empty")
        if "@LICENSE_KEY@" not in self.download_url:
            raise ConfigError("download URL must contain @LICENSE_KEY@")


def load_settings() -> Settings:
    """Build settings from GEOIPD_* environment variables"""
    return Settings(
        data_dir=Path(os.getenv("GEOIPD_DATA_DIR", "./data")),
        edition=os.getenv("GEOIPD_EDITION", DEFAULT_EDITION),
        license_key=os.getenv("GEOIPD_LICENSE_KEY", ""),
        download_url=os.getenv("GEOIPD_DOWNLOAD_URL", DEFAULT_DOWNLOAD_URL),
        cache_size=env_int("GEOIPD_CACHE_SIZE", 1024),
        refresh_interval=env_float("GEOIPD_REFRESH_INTERVAL_SEC", 7 * 24 * 60 * 60),
        http_timeout=env_float("GEOIPD_HTTP_TIMEOUT_SEC", 30.0),
        shutdown_timeout=env_float("GEOIPD_SHUTDOWN_TIMEOUT_SEC", 5.0),
        host=os.getenv("GEOIPD_HOST", "127.0.0.1"),
        port=env_int("GEOIPD_PORT", 5000),
        scheduler_enabled=env_bool("GEOIPD_SCHEDULER_ENABLED", True),
    )
