"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based
configuration. Every field can be overridden with a ``CHECKBOOK_`` prefixed
environment variable or a ``.env`` file.

Business rule note: cancelling a check requires a non-blank reason while
rejecting one does not. This asymmetry is intentional and not configurable.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class CheckbookConfig(BaseSettings):
    """Checkbook engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///checkbooks.db"  # memory://, sqlite:///path or postgresql://
    sqlite_timeout: float = 5.0  # Seconds to wait on a locked SQLite database

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    cors_allow_origins: List[str] = ["*"]

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Capacity reservation retry policy (write conflicts only)
    reservation_max_retries: int = 3
    reservation_retry_backoff_ms: int = 20

    # Feature flags
    enable_audit_logging: bool = True
    seed_default_regions: bool = True

    class Config:
        env_prefix = "CHECKBOOK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = CheckbookConfig()


def get_config() -> CheckbookConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CheckbookConfig:
    """Reload configuration from environment"""
    global config
    config = CheckbookConfig()
    return config
