"""
Configuration settings for Offer Analyst.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class LogLevel(Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class DatabaseConfig:
    """SQLite key store settings."""
    path: str = "data/offeranalyst.db"
    pool_size: int = 5


@dataclass
class AuthConfig:
    """Session token settings."""
    jwt_secret: str = "change-in-production"
    jwt_expiration_hours: int = 24


@dataclass
class ServerConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: list = field(default_factory=list)


@dataclass
class AppConfig:
    """Top-level application configuration."""
    encryption_secret: Optional[str] = None
    database_config: DatabaseConfig = field(default_factory=DatabaseConfig)
    auth_config: AuthConfig = field(default_factory=AuthConfig)
    server_config: ServerConfig = field(default_factory=ServerConfig)
    log_level: LogLevel = LogLevel.INFO
    usage_window_minutes: int = 60
    key_rotation_days: int = 90
    key_check_timeout: float = 10.0
