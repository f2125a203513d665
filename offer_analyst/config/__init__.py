"""
Configuration for Offer Analyst.
"""

from .settings import AppConfig, AuthConfig, DatabaseConfig, LogLevel, ServerConfig
from .environment import EnvironmentLoader
from .validation import ConfigValidator

__all__ = [
    "AppConfig",
    "AuthConfig",
    "DatabaseConfig",
    "LogLevel",
    "ServerConfig",
    "EnvironmentLoader",
    "ConfigValidator",
]
