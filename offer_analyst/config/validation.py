"""
Configuration validation for Offer Analyst.
"""

from typing import List

from .settings import AppConfig
from ..byok.cipher import MIN_SECRET_LENGTH


class ConfigValidator:
    """Validates configuration settings."""

    @staticmethod
    def validate_config(config: AppConfig) -> List[str]:
        """Validate the entire application configuration."""
        errors = []
        errors.extend(ConfigValidator._validate_secrets(config))
        errors.extend(ConfigValidator._validate_numeric_ranges(config))
        return errors

    @staticmethod
    def _validate_secrets(config: AppConfig) -> List[str]:
        errors = []

        if not config.encryption_secret:
            errors.append("API_KEY_ENCRYPTION_SECRET is not set")
        elif len(config.encryption_secret) < MIN_SECRET_LENGTH:
            errors.append(
                f"API_KEY_ENCRYPTION_SECRET must be at least {MIN_SECRET_LENGTH} characters long"
            )

        if len(config.auth_config.jwt_secret) < 16:
            errors.append("JWT secret should be at least 16 characters long")

        return errors

    @staticmethod
    def _validate_numeric_ranges(config: AppConfig) -> List[str]:
        errors = []

        if config.usage_window_minutes <= 0:
            errors.append("USAGE_WINDOW_MINUTES must be positive")

        if config.key_rotation_days <= 0:
            errors.append("KEY_ROTATION_DAYS must be positive")

        if not 1 <= config.server_config.port <= 65535:
            errors.append("WEBHOOK_PORT must be between 1 and 65535")

        if config.database_config.pool_size < 1:
            errors.append("DB_POOL_SIZE must be at least 1")

        if config.auth_config.jwt_expiration_hours <= 0:
            errors.append("JWT_EXPIRATION_HOURS must be positive")

        return errors
