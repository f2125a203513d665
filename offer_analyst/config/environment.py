"""
Environment variable handling for Offer Analyst configuration.
"""

import os
from typing import List

from dotenv import load_dotenv

from .settings import AppConfig, AuthConfig, DatabaseConfig, LogLevel, ServerConfig


class EnvironmentLoader:
    """Loads configuration from environment variables."""

    @staticmethod
    def load_config(load_env_file: bool = True) -> AppConfig:
        """Load configuration from environment variables."""
        if load_env_file:
            load_dotenv()

        # Older deployments only set the auth secret
        encryption_secret = (
            os.getenv('API_KEY_ENCRYPTION_SECRET')
            or os.getenv('BETTER_AUTH_SECRET')
            or os.getenv('AUTH_SECRET')
        )

        database_config = DatabaseConfig(
            path=os.getenv('DATABASE_PATH', 'data/offeranalyst.db'),
            pool_size=int(os.getenv('DB_POOL_SIZE', '5')),
        )

        auth_config = AuthConfig(
            jwt_secret=os.getenv('DASHBOARD_JWT_SECRET', os.getenv('JWT_SECRET', 'change-in-production')),
            jwt_expiration_hours=int(os.getenv('JWT_EXPIRATION_HOURS', '24')),
        )

        server_config = ServerConfig(
            host=os.getenv('WEBHOOK_HOST', '0.0.0.0'),
            port=int(os.getenv('WEBHOOK_PORT', '5000')),
            cors_origins=EnvironmentLoader._parse_list(os.getenv('CORS_ORIGINS', '')),
        )

        log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
        log_level = LogLevel.INFO
        try:
            log_level = LogLevel(log_level_str)
        except ValueError:
            pass  # Use default

        return AppConfig(
            encryption_secret=encryption_secret,
            database_config=database_config,
            auth_config=auth_config,
            server_config=server_config,
            log_level=log_level,
            usage_window_minutes=int(os.getenv('USAGE_WINDOW_MINUTES', '60')),
            key_rotation_days=int(os.getenv('KEY_ROTATION_DAYS', '90')),
            key_check_timeout=float(os.getenv('KEY_CHECK_TIMEOUT', '10')),
        )

    @staticmethod
    def _parse_list(value: str, delimiter: str = ',') -> List[str]:
        """Parse a comma-separated string into a list."""
        if not value:
            return []
        return [item.strip() for item in value.split(delimiter) if item.strip()]
