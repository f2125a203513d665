"""
Data access layer for Offer Analyst.

Public Interface:
    - ApiKeyRepository and SecurityAlertRepository interfaces with SQLite implementations
    - Database connection management
    - Migration utilities
    - Factory pattern for repository creation

Example Usage:
    ```python
    from offer_analyst.data import initialize_repositories, get_api_key_repository
    from offer_analyst.data import run_migrations

    await run_migrations("data/offeranalyst.db")
    initialize_repositories(backend="sqlite", db_path="data/offeranalyst.db")

    repo = await get_api_key_repository()
    keys = await repo.find_eligible_keys(user_id, "openai")
    ```
"""

from .base import ApiKeyRepository, DatabaseConnection, SecurityAlertRepository
from .sqlite import SQLiteConnection, SQLiteApiKeyRepository, SQLiteSecurityAlertRepository
from .repositories import (
    RepositoryFactory,
    initialize_repositories,
    get_repository_factory,
    get_api_key_repository,
    get_security_alert_repository,
)
from .migrations import MigrationRunner, run_migrations, reset_database

__all__ = [
    "ApiKeyRepository",
    "DatabaseConnection",
    "SecurityAlertRepository",
    "SQLiteConnection",
    "SQLiteApiKeyRepository",
    "SQLiteSecurityAlertRepository",
    "RepositoryFactory",
    "initialize_repositories",
    "get_repository_factory",
    "get_api_key_repository",
    "get_security_alert_repository",
    "MigrationRunner",
    "run_migrations",
    "reset_database",
]
