"""
Schema migrations for the SQLite key store.
"""

import logging
from pathlib import Path
from typing import List, Tuple

from .sqlite import SQLiteConnection

logger = logging.getLogger(__name__)

# (version, description, script)
MIGRATIONS: List[Tuple[int, str, str]] = [
    (
        1,
        "api keys and usage log",
        """
        CREATE TABLE IF NOT EXISTS api_keys (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            key_encrypted TEXT NOT NULL,
            key_preview TEXT NOT NULL DEFAULT '',
            priority INTEGER NOT NULL DEFAULT 0,
            is_primary INTEGER NOT NULL DEFAULT 0,
            rate_limit INTEGER,
            is_active INTEGER NOT NULL DEFAULT 1,
            expires_at TEXT,
            created_at TEXT NOT NULL,
            last_used TEXT,
            usage_count INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_api_keys_user_provider
            ON api_keys (user_id, provider, is_active);

        CREATE TABLE IF NOT EXISTS api_key_usage_logs (
            id TEXT PRIMARY KEY,
            key_id TEXT NOT NULL REFERENCES api_keys (id) ON DELETE CASCADE,
            user_id TEXT,
            provider TEXT,
            action TEXT,
            timestamp TEXT NOT NULL,
            success INTEGER NOT NULL DEFAULT 1,
            model TEXT,
            tokens_used INTEGER,
            response_time_ms INTEGER,
            error_message TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_usage_logs_key_timestamp
            ON api_key_usage_logs (key_id, timestamp);
        """,
    ),
    (
        2,
        "security alerts",
        """
        CREATE TABLE IF NOT EXISTS security_alerts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            key_id TEXT REFERENCES api_keys (id) ON DELETE SET NULL,
            alert_type TEXT NOT NULL,
            severity TEXT NOT NULL,
            message TEXT NOT NULL,
            metadata TEXT,
            is_read INTEGER NOT NULL DEFAULT 0,
            is_resolved INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            resolved_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_security_alerts_user
            ON security_alerts (user_id, is_read, is_resolved);
        """,
    ),
]


class MigrationRunner:
    """Applies pending schema migrations in version order."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def _ensure_version_table(self) -> None:
        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

    async def current_version(self) -> int:
        await self._ensure_version_table()
        row = await self.connection.fetch_one("SELECT MAX(version) AS version FROM schema_version")
        if not row or row["version"] is None:
            return 0
        return row["version"]

    async def run(self) -> int:
        """
        Apply pending migrations.

        Returns:
            Number of migrations applied
        """
        current = await self.current_version()
        applied = 0

        for version, description, script in MIGRATIONS:
            if version <= current:
                continue
            logger.info(f"Applying migration {version}: {description}")
            await self.connection.execute_script(script)
            await self.connection.execute(
                "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                (version, description),
            )
            applied += 1

        if applied:
            logger.info(f"Database schema at version {MIGRATIONS[-1][0]}")
        return applied


async def run_migrations(db_path: str) -> int:
    """
    Run migrations against a database file.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Number of migrations applied
    """
    connection = SQLiteConnection(db_path, pool_size=1)
    try:
        return await MigrationRunner(connection).run()
    finally:
        await connection.disconnect()


async def reset_database(db_path: str) -> None:
    """Delete the database file and recreate the schema."""
    path = Path(db_path)
    for suffix in ("", "-wal", "-shm"):
        candidate = path.with_name(path.name + suffix)
        if candidate.exists():
            candidate.unlink()
    logger.warning(f"Database reset: {db_path}")
    await run_migrations(db_path)
