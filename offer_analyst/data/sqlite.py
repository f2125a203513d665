"""
SQLite implementation of data repositories using aiosqlite.

This module provides SQLite support with connection pooling
and async database operations.
"""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from .base import ApiKeyRepository, DatabaseConnection, SecurityAlertRepository
from ..byok.models import SecurityAlert, StoredKey, UsageLogEntry
from ..exceptions import KeyStoreError


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width ISO timestamp so string comparison matches time order."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


class SQLiteConnection(DatabaseConnection):
    """SQLite database connection with connection pooling."""

    def __init__(self, db_path: str, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._connections: List[aiosqlite.Connection] = []
        self._available: asyncio.Queue = asyncio.Queue(maxsize=pool_size)
        self._lock = asyncio.Lock()
        self._initialized = False

    async def connect(self) -> None:
        """Establish database connection pool."""
        async with self._lock:
            if self._initialized:
                return

            # Ensure database directory exists
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            for _ in range(self.pool_size):
                conn = await aiosqlite.connect(self.db_path)
                conn.row_factory = aiosqlite.Row
                # Enable WAL mode for better concurrency
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA foreign_keys=ON")
                self._connections.append(conn)
                await self._available.put(conn)

            self._initialized = True

    async def disconnect(self) -> None:
        """Close all database connections."""
        async with self._lock:
            if not self._initialized:
                return

            for conn in self._connections:
                await conn.close()

            self._connections.clear()
            self._available = asyncio.Queue(maxsize=self.pool_size)
            self._initialized = False

    @asynccontextmanager
    async def _get_connection(self):
        """Get a connection from the pool."""
        if not self._initialized:
            await self.connect()

        conn = await self._available.get()
        try:
            yield conn
        finally:
            await self._available.put(conn)

    async def execute(self, query: str, params: Optional[tuple] = None) -> Any:
        """Execute a database query."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            await conn.commit()
            return cursor

    async def execute_script(self, script: str) -> None:
        """Execute several statements at once."""
        async with self._get_connection() as conn:
            await conn.executescript(script)
            await conn.commit()

    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


class SQLiteApiKeyRepository(ApiKeyRepository):
    """SQLite implementation of the API key repository."""

    # Columns update_key is allowed to touch
    UPDATABLE_FIELDS = {
        "name", "key_encrypted", "key_preview", "priority", "is_primary",
        "rate_limit", "is_active", "expires_at", "last_used", "usage_count",
    }

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def find_eligible_keys(
        self,
        user_id: str,
        provider: str,
        now: Optional[datetime] = None
    ) -> List[StoredKey]:
        """Find active, unexpired keys for a provider."""
        query = """
        SELECT * FROM api_keys
        WHERE user_id = ? AND provider = ? AND is_active = 1
          AND (expires_at IS NULL OR expires_at > ?)
        ORDER BY priority DESC, is_primary DESC, created_at DESC
        """
        try:
            rows = await self.connection.fetch_all(
                query, (user_id, provider, _ts(now or datetime.utcnow()))
            )
        except aiosqlite.Error as e:
            raise KeyStoreError(f"Failed to query keys: {e}", {"provider": provider})
        return [StoredKey.from_dict(row) for row in rows]

    async def count_recent_usage(self, key_id: str, since: datetime) -> int:
        """Count usage rows in the window."""
        query = "SELECT COUNT(*) AS count FROM api_key_usage_logs WHERE key_id = ? AND timestamp >= ?"
        try:
            row = await self.connection.fetch_one(query, (key_id, _ts(since)))
        except aiosqlite.Error as e:
            raise KeyStoreError(f"Failed to count usage: {e}", {"key_id": key_id})
        return row["count"] if row else 0

    async def append_usage(self, entry: UsageLogEntry) -> str:
        """Append a usage row."""
        entry_id = entry.id or uuid.uuid4().hex
        query = """
        INSERT INTO api_key_usage_logs (
            id, key_id, user_id, provider, action, timestamp, success,
            model, tokens_used, response_time_ms, error_message
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            entry_id,
            entry.key_id,
            entry.user_id,
            entry.provider,
            entry.action,
            _ts(entry.timestamp),
            1 if entry.success else 0,
            entry.model,
            entry.tokens_used,
            entry.response_time_ms,
            entry.error_message,
        )
        await self.connection.execute(query, params)
        return entry_id

    async def touch_last_used(self, key_id: str, timestamp: Optional[datetime] = None) -> None:
        """Bump usage counter and last-used time."""
        query = "UPDATE api_keys SET usage_count = usage_count + 1, last_used = ? WHERE id = ?"
        await self.connection.execute(query, (_ts(timestamp or datetime.utcnow()), key_id))

    async def save_key(self, key: StoredKey) -> str:
        """Insert a key or update it in place."""
        query = """
        INSERT INTO api_keys (
            id, user_id, provider, name, key_encrypted, key_preview,
            priority, is_primary, rate_limit, is_active, expires_at,
            created_at, last_used, usage_count
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            key_encrypted = excluded.key_encrypted,
            key_preview = excluded.key_preview,
            priority = excluded.priority,
            is_primary = excluded.is_primary,
            rate_limit = excluded.rate_limit,
            is_active = excluded.is_active,
            expires_at = excluded.expires_at,
            last_used = excluded.last_used,
            usage_count = excluded.usage_count
        """
        params = (
            key.id,
            key.user_id,
            key.provider,
            key.name,
            key.key_encrypted,
            key.key_preview,
            key.priority,
            1 if key.is_primary else 0,
            key.rate_limit,
            1 if key.is_active else 0,
            _ts(key.expires_at),
            _ts(key.created_at),
            _ts(key.last_used),
            key.usage_count,
        )
        await self.connection.execute(query, params)
        return key.id

    async def get_key(self, key_id: str, user_id: Optional[str] = None) -> Optional[StoredKey]:
        """Retrieve a key by ID."""
        if user_id is not None:
            row = await self.connection.fetch_one(
                "SELECT * FROM api_keys WHERE id = ? AND user_id = ?", (key_id, user_id)
            )
        else:
            row = await self.connection.fetch_one("SELECT * FROM api_keys WHERE id = ?", (key_id,))

        if not row:
            return None
        return StoredKey.from_dict(row)

    async def list_keys(
        self,
        user_id: str,
        provider: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[StoredKey]:
        """List a user's keys, newest first."""
        conditions = ["user_id = ?"]
        params: List[Any] = [user_id]

        if provider:
            conditions.append("provider = ?")
            params.append(provider)

        if not include_inactive:
            conditions.append("is_active = 1")

        query = f"""
        SELECT * FROM api_keys
        WHERE {' AND '.join(conditions)}
        ORDER BY created_at DESC
        """
        rows = await self.connection.fetch_all(query, tuple(params))
        return [StoredKey.from_dict(row) for row in rows]

    async def update_key(self, key_id: str, user_id: str, **fields: Any) -> bool:
        """Update selected columns of a key."""
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        assignments = []
        params: List[Any] = []
        for column, value in fields.items():
            if isinstance(value, bool):
                value = 1 if value else 0
            elif isinstance(value, datetime):
                value = _ts(value)
            assignments.append(f"{column} = ?")
            params.append(value)

        params.extend([key_id, user_id])
        query = f"UPDATE api_keys SET {', '.join(assignments)} WHERE id = ? AND user_id = ?"
        cursor = await self.connection.execute(query, tuple(params))
        return cursor.rowcount > 0

    async def delete_key(self, key_id: str, user_id: str) -> bool:
        """Delete a user's key and its usage rows."""
        cursor = await self.connection.execute(
            "DELETE FROM api_keys WHERE id = ? AND user_id = ?", (key_id, user_id)
        )
        return cursor.rowcount > 0

    async def clear_primary(self, user_id: str, provider: str) -> int:
        """Unset primary flag across a provider's keys."""
        cursor = await self.connection.execute(
            "UPDATE api_keys SET is_primary = 0 WHERE user_id = ? AND provider = ? AND is_primary = 1",
            (user_id, provider),
        )
        return cursor.rowcount

    async def list_usage(
        self,
        user_id: str,
        since: datetime,
        key_id: Optional[str] = None
    ) -> List[UsageLogEntry]:
        """List usage rows for a user."""
        conditions = ["k.user_id = ?", "u.timestamp >= ?"]
        params: List[Any] = [user_id, _ts(since)]

        if key_id:
            conditions.append("u.key_id = ?")
            params.append(key_id)

        query = f"""
        SELECT u.id, u.key_id, u.timestamp, u.success, u.action, u.model,
               u.tokens_used, u.response_time_ms, u.error_message,
               k.user_id AS user_id, COALESCE(u.provider, k.provider) AS provider
        FROM api_key_usage_logs u
        JOIN api_keys k ON k.id = u.key_id
        WHERE {' AND '.join(conditions)}
        ORDER BY u.timestamp DESC
        """
        rows = await self.connection.fetch_all(query, tuple(params))
        return [UsageLogEntry.from_dict(row) for row in rows]

    async def count_failed_usage(self, key_id: str, since: datetime) -> int:
        """Count failed usage rows in the window."""
        query = """
        SELECT COUNT(*) AS count FROM api_key_usage_logs
        WHERE key_id = ? AND timestamp >= ? AND success = 0
        """
        row = await self.connection.fetch_one(query, (key_id, _ts(since)))
        return row["count"] if row else 0


class SQLiteSecurityAlertRepository(SecurityAlertRepository):
    """SQLite implementation of the security alert repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save_alert(self, alert: SecurityAlert) -> str:
        """Insert a new alert."""
        alert_id = alert.id or uuid.uuid4().hex
        query = """
        INSERT INTO security_alerts (
            id, user_id, key_id, alert_type, severity, message, metadata,
            is_read, is_resolved, created_at, resolved_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            alert_id,
            alert.user_id,
            alert.key_id,
            alert.alert_type,
            alert.severity.value,
            alert.message,
            json.dumps(alert.metadata) if alert.metadata else None,
            1 if alert.is_read else 0,
            1 if alert.is_resolved else 0,
            _ts(alert.created_at),
            _ts(alert.resolved_at),
        )
        await self.connection.execute(query, params)
        alert.id = alert_id
        return alert_id

    async def find_open_alert(
        self,
        user_id: str,
        key_id: Optional[str],
        alert_type: str,
        since: datetime
    ) -> Optional[SecurityAlert]:
        """Find a recent unresolved alert of the same type."""
        query = """
        SELECT * FROM security_alerts
        WHERE user_id = ? AND key_id IS ? AND alert_type = ?
          AND is_resolved = 0 AND created_at >= ?
        ORDER BY created_at DESC
        LIMIT 1
        """
        row = await self.connection.fetch_one(query, (user_id, key_id, alert_type, _ts(since)))
        if not row:
            return None
        return SecurityAlert.from_dict(row)

    async def list_alerts(
        self,
        user_id: str,
        unread_only: bool = False,
        unresolved_only: bool = False,
        limit: int = 50
    ) -> List[SecurityAlert]:
        """List a user's alerts, newest first."""
        conditions = ["a.user_id = ?"]
        params: List[Any] = [user_id]

        if unread_only:
            conditions.append("a.is_read = 0")

        if unresolved_only:
            conditions.append("a.is_resolved = 0")

        params.append(limit)
        query = f"""
        SELECT a.*, k.name AS key_name
        FROM security_alerts a
        LEFT JOIN api_keys k ON k.id = a.key_id
        WHERE {' AND '.join(conditions)}
        ORDER BY a.created_at DESC
        LIMIT ?
        """
        rows = await self.connection.fetch_all(query, tuple(params))
        return [SecurityAlert.from_dict(row) for row in rows]

    async def mark_alert_read(self, alert_id: str, user_id: str) -> bool:
        cursor = await self.connection.execute(
            "UPDATE security_alerts SET is_read = 1 WHERE id = ? AND user_id = ?",
            (alert_id, user_id),
        )
        return cursor.rowcount > 0

    async def resolve_alert(self, alert_id: str, user_id: str, resolved_at: datetime) -> bool:
        cursor = await self.connection.execute(
            """
            UPDATE security_alerts SET is_resolved = 1, is_read = 1, resolved_at = ?
            WHERE id = ? AND user_id = ?
            """,
            (_ts(resolved_at), alert_id, user_id),
        )
        return cursor.rowcount > 0

    async def count_unread_alerts(self, user_id: str) -> int:
        row = await self.connection.fetch_one(
            "SELECT COUNT(*) AS count FROM security_alerts WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        return row["count"] if row else 0

    async def delete_resolved_alerts(self, user_id: str) -> int:
        cursor = await self.connection.execute(
            "DELETE FROM security_alerts WHERE user_id = ? AND is_resolved = 1",
            (user_id,),
        )
        return cursor.rowcount
