"""
Abstract repository interfaces for data access layer.

This module defines the repository pattern interfaces for all data operations.
Concrete implementations should inherit from these abstract base classes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..byok.models import SecurityAlert, StoredKey, UsageLogEntry


class ApiKeyRepository(ABC):
    """Abstract repository for stored provider keys and their usage log."""

    @abstractmethod
    async def find_eligible_keys(
        self,
        user_id: str,
        provider: str,
        now: Optional[datetime] = None
    ) -> List[StoredKey]:
        """
        Find keys usable for a provider.

        Args:
            user_id: Owning user
            provider: Provider name
            now: Reference time for expiry (defaults to current time)

        Returns:
            Active, unexpired keys ordered by priority, primary flag and
            creation time, all descending

        Raises:
            KeyStoreError: If the query fails
        """
        pass

    @abstractmethod
    async def count_recent_usage(self, key_id: str, since: datetime) -> int:
        """
        Count usage rows for a key.

        Args:
            key_id: Stored key identifier
            since: Window start (inclusive)

        Returns:
            Number of usage rows at or after ``since``
        """
        pass

    @abstractmethod
    async def append_usage(self, entry: UsageLogEntry) -> str:
        """
        Append a usage row.

        Args:
            entry: Usage entry to store

        Returns:
            The ID of the stored entry
        """
        pass

    @abstractmethod
    async def touch_last_used(self, key_id: str, timestamp: Optional[datetime] = None) -> None:
        """
        Increment a key's usage counter and set its last-used time.

        Args:
            key_id: Stored key identifier
            timestamp: Time of use (defaults to current time)
        """
        pass

    @abstractmethod
    async def save_key(self, key: StoredKey) -> str:
        """
        Save or replace a stored key.

        Args:
            key: Key to save

        Returns:
            The ID of the saved key
        """
        pass

    @abstractmethod
    async def get_key(self, key_id: str, user_id: Optional[str] = None) -> Optional[StoredKey]:
        """
        Retrieve a key by ID.

        Args:
            key_id: Stored key identifier
            user_id: When given, only return the key if this user owns it

        Returns:
            The key if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_keys(
        self,
        user_id: str,
        provider: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[StoredKey]:
        """
        List a user's keys, newest first.

        Args:
            user_id: Owning user
            provider: Optional provider filter
            include_inactive: Include deactivated keys

        Returns:
            List of keys
        """
        pass

    @abstractmethod
    async def update_key(self, key_id: str, user_id: str, **fields: Any) -> bool:
        """
        Update fields of a user's key.

        Args:
            key_id: Stored key identifier
            user_id: Owning user
            **fields: Column values to set

        Returns:
            True if a key was updated
        """
        pass

    @abstractmethod
    async def delete_key(self, key_id: str, user_id: str) -> bool:
        """
        Delete a user's key.

        Args:
            key_id: Stored key identifier
            user_id: Owning user

        Returns:
            True if the key was deleted
        """
        pass

    @abstractmethod
    async def clear_primary(self, user_id: str, provider: str) -> int:
        """
        Unset the primary flag on all of a user's keys for a provider.

        Returns:
            Number of keys changed
        """
        pass

    @abstractmethod
    async def list_usage(
        self,
        user_id: str,
        since: datetime,
        key_id: Optional[str] = None
    ) -> List[UsageLogEntry]:
        """
        List usage rows for a user, newest first.

        Args:
            user_id: Owning user
            since: Window start (inclusive)
            key_id: Optional key filter

        Returns:
            List of usage entries
        """
        pass

    @abstractmethod
    async def count_failed_usage(self, key_id: str, since: datetime) -> int:
        """Count unsuccessful usage rows for a key at or after ``since``."""
        pass


class SecurityAlertRepository(ABC):
    """Abstract repository for security alerts."""

    @abstractmethod
    async def save_alert(self, alert: SecurityAlert) -> str:
        """
        Save a new alert.

        Args:
            alert: Alert to store

        Returns:
            The ID of the stored alert
        """
        pass

    @abstractmethod
    async def find_open_alert(
        self,
        user_id: str,
        key_id: Optional[str],
        alert_type: str,
        since: datetime
    ) -> Optional[SecurityAlert]:
        """
        Find an unresolved alert of the same kind raised at or after ``since``.

        Returns:
            The alert if one exists, None otherwise
        """
        pass

    @abstractmethod
    async def list_alerts(
        self,
        user_id: str,
        unread_only: bool = False,
        unresolved_only: bool = False,
        limit: int = 50
    ) -> List[SecurityAlert]:
        """
        List a user's alerts, newest first, with the key name filled in.

        Args:
            user_id: Owning user
            unread_only: Only alerts not yet read
            unresolved_only: Only alerts not yet resolved
            limit: Maximum number of alerts

        Returns:
            List of alerts
        """
        pass

    @abstractmethod
    async def mark_alert_read(self, alert_id: str, user_id: str) -> bool:
        """Mark a user's alert as read. Returns True if an alert changed."""
        pass

    @abstractmethod
    async def resolve_alert(self, alert_id: str, user_id: str, resolved_at: datetime) -> bool:
        """Resolve a user's alert, marking it read. Returns True if an alert changed."""
        pass

    @abstractmethod
    async def count_unread_alerts(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def delete_resolved_alerts(self, user_id: str) -> int:
        """
        Delete a user's resolved alerts.

        Returns:
            Number of alerts deleted
        """
        pass


class DatabaseConnection(ABC):
    """Abstract database connection interface."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    async def execute(self, query: str, params: Optional[tuple] = None) -> Any:
        """Execute a database query."""
        pass

    @abstractmethod
    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        pass

    @abstractmethod
    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        pass
