"""
Key management for BYOK credentials.

Adding, listing, deleting and rotating a user's stored provider keys,
plus usage statistics and security alerts for the dashboard.
"""

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import ConfigurationError, KeyNotFoundError
from .cipher import key_preview
from .models import AlertSeverity, ProviderName, SecurityAlert, StoredKey, UsageLogEntry, to_naive_utc

if TYPE_CHECKING:
    from ..data.base import ApiKeyRepository, SecurityAlertRepository
    from .cipher import SecretCipher

logger = logging.getLogger(__name__)

DEFAULT_ROTATION_DAYS = 90
RECENT_ACTIVITY_LIMIT = 50

SUSPICIOUS_ACTIVITY_WINDOW = timedelta(hours=24)
FAILURE_ALERT_MIN_FAILURES = 10
FAILURE_ALERT_MIN_RATIO = 0.5

ALERT_RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
ALERT_HIGH_FAILURE_RATE = "high_failure_rate"


@dataclass
class RotationResult:
    """Outcome of a key rotation."""
    new_key: StoredKey
    old_key_id: str
    old_key_deleted: bool

    @property
    def message(self) -> str:
        detail = "Old key deleted." if self.old_key_deleted else "Old key marked as deprecated."
        return f"API key rotated successfully. {detail}"


@dataclass
class KeyStats:
    """Summary counts for a user's keys."""
    total_keys: int
    total_requests: int
    byok_active: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_keys": self.total_keys,
            "total_requests": self.total_requests,
            "byok_active": self.byok_active,
        }


@dataclass
class UsageAnalytics:
    """Aggregated usage over a period."""
    total_requests: int = 0
    success_rate: float = 0.0
    avg_response_time_ms: int = 0
    total_tokens: int = 0
    requests_by_provider: Dict[str, int] = field(default_factory=dict)
    requests_by_action: Dict[str, int] = field(default_factory=dict)
    recent_activity: List[UsageLogEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "success_rate": self.success_rate,
            "avg_response_time_ms": self.avg_response_time_ms,
            "total_tokens": self.total_tokens,
            "requests_by_provider": dict(self.requests_by_provider),
            "requests_by_action": dict(self.requests_by_action),
            "recent_activity": [entry.to_dict() for entry in self.recent_activity],
        }


class ApiKeyManager:
    """Manages a user's stored provider keys."""

    def __init__(
        self,
        key_store: "ApiKeyRepository",
        cipher: "SecretCipher",
        clock: Callable[[], datetime] = datetime.utcnow,
        alert_store: Optional["SecurityAlertRepository"] = None,
    ):
        self.key_store = key_store
        self.cipher = cipher
        self.alert_store = alert_store
        self.clock = clock

    async def add_key(
        self,
        user_id: str,
        name: str,
        provider: str,
        api_key: str,
        expires_at: Optional[datetime] = None,
        rate_limit: Optional[int] = None,
        priority: int = 0,
        is_primary: bool = False,
    ) -> StoredKey:
        """
        Encrypt and store a new key.

        Args:
            user_id: Owning user
            name: Display name
            provider: Provider name (aliases accepted)
            api_key: Plaintext key
            expires_at: Optional expiry
            rate_limit: Optional max uses per rolling hour
            priority: Higher is preferred
            is_primary: Mark as the provider's primary key

        Returns:
            The stored key

        Raises:
            InvalidProviderError: If the provider is not supported
            ValueError: If the key is empty or the rate limit is not positive
        """
        provider_name = ProviderName.parse(provider).value
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValueError("API key must not be empty")
        if rate_limit is not None and rate_limit <= 0:
            raise ValueError("Rate limit must be a positive number of calls")

        if is_primary:
            await self.key_store.clear_primary(user_id, provider_name)

        key = StoredKey(
            id=uuid.uuid4().hex,
            user_id=user_id,
            provider=provider_name,
            key_encrypted=self.cipher.encrypt(api_key),
            name=name or f"{provider_name} key",
            key_preview=key_preview(api_key),
            priority=priority,
            is_primary=is_primary,
            rate_limit=rate_limit,
            expires_at=to_naive_utc(expires_at),
            created_at=self.clock(),
        )
        await self.key_store.save_key(key)
        logger.info(f"Added {provider_name} key {key.id} for user {user_id}")
        return key

    async def list_keys(self, user_id: str) -> List[StoredKey]:
        """Active keys, newest first."""
        return await self.key_store.list_keys(user_id)

    async def get_key(self, user_id: str, key_id: str) -> StoredKey:
        key = await self.key_store.get_key(key_id, user_id=user_id)
        if key is None:
            raise KeyNotFoundError(key_id)
        return key

    async def delete_key(self, user_id: str, key_id: str) -> bool:
        deleted = await self.key_store.delete_key(key_id, user_id)
        if deleted:
            logger.info(f"Deleted key {key_id} for user {user_id}")
        return deleted

    async def rotate_key(
        self,
        user_id: str,
        old_key_id: str,
        new_api_key: str,
        delete_old: bool = False,
    ) -> RotationResult:
        """
        Replace a key with a new secret, carrying over its settings.

        The old key is deleted, or deactivated and demoted when kept.

        Raises:
            KeyNotFoundError: If the user has no such key
        """
        old_key = await self.get_key(user_id, old_key_id)
        was_primary = old_key.is_primary

        # add_key would clear the old key's primary flag; set it afterwards instead
        new_key = await self.add_key(
            user_id=user_id,
            name=f"{old_key.name} (Rotated)",
            provider=old_key.provider,
            api_key=new_api_key,
            expires_at=old_key.expires_at,
            rate_limit=old_key.rate_limit,
            priority=old_key.priority,
        )

        if delete_old:
            await self.key_store.delete_key(old_key_id, user_id)
        else:
            await self.key_store.update_key(
                old_key_id,
                user_id,
                is_active=False,
                is_primary=False,
                priority=0,
                name=f"{old_key.name} (Deprecated)",
            )

        if was_primary:
            await self.key_store.update_key(new_key.id, user_id, is_primary=True)
            new_key.is_primary = True

        logger.info(f"Rotated key {old_key_id} -> {new_key.id} for user {user_id}")
        return RotationResult(new_key=new_key, old_key_id=old_key_id, old_key_deleted=delete_old)

    async def get_key_rotation_history(
        self,
        user_id: str,
        provider: Optional[str] = None,
    ) -> List[StoredKey]:
        """All of a user's keys, including deprecated ones, newest first."""
        if provider:
            provider = ProviderName.parse(provider).value
        return await self.key_store.list_keys(user_id, provider=provider, include_inactive=True)

    async def set_primary(self, user_id: str, key_id: str) -> None:
        """
        Make a key the primary one for its provider.

        Raises:
            KeyNotFoundError: If the user has no such key
        """
        key = await self.get_key(user_id, key_id)
        await self.key_store.clear_primary(user_id, key.provider)
        await self.key_store.update_key(key_id, user_id, is_primary=True)

    async def update_priority(self, user_id: str, key_id: str, priority: int) -> bool:
        return await self.key_store.update_key(key_id, user_id, priority=priority)

    async def keys_needing_rotation(
        self,
        user_id: str,
        max_age_days: int = DEFAULT_ROTATION_DAYS,
    ) -> List[Tuple[StoredKey, int]]:
        """Active keys older than ``max_age_days`` with their age in days."""
        now = self.clock()
        cutoff = now - timedelta(days=max_age_days)
        keys = await self.key_store.list_keys(user_id)
        return [
            (key, key.days_since_creation(now))
            for key in keys
            if key.created_at <= cutoff
        ]

    async def get_stats(self, user_id: str) -> KeyStats:
        keys = await self.key_store.list_keys(user_id)
        return KeyStats(
            total_keys=len(keys),
            total_requests=sum(key.usage_count for key in keys),
            byok_active=bool(keys),
        )

    async def get_usage_analytics(
        self,
        user_id: str,
        key_id: Optional[str] = None,
        days: int = 30,
    ) -> UsageAnalytics:
        """Aggregate usage rows over the last ``days`` days."""
        since = self.clock() - timedelta(days=days)
        entries = await self.key_store.list_usage(user_id, since, key_id=key_id)
        if not entries:
            return UsageAnalytics()

        successful = sum(1 for e in entries if e.success)
        response_times = [e.response_time_ms for e in entries if e.response_time_ms is not None]
        avg_response = sum(response_times) / len(response_times) if response_times else 0

        return UsageAnalytics(
            total_requests=len(entries),
            success_rate=round(successful / len(entries) * 100, 1),
            avg_response_time_ms=round(avg_response),
            total_tokens=sum(e.tokens_used or 0 for e in entries),
            requests_by_provider=dict(Counter(e.provider or "unknown" for e in entries)),
            requests_by_action=dict(Counter(e.action or "unknown" for e in entries)),
            recent_activity=sorted(entries, key=lambda e: e.timestamp, reverse=True)[:RECENT_ACTIVITY_LIMIT],
        )

    async def get_usage_timeline(
        self,
        user_id: str,
        key_id: Optional[str] = None,
        days: int = 30,
    ) -> List[Dict[str, Any]]:
        """Daily request counts, oldest day first."""
        since = self.clock() - timedelta(days=days)
        entries = await self.key_store.list_usage(user_id, since, key_id=key_id)

        buckets: Dict[str, Dict[str, int]] = {}
        for entry in entries:
            day = entry.timestamp.date().isoformat()
            bucket = buckets.setdefault(day, {"requests": 0, "successful_requests": 0, "failed_requests": 0})
            bucket["requests"] += 1
            if entry.success:
                bucket["successful_requests"] += 1
            else:
                bucket["failed_requests"] += 1

        return [{"date": day, **counts} for day, counts in sorted(buckets.items())]

    # =========================================================================
    # Security alerts
    # =========================================================================

    def _alerts(self) -> "SecurityAlertRepository":
        if self.alert_store is None:
            raise ConfigurationError("Security alert store not configured")
        return self.alert_store

    async def check_for_suspicious_activity(self, key_id: str) -> List[SecurityAlert]:
        """
        Raise alerts for a key's last 24 hours of usage.

        A key is flagged when it was used more than 24 times its hourly
        rate limit, or when more than 10 uses failed and failures are over
        half of all uses. An alert is not repeated while an unresolved one
        of the same type for the key is less than a day old.

        Errors are logged and swallowed.

        Returns:
            Alerts created by this check
        """
        created: List[SecurityAlert] = []
        if self.alert_store is None:
            return created

        try:
            key = await self.key_store.get_key(key_id)
            if key is None:
                return created

            since = self.clock() - SUSPICIOUS_ACTIVITY_WINDOW
            total = await self.key_store.count_recent_usage(key_id, since)

            if key.rate_limit and total > key.rate_limit * 24:
                alert = await self._create_alert(
                    key,
                    ALERT_RATE_LIMIT_EXCEEDED,
                    AlertSeverity.HIGH,
                    f'Rate limit exceeded for key "{key.name}". {total} requests in last 24 hours '
                    f"(limit: {key.rate_limit * 24}).",
                    {"requests": total, "limit": key.rate_limit * 24},
                )
                if alert:
                    created.append(alert)

            failed = await self.key_store.count_failed_usage(key_id, since)
            if failed > FAILURE_ALERT_MIN_FAILURES and failed / total > FAILURE_ALERT_MIN_RATIO:
                alert = await self._create_alert(
                    key,
                    ALERT_HIGH_FAILURE_RATE,
                    AlertSeverity.MEDIUM,
                    f'High failure rate detected for key "{key.name}". '
                    f"{failed} failed requests out of {total} total.",
                    {"failed": failed, "total": total},
                )
                if alert:
                    created.append(alert)
        except Exception:
            logger.error(f"Failed to check key {key_id} for suspicious activity", exc_info=True)

        return created

    async def _create_alert(
        self,
        key: StoredKey,
        alert_type: str,
        severity: AlertSeverity,
        message: str,
        metadata: Dict[str, Any],
    ) -> Optional[SecurityAlert]:
        alerts = self._alerts()
        now = self.clock()
        existing = await alerts.find_open_alert(key.user_id, key.id, alert_type, now - SUSPICIOUS_ACTIVITY_WINDOW)
        if existing is not None:
            return None

        alert = SecurityAlert(
            user_id=key.user_id,
            key_id=key.id,
            key_name=key.name,
            alert_type=alert_type,
            severity=severity,
            message=message,
            metadata=metadata,
            created_at=now,
        )
        await alerts.save_alert(alert)

        if severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL):
            logger.warning(f"Security alert for user {key.user_id}: {message}")
        else:
            logger.info(f"Security alert for user {key.user_id}: {message}")
        return alert

    async def list_alerts(
        self,
        user_id: str,
        unread_only: bool = False,
        unresolved_only: bool = False,
        limit: int = 50,
    ) -> List[SecurityAlert]:
        return await self._alerts().list_alerts(
            user_id, unread_only=unread_only, unresolved_only=unresolved_only, limit=limit
        )

    async def mark_alert_read(self, user_id: str, alert_id: str) -> bool:
        return await self._alerts().mark_alert_read(alert_id, user_id)

    async def resolve_alert(self, user_id: str, alert_id: str) -> bool:
        return await self._alerts().resolve_alert(alert_id, user_id, self.clock())

    async def unread_alert_count(self, user_id: str) -> int:
        return await self._alerts().count_unread_alerts(user_id)

    async def delete_resolved_alerts(self, user_id: str) -> int:
        deleted = await self._alerts().delete_resolved_alerts(user_id)
        logger.info(f"Deleted {deleted} resolved alerts for user {user_id}")
        return deleted
