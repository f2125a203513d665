"""
BYOK data models.

Stored provider credentials, their usage log rows, and the value handed
back to callers once a credential has been resolved.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..exceptions import InvalidProviderError
from .cipher import mask_key


class ProviderName(str, Enum):
    """Supported AI providers."""
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    MISTRAL = "mistral"

    @classmethod
    def parse(cls, value: Union[str, "ProviderName"]) -> "ProviderName":
        """Parse a provider name, accepting any case and the ``gemini`` alias."""
        if isinstance(value, ProviderName):
            return value
        normalized = (value or "").strip().lower()
        if normalized == "gemini":
            return cls.GOOGLE
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidProviderError(value)

    @classmethod
    def is_supported(cls, value: str) -> bool:
        try:
            cls.parse(value)
            return True
        except InvalidProviderError:
            return False


class AlertSeverity(str, Enum):
    """How urgent a security alert is."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class KeySource(str, Enum):
    """Where a resolved credential came from."""
    STORED = "stored"
    TRANSIENT = "transient"
    FALLBACK = "fallback"


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to naive UTC, the form timestamps are stored and compared in."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return to_naive_utc(datetime.fromisoformat(value))


@dataclass
class StoredKey:
    """A credential a user registered for one provider."""
    id: str
    user_id: str
    provider: str
    key_encrypted: str
    name: str = ""
    key_preview: str = ""
    priority: int = 0
    is_primary: bool = False
    rate_limit: Optional[int] = None  # max calls per rolling window
    is_active: bool = True
    expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_used: Optional[datetime] = None
    usage_count: int = 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.utcnow())

    def is_eligible(self, now: Optional[datetime] = None) -> bool:
        """Active and not expired."""
        return self.is_active and not self.is_expired(now)

    def days_since_creation(self, now: Optional[datetime] = None) -> int:
        return ((now or datetime.utcnow()) - self.created_at).days

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses. Never includes ciphertext."""
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "key_preview": self.key_preview,
            "priority": self.priority,
            "is_primary": self.is_primary,
            "rate_limit": self.rate_limit,
            "is_active": self.is_active,
            "is_expired": self.is_expired(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "usage_count": self.usage_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredKey":
        """Build from a database row or dictionary."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            provider=data["provider"],
            key_encrypted=data["key_encrypted"],
            name=data.get("name") or "",
            key_preview=data.get("key_preview") or "",
            priority=int(data.get("priority") or 0),
            is_primary=bool(data.get("is_primary")),
            rate_limit=data.get("rate_limit"),
            is_active=bool(data.get("is_active", True)),
            expires_at=_parse_datetime(data.get("expires_at")),
            created_at=_parse_datetime(data.get("created_at")) or datetime.utcnow(),
            last_used=_parse_datetime(data.get("last_used")),
            usage_count=int(data.get("usage_count") or 0),
        )


@dataclass
class UsageLogEntry:
    """One recorded use of a stored key."""
    key_id: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    id: Optional[str] = None
    user_id: Optional[str] = None
    provider: Optional[str] = None
    action: Optional[str] = None
    success: bool = True
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key_id": self.key_id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "provider": self.provider,
            "action": self.action,
            "success": self.success,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "response_time_ms": self.response_time_ms,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageLogEntry":
        return cls(
            id=data.get("id"),
            key_id=data["key_id"],
            timestamp=_parse_datetime(data["timestamp"]),
            user_id=data.get("user_id"),
            provider=data.get("provider"),
            action=data.get("action"),
            success=bool(data.get("success", True)),
            model=data.get("model"),
            tokens_used=data.get("tokens_used"),
            response_time_ms=data.get("response_time_ms"),
            error_message=data.get("error_message"),
        )


@dataclass
class ResolvedKey:
    """Result of key resolution."""
    key: str
    source: KeySource
    provider: str
    key_id: Optional[str] = None  # only for stored keys

    @property
    def attribution(self) -> str:
        """Format for usage ledger attribution."""
        if self.source == KeySource.STORED:
            return f"stored:{self.key_id}"
        return self.source.value

    @property
    def masked_key(self) -> str:
        return mask_key(self.key)


@dataclass
class SecurityAlert:
    """Suspicious activity noticed on one of a user's keys."""
    user_id: str
    alert_type: str
    severity: AlertSeverity
    message: str
    id: Optional[str] = None
    key_id: Optional[str] = None
    key_name: Optional[str] = None  # filled in on read
    metadata: Optional[Dict[str, Any]] = None
    is_read: bool = False
    is_resolved: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "severity": self.severity.value,
            "message": self.message,
            "key_id": self.key_id,
            "key_name": self.key_name,
            "metadata": self.metadata,
            "is_read": self.is_read,
            "is_resolved": self.is_resolved,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityAlert":
        metadata = data.get("metadata")
        if isinstance(metadata, str):
            metadata = json.loads(metadata) if metadata else None
        return cls(
            id=data.get("id"),
            user_id=data["user_id"],
            alert_type=data["alert_type"],
            severity=AlertSeverity(data["severity"]),
            message=data["message"],
            key_id=data.get("key_id"),
            key_name=data.get("key_name"),
            metadata=metadata,
            is_read=bool(data.get("is_read")),
            is_resolved=bool(data.get("is_resolved")),
            created_at=_parse_datetime(data.get("created_at")) or datetime.utcnow(),
            resolved_at=_parse_datetime(data.get("resolved_at")),
        )
