"""
Dashboard Pydantic schemas.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# API Keys
# ============================================================================

class ApiKeyCreateRequest(BaseModel):
    """Request to store a new provider key."""
    name: str = Field("", max_length=100)
    provider: str
    api_key: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    rate_limit: Optional[int] = Field(None, gt=0)
    priority: int = 0
    is_primary: bool = False


class ApiKeyRotateRequest(BaseModel):
    """Request to rotate a key."""
    new_api_key: str = Field(..., min_length=1)
    delete_old: bool = False


class ApiKeyPriorityRequest(BaseModel):
    """Request to change a key's priority."""
    priority: int


class ApiKeyItem(BaseModel):
    """Stored key as shown in the dashboard. Never carries the secret."""
    id: str
    name: str
    provider: str
    key_preview: str
    priority: int
    is_primary: bool
    rate_limit: Optional[int] = None
    is_active: bool
    is_expired: bool
    expires_at: Optional[str] = None
    created_at: str
    last_used: Optional[str] = None
    usage_count: int


class ApiKeysResponse(BaseModel):
    """List of stored keys."""
    keys: List[ApiKeyItem]


class RotationResponse(BaseModel):
    """Result of a rotation."""
    message: str
    new_key: ApiKeyItem
    old_key_id: str


class RotationDueItem(BaseModel):
    """Key older than the rotation threshold."""
    id: str
    name: str
    provider: str
    days_since_creation: int


class RotationDueResponse(BaseModel):
    keys: List[RotationDueItem]


class KeyStatsResponse(BaseModel):
    total_keys: int
    total_requests: int
    byok_active: bool


class UsageActivityItem(BaseModel):
    timestamp: str
    action: Optional[str] = None
    provider: Optional[str] = None
    success: bool
    response_time_ms: Optional[int] = None


class UsageAnalyticsResponse(BaseModel):
    total_requests: int
    success_rate: float
    avg_response_time_ms: int
    total_tokens: int
    requests_by_provider: Dict[str, int]
    requests_by_action: Dict[str, int]
    recent_activity: List[UsageActivityItem]


class UsageTimelineItem(BaseModel):
    date: str
    requests: int
    successful_requests: int
    failed_requests: int


class UsageTimelineResponse(BaseModel):
    timeline: List[UsageTimelineItem]


class RotationHistoryItem(BaseModel):
    """A key in a provider's rotation history."""
    id: str
    name: str
    provider: str
    created_at: str
    is_active: bool
    is_primary: bool


class RotationHistoryResponse(BaseModel):
    keys: List[RotationHistoryItem]


class ResolvedKeyResponse(BaseModel):
    """Which credential would be used for a provider."""
    provider: str
    source: str
    key_id: Optional[str] = None
    masked_key: str


class KeyCheckResponse(BaseModel):
    """Result of checking the resolved key with its provider."""
    provider: str
    source: str
    key_id: Optional[str] = None
    valid: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    checked_at: str


# ============================================================================
# Security alerts
# ============================================================================

class SecurityAlertItem(BaseModel):
    """Alert raised for suspicious key usage."""
    id: str
    alert_type: str
    severity: str
    message: str
    key_id: Optional[str] = None
    key_name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_read: bool
    is_resolved: bool
    created_at: str
    resolved_at: Optional[str] = None


class SecurityAlertsResponse(BaseModel):
    alerts: List[SecurityAlertItem]


class UnreadAlertCountResponse(BaseModel):
    count: int


class DeletedAlertsResponse(BaseModel):
    message: str
    count: int


# ============================================================================
# Errors
# ============================================================================

class ErrorDetail(BaseModel):
    """Error detail."""
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: ErrorDetail
