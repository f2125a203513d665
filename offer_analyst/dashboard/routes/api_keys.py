"""
API key routes for dashboard API.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query

from ..auth import get_current_user
from ..models import (
    ApiKeyCreateRequest,
    ApiKeyItem,
    ApiKeyPriorityRequest,
    ApiKeyRotateRequest,
    ApiKeysResponse,
    DeletedAlertsResponse,
    ErrorResponse,
    KeyCheckResponse,
    KeyStatsResponse,
    ResolvedKeyResponse,
    RotationDueItem,
    RotationDueResponse,
    RotationHistoryItem,
    RotationHistoryResponse,
    RotationResponse,
    SecurityAlertItem,
    SecurityAlertsResponse,
    UnreadAlertCountResponse,
    UsageActivityItem,
    UsageAnalyticsResponse,
    UsageTimelineItem,
    UsageTimelineResponse,
)
from ...byok.models import KeySource, ResolvedKey, StoredKey
from ...byok.validation import KeyCheckResult
from ...exceptions import InvalidProviderError, KeyNotFoundError
from . import get_key_manager, get_key_resolver, get_key_validator, get_rotation_days

logger = logging.getLogger(__name__)

router = APIRouter()


def _key_to_response(key: StoredKey) -> ApiKeyItem:
    """Convert stored key to API response."""
    return ApiKeyItem(**key.to_dict())


def _not_found(key_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "NOT_FOUND", "message": f"API key {key_id} not found"},
    )


def _alert_not_found(alert_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "NOT_FOUND", "message": f"Alert {alert_id} not found"},
    )


def _no_credential(provider: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "code": "NO_CREDENTIAL",
            "message": f"No API key configured for {provider}. Add a key or contact the administrator.",
        },
    )


async def _record_check(
    resolver,
    manager,
    resolved: ResolvedKey,
    result: KeyCheckResult,
    elapsed_ms: int,
):
    """Log a stored key check, then look for suspicious activity on the key."""
    await resolver.track_usage(
        resolved.key_id,
        provider=resolved.provider,
        action="key_check",
        success=result.valid,
        response_time_ms=elapsed_ms,
        error_message=result.error,
    )
    await manager.check_for_suspicious_activity(resolved.key_id)


# ----------------------------------------------------------------------------
# Resolution (anonymous callers allowed)
# ----------------------------------------------------------------------------

@router.get(
    "/keys/resolve/{provider}",
    response_model=ResolvedKeyResponse,
    summary="Resolve key",
    description="Show which credential would be used for a provider.",
    responses={404: {"model": ErrorResponse, "description": "No credential available"}},
)
async def resolve_key(
    provider: str = Path(..., description="Provider name"),
    temporary_key: Optional[str] = Header(None, alias="X-Temporary-Api-Key"),
):
    """Resolve the credential for a provider without exposing it."""
    resolver = get_key_resolver()
    resolved = await resolver.resolve_key(provider, temporary_key)
    if resolved is None:
        raise _no_credential(provider)

    return ResolvedKeyResponse(
        provider=resolved.provider,
        source=resolved.source.value,
        key_id=resolved.key_id,
        masked_key=resolved.masked_key,
    )


@router.post(
    "/keys/check/{provider}",
    response_model=KeyCheckResponse,
    summary="Check key",
    description="Resolve the credential for a provider and check it with the provider.",
    responses={404: {"model": ErrorResponse, "description": "No credential available"}},
)
async def check_key(
    provider: str = Path(..., description="Provider name"),
    temporary_key: Optional[str] = Header(None, alias="X-Temporary-Api-Key"),
):
    """Check the resolved credential and record the outcome for stored keys."""
    resolver = get_key_resolver()
    validator = get_key_validator()

    resolved = await resolver.resolve_key(provider, temporary_key)
    if resolved is None:
        raise _no_credential(provider)

    started = time.monotonic()
    result = await validator.check_key(resolved.provider, resolved.key)
    elapsed_ms = int((time.monotonic() - started) * 1000)

    if resolved.source == KeySource.STORED:
        resolver.run_in_background(
            _record_check(resolver, get_key_manager(), resolved, result, elapsed_ms)
        )

    return KeyCheckResponse(
        provider=resolved.provider,
        source=resolved.source.value,
        key_id=resolved.key_id,
        valid=result.valid,
        status_code=result.status_code,
        error=result.error,
        checked_at=result.checked_at.isoformat(),
    )


# ----------------------------------------------------------------------------
# Statistics
# ----------------------------------------------------------------------------

@router.get(
    "/keys/stats",
    response_model=KeyStatsResponse,
    summary="Key statistics",
)
async def key_stats(user: dict = Depends(get_current_user)):
    """Counts of stored keys and their total requests."""
    stats = await get_key_manager().get_stats(user["sub"])
    return KeyStatsResponse(**stats.to_dict())


@router.get(
    "/keys/rotation-due",
    response_model=RotationDueResponse,
    summary="Keys due for rotation",
)
async def rotation_due(
    max_age_days: Optional[int] = Query(None, ge=1, description="Age threshold in days"),
    user: dict = Depends(get_current_user),
):
    """List active keys older than the rotation threshold."""
    manager = get_key_manager()
    due = await manager.keys_needing_rotation(user["sub"], max_age_days or get_rotation_days())
    return RotationDueResponse(
        keys=[
            RotationDueItem(id=key.id, name=key.name, provider=key.provider, days_since_creation=days)
            for key, days in due
        ]
    )


@router.get(
    "/keys/analytics",
    response_model=UsageAnalyticsResponse,
    summary="Usage analytics",
)
async def usage_analytics(
    key_id: Optional[str] = Query(None, description="Limit to one key"),
    days: int = Query(30, ge=1, le=365),
    user: dict = Depends(get_current_user),
):
    """Aggregated usage over a period."""
    analytics = await get_key_manager().get_usage_analytics(user["sub"], key_id=key_id, days=days)
    return UsageAnalyticsResponse(
        total_requests=analytics.total_requests,
        success_rate=analytics.success_rate,
        avg_response_time_ms=analytics.avg_response_time_ms,
        total_tokens=analytics.total_tokens,
        requests_by_provider=analytics.requests_by_provider,
        requests_by_action=analytics.requests_by_action,
        recent_activity=[
            UsageActivityItem(
                timestamp=entry.timestamp.isoformat(),
                action=entry.action,
                provider=entry.provider,
                success=entry.success,
                response_time_ms=entry.response_time_ms,
            )
            for entry in analytics.recent_activity
        ],
    )


@router.get(
    "/keys/timeline",
    response_model=UsageTimelineResponse,
    summary="Usage timeline",
)
async def usage_timeline(
    key_id: Optional[str] = Query(None, description="Limit to one key"),
    days: int = Query(30, ge=1, le=365),
    user: dict = Depends(get_current_user),
):
    """Daily request counts."""
    timeline = await get_key_manager().get_usage_timeline(user["sub"], key_id=key_id, days=days)
    return UsageTimelineResponse(timeline=[UsageTimelineItem(**day) for day in timeline])


@router.get(
    "/keys/rotation-history",
    response_model=RotationHistoryResponse,
    summary="Rotation history",
    description="All keys including rotated and deprecated ones, newest first.",
    responses={400: {"model": ErrorResponse, "description": "Unknown provider"}},
)
async def rotation_history(
    provider: Optional[str] = Query(None, description="Limit to one provider"),
    user: dict = Depends(get_current_user),
):
    """List a user's keys across rotations."""
    try:
        keys = await get_key_manager().get_key_rotation_history(user["sub"], provider=provider)
    except InvalidProviderError as e:
        raise HTTPException(status_code=400, detail={"code": e.error_code, "message": e.message})

    return RotationHistoryResponse(
        keys=[
            RotationHistoryItem(
                id=key.id,
                name=key.name,
                provider=key.provider,
                created_at=key.created_at.isoformat(),
                is_active=key.is_active,
                is_primary=key.is_primary,
            )
            for key in keys
        ]
    )


# ----------------------------------------------------------------------------
# Security alerts
# ----------------------------------------------------------------------------

@router.get(
    "/keys/alerts",
    response_model=SecurityAlertsResponse,
    summary="Security alerts",
)
async def list_alerts(
    unread_only: bool = Query(False),
    unresolved_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(get_current_user),
):
    """List security alerts, newest first."""
    alerts = await get_key_manager().list_alerts(
        user["sub"], unread_only=unread_only, unresolved_only=unresolved_only, limit=limit
    )
    return SecurityAlertsResponse(alerts=[SecurityAlertItem(**alert.to_dict()) for alert in alerts])


@router.get(
    "/keys/alerts/unread-count",
    response_model=UnreadAlertCountResponse,
    summary="Unread alert count",
)
async def unread_alert_count(user: dict = Depends(get_current_user)):
    count = await get_key_manager().unread_alert_count(user["sub"])
    return UnreadAlertCountResponse(count=count)


@router.post(
    "/keys/alerts/{alert_id}/read",
    summary="Mark alert read",
    responses={404: {"model": ErrorResponse, "description": "Alert not found"}},
)
async def mark_alert_read(
    alert_id: str = Path(..., description="Alert ID"),
    user: dict = Depends(get_current_user),
):
    if not await get_key_manager().mark_alert_read(user["sub"], alert_id):
        raise _alert_not_found(alert_id)
    return {"success": True}


@router.post(
    "/keys/alerts/{alert_id}/resolve",
    summary="Resolve alert",
    responses={404: {"model": ErrorResponse, "description": "Alert not found"}},
)
async def resolve_alert(
    alert_id: str = Path(..., description="Alert ID"),
    user: dict = Depends(get_current_user),
):
    """Resolve an alert. Resolved alerts are also marked read."""
    if not await get_key_manager().resolve_alert(user["sub"], alert_id):
        raise _alert_not_found(alert_id)
    return {"success": True}


@router.delete(
    "/keys/alerts/resolved",
    response_model=DeletedAlertsResponse,
    summary="Delete resolved alerts",
)
async def delete_resolved_alerts(user: dict = Depends(get_current_user)):
    count = await get_key_manager().delete_resolved_alerts(user["sub"])
    return DeletedAlertsResponse(message=f"Deleted {count} resolved alerts", count=count)


# ----------------------------------------------------------------------------
# CRUD
# ----------------------------------------------------------------------------

@router.get(
    "/keys",
    response_model=ApiKeysResponse,
    summary="List keys",
    description="Get the user's active provider keys.",
)
async def list_keys(user: dict = Depends(get_current_user)):
    """List stored keys."""
    keys = await get_key_manager().list_keys(user["sub"])
    return ApiKeysResponse(keys=[_key_to_response(key) for key in keys])


@router.post(
    "/keys",
    response_model=ApiKeyItem,
    status_code=201,
    summary="Add key",
    responses={400: {"model": ErrorResponse, "description": "Invalid request"}},
)
async def create_key(body: ApiKeyCreateRequest, user: dict = Depends(get_current_user)):
    """Encrypt and store a provider key."""
    manager = get_key_manager()
    try:
        key = await manager.add_key(
            user_id=user["sub"],
            name=body.name,
            provider=body.provider,
            api_key=body.api_key,
            expires_at=body.expires_at,
            rate_limit=body.rate_limit,
            priority=body.priority,
            is_primary=body.is_primary,
        )
    except InvalidProviderError as e:
        raise HTTPException(status_code=400, detail={"code": e.error_code, "message": e.message})
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "INVALID_REQUEST", "message": str(e)})

    return _key_to_response(key)


@router.delete(
    "/keys/{key_id}",
    summary="Delete key",
    responses={404: {"model": ErrorResponse, "description": "Key not found"}},
)
async def delete_key(
    key_id: str = Path(..., description="Key ID"),
    user: dict = Depends(get_current_user),
):
    """Delete a stored key."""
    deleted = await get_key_manager().delete_key(user["sub"], key_id)
    if not deleted:
        raise _not_found(key_id)
    return {"success": True}


@router.post(
    "/keys/{key_id}/rotate",
    response_model=RotationResponse,
    summary="Rotate key",
    responses={404: {"model": ErrorResponse, "description": "Key not found"}},
)
async def rotate_key(
    body: ApiKeyRotateRequest,
    key_id: str = Path(..., description="Key ID"),
    user: dict = Depends(get_current_user),
):
    """Replace a key's secret, keeping its settings."""
    try:
        result = await get_key_manager().rotate_key(
            user["sub"], key_id, body.new_api_key, delete_old=body.delete_old
        )
    except KeyNotFoundError:
        raise _not_found(key_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "INVALID_REQUEST", "message": str(e)})

    return RotationResponse(
        message=result.message,
        new_key=_key_to_response(result.new_key),
        old_key_id=result.old_key_id,
    )


@router.post(
    "/keys/{key_id}/primary",
    summary="Set primary key",
    responses={404: {"model": ErrorResponse, "description": "Key not found"}},
)
async def set_primary(
    key_id: str = Path(..., description="Key ID"),
    user: dict = Depends(get_current_user),
):
    """Make a key the primary key for its provider."""
    try:
        await get_key_manager().set_primary(user["sub"], key_id)
    except KeyNotFoundError:
        raise _not_found(key_id)
    return {"success": True}


@router.put(
    "/keys/{key_id}/priority",
    summary="Update key priority",
    responses={404: {"model": ErrorResponse, "description": "Key not found"}},
)
async def update_priority(
    body: ApiKeyPriorityRequest,
    key_id: str = Path(..., description="Key ID"),
    user: dict = Depends(get_current_user),
):
    """Change a key's priority."""
    updated = await get_key_manager().update_priority(user["sub"], key_id, body.priority)
    if not updated:
        raise _not_found(key_id)
    return {"success": True}
