"""
Dashboard API route modules.
"""

from typing import Optional

from fastapi import HTTPException

# Service references (set by router.py)
_key_resolver = None
_key_manager = None
_key_validator = None
_rotation_days: int = 90


def set_services(
    key_resolver=None,
    key_manager=None,
    key_validator=None,
    rotation_days: Optional[int] = None,
):
    """Set service references for route handlers."""
    global _key_resolver, _key_manager, _key_validator, _rotation_days
    _key_resolver = key_resolver
    _key_manager = key_manager
    _key_validator = key_validator
    if rotation_days is not None:
        _rotation_days = rotation_days


def _unavailable(name: str) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"code": "SERVICE_UNAVAILABLE", "message": f"{name} not available"},
    )


def get_key_resolver():
    """Get key resolver."""
    if _key_resolver is None:
        raise _unavailable("Key resolver")
    return _key_resolver


def get_key_manager():
    """Get key manager."""
    if _key_manager is None:
        raise _unavailable("Key manager")
    return _key_manager


def get_key_validator():
    """Get provider key validator."""
    if _key_validator is None:
        raise _unavailable("Key validator")
    return _key_validator


def get_rotation_days() -> int:
    return _rotation_days


# Import routers
from .api_keys import router as api_keys_router

__all__ = [
    "set_services",
    "get_key_resolver",
    "get_key_manager",
    "get_key_validator",
    "get_rotation_days",
    "api_keys_router",
]
