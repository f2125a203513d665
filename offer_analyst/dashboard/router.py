"""
Main dashboard API router.
"""

import logging

from fastapi import APIRouter, FastAPI

from .auth import DashboardAuth, set_auth_instance
from .routes import api_keys_router, set_services

logger = logging.getLogger(__name__)


def create_dashboard_router(
    auth: DashboardAuth,
    key_resolver=None,
    key_manager=None,
    key_validator=None,
    rotation_days: int = 90,
) -> APIRouter:
    """Create the dashboard API router.

    Args:
        auth: Session token handler
        key_resolver: Resolver for provider credentials
        key_manager: Stored key manager
        key_validator: Provider key checker
        rotation_days: Default age threshold for rotation reminders

    Returns:
        FastAPI router with all dashboard endpoints
    """
    set_auth_instance(auth)
    set_services(
        key_resolver=key_resolver,
        key_manager=key_manager,
        key_validator=key_validator,
        rotation_days=rotation_days,
    )

    router = APIRouter(prefix="/api/v1")
    router.include_router(api_keys_router, tags=["API Keys"])
    return router


def setup_dashboard_api(app: FastAPI, auth: DashboardAuth, **services):
    """Setup dashboard API on existing FastAPI app.

    Args:
        app: FastAPI application
        auth: Session token handler
        **services: Passed to create_dashboard_router
    """
    router = create_dashboard_router(auth, **services)
    app.include_router(router)
    logger.info("Dashboard API routes added to application")
