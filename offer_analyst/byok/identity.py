"""
Caller identity for key resolution.

The bearer token of the current request is bound to a context variable by
``IdentityContextMiddleware``; ``JWTIdentityProvider`` turns it into a user id.
"""

import logging
from abc import ABC, abstractmethod
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..exceptions import IdentityLookupError

if TYPE_CHECKING:
    from ..dashboard.auth import DashboardAuth

logger = logging.getLogger(__name__)

_bearer_token: ContextVar[Optional[str]] = ContextVar("bearer_token", default=None)


def bind_bearer_token(token: Optional[str]) -> Token:
    """Bind a bearer token to the current context."""
    return _bearer_token.set(token)


def reset_bearer_token(handle: Token) -> None:
    _bearer_token.reset(handle)


def current_bearer_token() -> Optional[str]:
    return _bearer_token.get()


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


class IdentityContextMiddleware(BaseHTTPMiddleware):
    """Bind the request's bearer token for the duration of the request."""

    async def dispatch(self, request: Request, call_next):
        handle = bind_bearer_token(_extract_bearer(request.headers.get("authorization")))
        try:
            return await call_next(request)
        finally:
            reset_bearer_token(handle)


class IdentityProvider(ABC):
    """Abstract lookup of the current authenticated user."""

    @abstractmethod
    async def current_identity(self) -> Optional[str]:
        """
        Get the current user id.

        Returns:
            User id, or None for anonymous callers
        """
        pass


class AnonymousIdentityProvider(IdentityProvider):
    """Treats every caller as anonymous."""

    async def current_identity(self) -> Optional[str]:
        return None


class JWTIdentityProvider(IdentityProvider):
    """Resolves the user from the bearer token bound to the request context."""

    def __init__(self, auth: "DashboardAuth"):
        self.auth = auth

    async def current_identity(self) -> Optional[str]:
        token = current_bearer_token()
        if not token:
            return None

        try:
            payload = self.auth.decode_token(token)
        except Exception as e:
            raise IdentityLookupError(f"Invalid session token: {e}")

        user_id = payload.get("sub")
        if not user_id:
            raise IdentityLookupError("Session token has no subject")
        return str(user_id)
