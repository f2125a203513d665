"""
Dashboard authentication with JWT bearer tokens.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class DashboardAuth:
    """Issues and verifies session JWTs."""

    def __init__(self, jwt_secret: str, jwt_expiration_hours: int = 24):
        """Initialize authentication handler.

        Args:
            jwt_secret: Secret for JWT signing
            jwt_expiration_hours: JWT token expiration in hours
        """
        self.jwt_secret = jwt_secret
        self.jwt_expiration_hours = jwt_expiration_hours

    def create_jwt(self, user_id: str, email: Optional[str] = None) -> str:
        """Create JWT token for an authenticated user.

        Args:
            user_id: User identifier
            email: Optional email claim

        Returns:
            JWT token string
        """
        now = datetime.utcnow()
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + timedelta(hours=self.jwt_expiration_hours),
        }
        if email:
            payload["email"] = email
        return jwt.encode(payload, self.jwt_secret, algorithm=JWT_ALGORITHM)

    def decode_token(self, token: str) -> dict:
        """Decode a JWT, raising JWTError if invalid or expired."""
        return jwt.decode(token, self.jwt_secret, algorithms=[JWT_ALGORITHM])

    def verify_jwt(self, token: str) -> dict:
        """Verify and decode JWT token.

        Args:
            token: JWT token string

        Returns:
            Decoded token payload

        Raises:
            HTTPException: If token is invalid or expired
        """
        try:
            return self.decode_token(token)
        except JWTError as e:
            error_str = str(e).lower()
            if "expired" in error_str:
                raise HTTPException(
                    status_code=401,
                    detail={"code": "TOKEN_EXPIRED", "message": "Token has expired"},
                )
            raise HTTPException(
                status_code=401,
                detail={"code": "INVALID_TOKEN", "message": "Invalid token"},
            )


# ============================================================================
# FastAPI Dependencies
# ============================================================================

# Security scheme
security = HTTPBearer(auto_error=False)

# Global auth instance (set by router)
_auth_instance: Optional[DashboardAuth] = None


def set_auth_instance(auth: DashboardAuth):
    """Set the global auth instance."""
    global _auth_instance
    _auth_instance = auth


def get_auth() -> DashboardAuth:
    """Get the auth instance."""
    if _auth_instance is None:
        raise RuntimeError("Auth not initialized")
    return _auth_instance


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """FastAPI dependency to get current authenticated user.

    Returns:
        JWT payload with user info

    Raises:
        HTTPException: If not authenticated
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Not authenticated"},
        )

    auth = get_auth()
    return auth.verify_jwt(credentials.credentials)
