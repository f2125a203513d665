"""
BYOK (Bring Your Own Key) credential resolution.

Resolves which provider key an outbound AI call uses: the signed-in
user's stored keys first, then a caller-supplied transient key, then the
deployment's fallback key.
"""

from .models import (
    ProviderName,
    KeySource,
    AlertSeverity,
    StoredKey,
    UsageLogEntry,
    ResolvedKey,
    SecurityAlert,
)
from .cipher import SecretCipher, mask_key, key_preview
from .fallback import FallbackKeySource, EnvFallbackConfig, StaticFallbackConfig
from .identity import (
    IdentityProvider,
    AnonymousIdentityProvider,
    JWTIdentityProvider,
    IdentityContextMiddleware,
    bind_bearer_token,
    reset_bearer_token,
)
from .resolver import ApiKeyResolver, candidate_sort_key, order_candidates
from .manager import ApiKeyManager, RotationResult, KeyStats, UsageAnalytics
from .validation import ProviderKeyValidator, KeyCheckResult

__all__ = [
    # Models
    "ProviderName",
    "KeySource",
    "StoredKey",
    "UsageLogEntry",
    "ResolvedKey",
    "AlertSeverity",
    "SecurityAlert",
    # Encryption
    "SecretCipher",
    "mask_key",
    "key_preview",
    # Fallback
    "FallbackKeySource",
    "EnvFallbackConfig",
    "StaticFallbackConfig",
    # Identity
    "IdentityProvider",
    "AnonymousIdentityProvider",
    "JWTIdentityProvider",
    "IdentityContextMiddleware",
    "bind_bearer_token",
    "reset_bearer_token",
    # Resolution
    "ApiKeyResolver",
    "candidate_sort_key",
    "order_candidates",
    # Management
    "ApiKeyManager",
    "RotationResult",
    "KeyStats",
    "UsageAnalytics",
    # Validation
    "ProviderKeyValidator",
    "KeyCheckResult",
]
