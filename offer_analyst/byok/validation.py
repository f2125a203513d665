"""
Live checks of provider keys against each provider's API.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import httpx

from ..exceptions import InvalidProviderError
from .models import ProviderName

logger = logging.getLogger(__name__)


@dataclass
class KeyCheckResult:
    """Result of checking a key with its provider."""
    valid: bool
    provider: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "provider": self.provider,
            "status_code": self.status_code,
            "error": self.error,
            "checked_at": self.checked_at.isoformat(),
        }


def _check_request(provider: ProviderName, key: str) -> Tuple[str, Dict[str, str], Dict[str, str]]:
    """URL, headers and query params for a cheap authenticated call."""
    bearer = {"Authorization": f"Bearer {key}"}
    if provider == ProviderName.OPENROUTER:
        return "https://openrouter.ai/api/v1/auth/key", bearer, {}
    if provider == ProviderName.OPENAI:
        return "https://api.openai.com/v1/models", bearer, {}
    if provider == ProviderName.ANTHROPIC:
        headers = {"x-api-key": key, "anthropic-version": "2023-06-01"}
        return "https://api.anthropic.com/v1/models", headers, {}
    if provider == ProviderName.GOOGLE:
        return "https://generativelanguage.googleapis.com/v1beta/models", {}, {"key": key}
    return "https://api.mistral.ai/v1/models", bearer, {}


class ProviderKeyValidator:
    """Checks keys by calling each provider's models or auth endpoint."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize validator.

        Args:
            timeout: Request timeout in seconds
            transport: Optional httpx transport (for testing)
        """
        self.timeout = timeout
        self.transport = transport

    async def check_key(self, provider: str, key: str) -> KeyCheckResult:
        """
        Check whether a provider accepts a key.

        Args:
            provider: Provider name
            key: Plaintext API key

        Returns:
            KeyCheckResult; never raises for provider or network errors
        """
        try:
            provider_name = ProviderName.parse(provider)
        except InvalidProviderError:
            return KeyCheckResult(valid=False, provider=provider, error="Unsupported provider")

        url, headers, params = _check_request(provider_name, key)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, headers=headers, params=params)
        except httpx.HTTPError as e:
            logger.warning(f"Key check request to {provider_name.value} failed: {e}")
            return KeyCheckResult(valid=False, provider=provider_name.value, error=str(e))

        if response.status_code == 200:
            return KeyCheckResult(valid=True, provider=provider_name.value, status_code=200)

        return KeyCheckResult(
            valid=False,
            provider=provider_name.value,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )
