"""
Process-wide fallback keys.

Fallback keys are the last stage of resolution. Provider aliases (``gemini``
for ``google``) are handled here rather than in the resolver.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

# Environment variables checked per provider, in order
PROVIDER_ENV_VARS: Dict[str, List[str]] = {
    "openrouter": ["OPENROUTER_API_KEY"],
    "openai": ["OPENAI_API_KEY"],
    "anthropic": ["ANTHROPIC_API_KEY"],
    "google": ["GOOGLE_API_KEY", "GEMINI_API_KEY"],
    "gemini": ["GOOGLE_API_KEY", "GEMINI_API_KEY"],
    "mistral": ["MISTRAL_API_KEY"],
}


class FallbackKeySource(ABC):
    """Abstract source of shared fallback keys."""

    @abstractmethod
    def lookup_fallback(self, provider: str) -> Optional[str]:
        """
        Look up the fallback key for a provider.

        Args:
            provider: Provider name as given by the caller

        Returns:
            Key value or None if not configured
        """
        pass


class EnvFallbackConfig(FallbackKeySource):
    """
    Environment variable fallback.

    Reads the environment at lookup time so rotated deployment secrets
    are picked up without a restart.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    def lookup_fallback(self, provider: str) -> Optional[str]:
        var_names = PROVIDER_ENV_VARS.get((provider or "").lower())
        if not var_names:
            logger.debug(f"No fallback mapping for provider: {provider}")
            return None

        for var_name in var_names:
            value = self.environ.get(var_name)
            if value:
                logger.debug(f"Found fallback key in env var: {var_name}")
                return value
        return None


class StaticFallbackConfig(FallbackKeySource):
    """Fixed provider-to-key mapping."""

    def __init__(self, keys: Mapping[str, str]):
        self._keys = {name.lower(): value for name, value in keys.items()}

    def lookup_fallback(self, provider: str) -> Optional[str]:
        return self._keys.get((provider or "").lower()) or None
