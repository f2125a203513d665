"""
Exception hierarchy for the Offer Analyst key service.
"""

from typing import Any, Dict, Optional


class OfferAnalystError(Exception):
    """Base error carrying a machine-readable code and context."""

    def __init__(
        self,
        message: str,
        error_code: str = "OFFER_ANALYST_ERROR",
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationError(OfferAnalystError):
    """Collaborators or settings are missing or invalid at startup."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", context)


class InvalidProviderError(OfferAnalystError):
    """Provider name is not one of the supported AI providers."""

    def __init__(self, provider: str):
        super().__init__(
            f"Unsupported provider: {provider}",
            "INVALID_PROVIDER",
            {"provider": provider},
        )
        self.provider = provider


class DecryptionError(OfferAnalystError):
    """Stored ciphertext is malformed or has been tampered with."""

    def __init__(self, message: str = "Failed to decrypt API key"):
        super().__init__(message, "DECRYPTION_FAILED")


class KeyStoreError(OfferAnalystError):
    """Key store query or write failed."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "KEY_STORE_ERROR", context)


class IdentityLookupError(OfferAnalystError):
    """Current caller identity could not be determined."""

    def __init__(self, message: str = "Identity lookup failed"):
        super().__init__(message, "IDENTITY_LOOKUP_FAILED")


class KeyNotFoundError(OfferAnalystError):
    """Stored key does not exist or is not owned by the caller."""

    def __init__(self, key_id: str):
        super().__init__(
            f"API key not found: {key_id}",
            "KEY_NOT_FOUND",
            {"key_id": key_id},
        )
        self.key_id = key_id
