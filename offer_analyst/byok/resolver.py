"""
API key resolver for outbound AI-provider calls.

Resolves the credential to use for a provider, in trust order:
1. The authenticated user's stored keys (active, unexpired, under their
   rate limit; ordered by priority, primary flag, then newest)
2. A transient key supplied by the caller
3. The process-wide fallback key

Every expected failure along the way (no session, a corrupt key, an empty
table, no fallback) degrades to the next stage. Only missing collaborators
at construction time raise.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Coroutine, List, Optional, Set, Tuple, Union

from ..exceptions import ConfigurationError
from .fallback import EnvFallbackConfig, FallbackKeySource
from .identity import AnonymousIdentityProvider, IdentityProvider
from .models import KeySource, ProviderName, ResolvedKey, StoredKey, UsageLogEntry

if TYPE_CHECKING:
    from ..data.base import ApiKeyRepository
    from .cipher import SecretCipher

logger = logging.getLogger(__name__)

DEFAULT_USAGE_WINDOW = timedelta(minutes=60)


def candidate_sort_key(key: StoredKey) -> Tuple[int, bool, datetime]:
    """Sort key for stored keys; sort with ``reverse=True`` for preference order."""
    return (key.priority, key.is_primary, key.created_at)


def order_candidates(keys: List[StoredKey]) -> List[StoredKey]:
    """
    Order keys by preference.

    Higher priority wins; among equal priority a primary key wins; among
    the rest the newest key wins. The sort is stable, so rows equal on all
    three fields keep the order the store returned them in.
    """
    return sorted(keys, key=candidate_sort_key, reverse=True)


class ApiKeyResolver:
    """
    Resolves API keys for provider requests.

    Handles the key hierarchy:
    1. Stored user key (if signed in and a usable key exists)
    2. Transient caller key
    3. Fallback key
    """

    def __init__(
        self,
        key_store: "ApiKeyRepository",
        cipher: "SecretCipher",
        identity_provider: Optional[IdentityProvider] = None,
        fallback: Optional[FallbackKeySource] = None,
        window: timedelta = DEFAULT_USAGE_WINDOW,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize API key resolver.

        Args:
            key_store: Repository of stored keys and usage rows
            cipher: Decrypts stored key payloads
            identity_provider: Current-user lookup (anonymous when omitted)
            fallback: Shared fallback keys (environment when omitted)
            window: Sliding window for per-key rate limits
            clock: Source of "now"

        Raises:
            ConfigurationError: If the key store or cipher is missing
        """
        if key_store is None:
            raise ConfigurationError("ApiKeyResolver requires a key store")
        if cipher is None:
            raise ConfigurationError("ApiKeyResolver requires a cipher")
        if window <= timedelta(0):
            raise ConfigurationError("Usage window must be positive")

        self.key_store = key_store
        self.cipher = cipher
        self.identity_provider = identity_provider or AnonymousIdentityProvider()
        self.fallback = fallback or EnvFallbackConfig()
        self.window = window
        self.clock = clock
        self._pending: Set[asyncio.Task] = set()

    async def resolve_key(
        self,
        provider: Union[ProviderName, str],
        transient_key: Optional[str] = None
    ) -> Optional[ResolvedKey]:
        """
        Get the credential to use for a provider.

        Args:
            provider: Provider name
            transient_key: Optional key supplied by an unauthenticated caller

        Returns:
            ResolvedKey with key value and provenance, or None if no
            credential is available
        """
        provider_name = provider.value if isinstance(provider, ProviderName) else str(provider)

        user_id = await self._current_identity()
        if user_id:
            resolved = await self._resolve_stored(user_id, provider_name)
            if resolved:
                return resolved

        if transient_key:
            logger.info(f"Using transient key for {provider_name}")
            return ResolvedKey(
                key=transient_key,
                source=KeySource.TRANSIENT,
                provider=provider_name,
            )

        fallback_key = self.fallback.lookup_fallback(provider_name)
        if fallback_key:
            logger.info(f"Using fallback key for {provider_name}")
            return ResolvedKey(
                key=fallback_key,
                source=KeySource.FALLBACK,
                provider=provider_name,
            )

        logger.warning(f"No API key available for {provider_name}")
        return None

    async def _current_identity(self) -> Optional[str]:
        try:
            return await self.identity_provider.current_identity()
        except Exception as e:
            logger.warning(f"Identity lookup failed, continuing as anonymous: {e}")
            return None

    async def _resolve_stored(self, user_id: str, provider: str) -> Optional[ResolvedKey]:
        """Try the user's stored keys in preference order."""
        now = self.clock()

        try:
            keys = await self.key_store.find_eligible_keys(user_id, provider, now)
        except Exception as e:
            logger.warning(f"Failed to load stored keys for {provider}: {e}")
            return None

        candidates = order_candidates([k for k in keys if k.is_eligible(now)])
        if not candidates:
            logger.debug(f"No stored keys for {provider}")
            return None

        since = now - self.window
        for candidate in candidates:
            if candidate.rate_limit is not None:
                try:
                    recent = await self.key_store.count_recent_usage(candidate.id, since)
                except Exception as e:
                    logger.warning(f"Usage count failed for key {candidate.id}, skipping: {e}")
                    continue

                if recent >= candidate.rate_limit:
                    logger.info(
                        f"Key {candidate.id} rate limited ({recent}/{candidate.rate_limit}), trying next"
                    )
                    continue

            try:
                secret = self.cipher.decrypt(candidate.key_encrypted)
            except Exception as e:
                logger.warning(f"Failed to decrypt key {candidate.id}, skipping: {e}")
                continue

            if not secret:
                logger.warning(f"Key {candidate.id} decrypted to an empty value, skipping")
                continue

            logger.info(f"Using stored key {candidate.id} for {provider}")
            return ResolvedKey(
                key=secret,
                source=KeySource.STORED,
                provider=provider,
                key_id=candidate.id,
            )

        logger.info(f"All stored keys for {provider} unusable, falling through")
        return None

    # =========================================================================
    # Usage tracking
    # =========================================================================

    async def track_usage(self, key_id: str, **details: Any) -> None:
        """
        Record one use of a stored key.

        Failures are logged and swallowed; usage accounting never affects
        the caller.

        Args:
            key_id: Stored key identifier from a stored ResolvedKey
            **details: Optional UsageLogEntry fields (action, model, ...)
        """
        now = self.clock()
        try:
            await self.key_store.append_usage(UsageLogEntry(key_id=key_id, timestamp=now, **details))
            await self.key_store.touch_last_used(key_id, now)
        except Exception:
            logger.error(f"Failed to record usage for key {key_id}", exc_info=True)

    def record_usage(self, key_id: str, **details: Any) -> asyncio.Task:
        """
        Schedule usage recording without waiting for it.

        Must be called from a running event loop, after the caller's
        request with the key finished. Pass ``success=False`` and an
        ``error_message`` for failed requests.

        Returns:
            The scheduled task
        """
        return self.run_in_background(self.track_usage(key_id, **details))

    def run_in_background(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule usage bookkeeping that shutdown waits for."""
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._usage_task_done)
        return task

    def _usage_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Usage recording task cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Usage recording task failed: {error}")

    @property
    def pending_usage(self) -> int:
        return len(self._pending)

    async def wait_for_pending(self) -> None:
        """Wait for all scheduled usage recording to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
