"""
FinGuard Rate Limiting
Fixed-window request quotas per endpoint and caller identity
"""

import math
import sys
from datetime import timedelta
from typing import Optional

from finguard.core.config import Settings, settings as default_settings
from finguard.core.counter_store import CounterStore
from finguard.core.exceptions import CounterStoreError, RateLimitExceededError
from finguard.core.logging import LoggerMixin, mask_identifier

UNLIMITED = sys.maxsize
DEFAULT_WINDOW = timedelta(minutes=1)


class RateLimiter(LoggerMixin):
    """
    Fixed-window limiter over the shared counter store.

    A window opens with the first request and closes one window later;
    a burst straddling the boundary can see up to twice the quota.
    Counter store failures deny the request.
    """

    def __init__(
        self,
        store: CounterStore,
        requests_per_window: Optional[int] = None,
        window: timedelta = DEFAULT_WINDOW,
        enabled: Optional[bool] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.store = store
        self.quota = requests_per_window or config.RATE_LIMIT_REQUESTS_PER_MINUTE
        self.window = window
        self.enabled = config.RATE_LIMIT_ENABLED if enabled is None else enabled

    @staticmethod
    def key(endpoint: str, identity: str) -> str:
        return f"rate_limit:{endpoint}:{identity}"

    def is_limited(self, endpoint: str, identity: str) -> bool:
        if not self.enabled:
            return False
        try:
            count = self.store.value(self.key(endpoint, identity))
        except CounterStoreError:
            self.logger.error(
                f"Rate limit check failed for {endpoint} from {mask_identifier(identity)}; denying",
                exc_info=True,
            )
            return True
        return count >= self.quota

    def record_request(self, endpoint: str, identity: str) -> int:
        """Count one request in the current window and return the window total."""
        if not self.enabled:
            return 0
        count = self.store.increment(self.key(endpoint, identity), self.window)
        if count == self.quota:
            self.logger.warning(
                f"Rate limit reached for {endpoint} from {mask_identifier(identity)}"
            )
        return count

    def remaining_quota(self, endpoint: str, identity: str) -> int:
        if not self.enabled:
            return UNLIMITED
        try:
            count = self.store.value(self.key(endpoint, identity))
        except CounterStoreError:
            self.logger.error(f"Quota lookup failed for {endpoint}", exc_info=True)
            return 0
        return max(0, self.quota - count)

    def retry_after(self, endpoint: str, identity: str) -> int:
        """Seconds until the current window resets, 0 when not limited."""
        if not self.enabled:
            return 0
        try:
            entry = self.store.get(self.key(endpoint, identity))
        except CounterStoreError:
            return int(self.window.total_seconds())
        if entry is None or entry.value < self.quota:
            return 0
        if entry.expires_in is None:
            return int(self.window.total_seconds())
        return max(1, math.ceil(entry.expires_in))

    def ensure_allowed(self, endpoint: str, identity: str) -> None:
        if self.is_limited(endpoint, identity):
            raise RateLimitExceededError(
                f"Too many {endpoint} attempts. Please try again later.",
                retry_after=self.retry_after(endpoint, identity),
            )
