"""Custom cache backend for rate limiting with database storage."""

from typing import Optional

from django.core.cache.backends.db import DatabaseCache
from django.db import transaction


class RateLimitDatabaseCache(DatabaseCache):
    """Database cache backend with atomic increment support for rate limiting."""

    def incr(self, key: str, delta: int = 1, version: Optional[int] = None) -> int:
        """Increment a counter inside one transaction, starting it at ``delta``."""
        self.validate_key(self.make_key(key, version=version))

        with transaction.atomic():
            current = super().get(key, version=version)
            try:
                value = delta if current is None else int(current) + delta
            except (ValueError, TypeError):
                # Non-integer payloads restart the counter
                value = delta
            super().set(key, value, version=version)
            return value

    def decr(self, key: str, delta: int = 1, version: Optional[int] = None) -> int:
        """Decrement cache value atomically."""
        return self.incr(key, -delta, version=version)
