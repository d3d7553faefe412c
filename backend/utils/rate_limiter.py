"""Rate limiting for unlock attempts (in-memory sliding window per key)."""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
import logging
import os
import threading

logger = logging.getLogger(__name__)

UNLOCK_RATE_LIMIT_ATTEMPTS = int(os.getenv("UNLOCK_RATE_LIMIT_ATTEMPTS", "20"))
UNLOCK_RATE_LIMIT_WINDOW_MINUTES = int(os.getenv("UNLOCK_RATE_LIMIT_WINDOW_MINUTES", "10"))


class RateLimiter:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        # In-memory rate limiting; one process, so no shared store needed
        self.attempts: Dict[str, List[datetime]] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

    async def check_rate_limit(
        self,
        key: str,
        max_attempts: int,
        window_minutes: int
    ) -> tuple[bool, Optional[str]]:
        """
        Check if rate limit is exceeded.

        Returns:
            (allowed: bool, error_message: Optional[str])
        """
        now = self._clock()
        window = timedelta(minutes=window_minutes)

        with self._lock:
            # Clean old entries
            recent = [t for t in self.attempts.get(key, []) if now - t < window]

            if len(recent) >= max_attempts:
                self.attempts[key] = recent
                wait_seconds = int((min(recent) + window - now).total_seconds())
                logger.warning(f"Rate limit exceeded for {key}")
                return False, f"Rate limit exceeded. Try again in {wait_seconds} seconds"

            # Record attempt
            recent.append(now)
            self.attempts[key] = recent
        return True, None

rate_limiter = RateLimiter()
