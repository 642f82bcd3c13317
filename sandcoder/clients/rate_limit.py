"""Client-side request and token rate limiting."""

import time

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


class ProviderRateLimiter:
    """Moving-window limiter for requests/minute and tokens/minute per provider."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000, max_wait: float = 60.0):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
            max_wait: Upper bound on a single blocking wait, in seconds
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")
        self.max_wait = max_wait

    def acquire(self, estimated_tokens: int, identifier: str) -> None:
        """Block until the request fits within both limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            self._wait(self.request_limit, identifier, "Request")
            self.limiter.hit(self.request_limit, identifier)

        # A single request larger than the whole window can never fit; let it through
        cost = min(max(estimated_tokens, 1), self.token_limit.amount)
        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=cost):
            self._wait(self.token_limit, token_identifier, "Token")
            self.limiter.hit(self.token_limit, token_identifier, cost=cost)

    def _wait(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        wait_time = min(self.max_wait, max(0.0, window_stats.reset_time - time.time()))
        if wait_time > 0:
            logger.warning(f"{label} rate limit exceeded for {identifier}, waiting {wait_time:.2f}s")
            time.sleep(wait_time)
