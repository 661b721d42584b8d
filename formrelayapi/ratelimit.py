from datetime import timedelta

from starlette.requests import Request
from throttled import RateLimiterType, Throttled, rate_limiter, store

from formrelayapi.config import config

# Keys are client-controlled (forwarded headers); the memory store is LRU-bounded.
MEMORY_STORE_MAX_SIZE = 10000


def build_store(max_size: int = MEMORY_STORE_MAX_SIZE):
    if config.REDIS_URL:
        return store.RedisStore(server=config.REDIS_URL)
    return store.MemoryStore(options={"MAX_SIZE": max_size})


class RateLimiter:
    """Fixed-window counter per key, e.g. per source IP."""

    def __init__(
        self,
        namespace: str,
        limit: int,
        window: timedelta = timedelta(minutes=1),
        max_size: int = MEMORY_STORE_MAX_SIZE,
    ):
        self.namespace = namespace
        self.limit = limit
        self.window = window
        self.max_size = max_size
        self.reset()

    def reset(self) -> None:
        """Start over with an empty store."""
        self._throttle = Throttled(
            using=RateLimiterType.FIXED_WINDOW.value,
            quota=rate_limiter.per_duration(self.window, limit=self.limit),
            store=build_store(self.max_size),
        )

    def hit(self, key: str) -> bool:
        """Count one request; True when the key is over the limit."""
        return self._throttle.limit(f"{self.namespace}:{key}", cost=1).limited


def get_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return (
        request.headers.get("x-real-ip")
        or request.headers.get("x-client-ip")
        or "unknown"
    )


confirm_limiter = RateLimiter("auth_confirm", limit=10)
edge_auth_counter = RateLimiter("edge_auth", limit=30)
