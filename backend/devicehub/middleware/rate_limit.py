"""Rate limiting for API protection.

Fixed-window counters stored in the cache under ``<endpoint>:<identity>``.
The first request of a window creates the key and sets its expiry; every
request increments it atomically. Because windows are fixed rather than
rolling, a client can get up to twice the limit through by bursting on both
sides of a window boundary. That is the accepted cost of one INCR per request.

If the cache is unreachable the request is allowed (fail open) and the
degraded decision is logged and counted.
"""
from typing import Callable, Optional

from fastapi import Depends, Request
from slowapi.util import get_remote_address

from devicehub.api.deps import get_optional_auth_context
from devicehub.cache import Cache, CacheError
from devicehub.config import settings
from devicehub.middleware.monitoring import record_rate_limit_degraded, record_rate_limit_rejection
from devicehub.utils.errors import RateLimited
from devicehub.utils.jwt_utils import AuthContext
from devicehub.utils.logger import logger


def get_identifier(request: Request, ctx: Optional[AuthContext]) -> str:
    """
    Get identifier for rate limiting based on authentication

    Priority:
    1. Authenticated user id
    2. IP address (for unauthenticated)
    """
    if ctx is not None:
        return str(ctx.user_id)
    return get_remote_address(request)


class FixedWindowRateLimiter:
    """Counts requests per ``endpoint:identity`` in fixed windows of ``window`` seconds"""

    def __init__(self, endpoint: str, limit: int, window: int):
        self.endpoint = endpoint
        self.limit = limit
        self.window = window

    def hit(self, cache: Cache, identity: str) -> None:
        """Count one request for ``identity``.

        Raises:
            RateLimited: the window's count exceeds the limit; ``retry_after``
                is the number of seconds until the window resets.
        """
        key = f"{self.endpoint}:{identity}"
        try:
            requests = cache.incr(key)
            if requests == 1:
                cache.expire(key, self.window)

            if requests <= self.limit:
                return

            retry_after = cache.ttl(key)
        except CacheError as exc:
            record_rate_limit_degraded(self.endpoint)
            logger.warning(
                "Rate limiter degraded: cache unreachable, allowing request",
                extra={"endpoint": self.endpoint, "error": str(exc)},
            )
            return

        if retry_after <= 0:
            # Key lost its expiry (e.g. the expire call never landed); report a full window
            retry_after = self.window

        record_rate_limit_rejection(self.endpoint)
        logger.warning(
            "Rate limit exceeded",
            extra={"endpoint": self.endpoint, "action": "rate_limit"},
        )
        raise RateLimited(retry_after=retry_after)


def rate_limit(endpoint: str, limit: int, window: int) -> Callable:
    """Return a FastAPI dependency enforcing ``limit`` requests per ``window`` seconds.

    Usage::

        @router.post("/login", dependencies=[Depends(rate_limit("auth", 10, 60))])
    """
    limiter = FixedWindowRateLimiter(endpoint, limit, window)

    def _rate_limit_dep(
        request: Request,
        ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
    ) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return
        limiter.hit(request.app.state.cache, get_identifier(request, ctx))

    _rate_limit_dep.__name__ = f"rate_limit_{endpoint}"
    return _rate_limit_dep


auth_rate_limit = rate_limit("auth", settings.RATE_LIMIT_AUTH_LIMIT, settings.RATE_LIMIT_AUTH_WINDOW)
export_rate_limit = rate_limit("export", settings.RATE_LIMIT_EXPORT_LIMIT, settings.RATE_LIMIT_EXPORT_WINDOW)
