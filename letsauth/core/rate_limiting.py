"""Per-client rate limits on the protocol endpoints.

Security: bounds how fast one client can request confirmation links
(mail flooding), guess confirmation tokens, or submit assertions.
Requests are keyed by remote address; limits are read from settings on
every request so they can be tuned per deployment.

Usage in routers:
    from letsauth.core.rate_limiting import limiter

    @router.post("/auth")
    @limiter.limit(lambda: settings.rate_limit_auth)
    async def request_auth(request: Request, ...):
        ...
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from letsauth.core.config import settings
from letsauth.core.responses import error_response

DEFAULT_RETRY_AFTER_SECONDS = 60

# In-memory counters: limits apply per process
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def _retry_after(exc: RateLimitExceeded) -> int:
    """Length of the violated limit's window, in seconds."""
    try:
        return int(exc.limit.limit.get_expiry())
    except (AttributeError, TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


def rate_limit_exceeded_handler(
    _request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Render 429 RATE_LIMITED with Retry-After set to the limit's window."""
    return error_response(
        429,
        "RATE_LIMITED",
        f"Rate limit exceeded: {exc.detail}",
        headers={"Retry-After": str(_retry_after(exc))},
    )
