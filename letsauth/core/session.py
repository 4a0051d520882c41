"""RP session issuance after a verified assertion.

Shared utilities used by the /authback endpoint:
- create_session_jwt: signed session token for the verified email
- set_session_cookie: httpOnly cookie carrying that token
"""

from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Response

from letsauth.core.config import settings


def create_session_jwt(
    *,
    email: str,
    secret: str,
    audience: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session JWT with standard claims.

    Args:
        email: Verified email address for the sub claim.
        secret: HMAC signing secret (never the assertion secret).
        audience: The RP's canonical origin.
        expires_delta: Time until expiration. Defaults to the configured
            session lifetime.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    lifetime = expires_delta or timedelta(seconds=settings.session_lifetime_seconds)
    payload = {
        "sub": email,
        "aud": audience,
        "iss": settings.session_issuer,
        "exp": now + lifetime,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def set_session_cookie(response: Response, token: str) -> None:
    """Set httpOnly session cookie on response.

    Args:
        response: FastAPI response object.
        token: Session JWT string.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
        max_age=settings.session_lifetime_seconds,
    )
