"""Relying Party endpoints.

Endpoints:
- POST /authback — verify an assertion and start a session
"""

from datetime import timedelta

from fastapi import APIRouter, Request, Response

from letsauth.api.deps import KeyResolver, Ledger, SessionSecret
from letsauth.core.config import settings
from letsauth.core.origin import canonicalize
from letsauth.core.rate_limiting import limiter
from letsauth.core.responses import DataResponse
from letsauth.core.session import create_session_jwt, set_session_cookie
from letsauth.schemas.assertion import AuthbackRequest, AuthbackResult
from letsauth.services.assertion_verifier import verify_assertion

router = APIRouter()


@router.post("/authback")
@limiter.limit(lambda: settings.rate_limit_authback)
async def authback(
    request: Request,  # noqa: ARG001
    response: Response,
    body: AuthbackRequest,
    keys: KeyResolver,
    ledger: Ledger,
    session_secret: SessionSecret,
) -> DataResponse[AuthbackResult]:
    """Verify an assertion delivered by the browser.

    Every rejection returns 400 ASSERTION_REJECTED with the same
    user-facing message; the specific reason is in ``details`` and logs.
    On success an httpOnly session cookie is set for the verified email.

    Rate limit: configurable, per IP.
    """
    origin = canonicalize(settings.rp_origin)
    identity = await verify_assertion(
        body.assertion,
        expected_issuer=canonicalize(settings.expected_issuer),
        expected_origin=origin,
        keys=keys,
        ledger=ledger,
        clock_skew=timedelta(seconds=settings.clock_skew_seconds),
        store_timeout=settings.store_timeout_seconds,
    )

    token = create_session_jwt(
        email=identity.email,
        secret=session_secret,
        audience=origin,
    )
    set_session_cookie(response, token)

    return DataResponse(
        data=AuthbackResult(
            email=identity.email,
            message=f"You've proven your identity as {identity.email}",
        )
    )
