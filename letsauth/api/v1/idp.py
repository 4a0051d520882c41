"""Identity Provider endpoints.

Endpoints:
- POST /auth — start a login, deliver a confirmation link out-of-band
- GET /confirm — redeem a confirmation link, return a signed assertion

The public key set lives outside the versioned API, see jwks_router.
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from letsauth.api.deps import PendingStore, Signer, Sink
from letsauth.core.config import settings
from letsauth.core.rate_limiting import limiter
from letsauth.core.responses import DataResponse, error_response
from letsauth.schemas.assertion import (
    AuthRequest,
    AuthRequestIssued,
    ConfirmationResult,
)
from letsauth.services.assertion_minter import confirm_and_mint
from letsauth.services.auth_request_issuer import (
    TOKEN_HEX_LENGTH,
    issue_auth_request,
)

router = APIRouter()

jwks_router = APIRouter()

JWKS_PATH = "/.well-known/letsauth/jwks.json"


# ===================================================================
# POST /auth
# ===================================================================


@router.post("/auth")
@limiter.limit(lambda: settings.rate_limit_auth)
async def request_auth(
    request: Request,  # noqa: ARG001
    body: AuthRequest,
    store: PendingStore,
    sink: Sink,
) -> DataResponse[AuthRequestIssued]:
    """Start a login for an email at the RP owning ``endpoint``.

    The confirmation link goes to the link sink. It is echoed in the
    response only when EXPOSE_CONFIRMATION_LINK is enabled.

    Rate limit: configurable, per IP.
    """
    issued = await issue_auth_request(
        email=body.email,
        endpoint=body.endpoint,
        store=store,
        sink=sink,
        idp_base_url=settings.idp_base_url,
        ttl=timedelta(seconds=settings.pending_request_ttl_seconds),
        store_timeout=settings.store_timeout_seconds,
    )
    return DataResponse(
        data=AuthRequestIssued(
            message="Check your email for a confirmation link",
            origin=issued.origin,
            expires_at=issued.expires_at,
            confirmation_link=(
                issued.confirmation_link if settings.expose_confirmation_link else None
            ),
        )
    )


# ===================================================================
# GET /confirm
# ===================================================================


@router.get("/confirm")
@limiter.limit(lambda: settings.rate_limit_confirm)
async def confirm(
    request: Request,  # noqa: ARG001
    email: Annotated[str, Query(min_length=3, max_length=320)],
    origin: Annotated[str, Query(min_length=1, max_length=2048)],
    token: Annotated[
        str,
        Query(
            min_length=TOKEN_HEX_LENGTH,
            max_length=TOKEN_HEX_LENGTH,
            pattern="^[0-9a-fA-F]+$",
        ),
    ],
    *,
    store: PendingStore,
    signer: Signer,
) -> DataResponse[ConfirmationResult]:
    """Redeem a confirmation link and return the signed assertion.

    The browser delivers the assertion to ``endpoint`` (out of scope here).

    Rate limit: configurable, per IP.
    """
    minted = await confirm_and_mint(
        email=email,
        origin=origin,
        token=token.lower(),
        store=store,
        signer=signer,
        idp_base_url=settings.idp_base_url,
        lifetime=timedelta(seconds=settings.assertion_lifetime_seconds),
        store_timeout=settings.store_timeout_seconds,
    )
    return DataResponse(
        data=ConfirmationResult(
            assertion=minted.serialized,
            endpoint=minted.endpoint,
            origin=minted.assertion.origin,
        )
    )


# ===================================================================
# GET /.well-known/letsauth/jwks.json
# ===================================================================


@jwks_router.get(JWKS_PATH)
async def get_jwks(signer: Signer) -> JSONResponse:
    """Publish the IdP's assertion verification keys.

    404 when assertions are signed with a pre-shared secret.
    """
    jwks = signer.jwks()
    if jwks is None:
        return error_response(
            404, "NOT_FOUND", "No public keys are published by this issuer"
        )
    return JSONResponse(content=jwks, headers={"Cache-Control": "public, max-age=300"})
