"""Authentication request issuance (IdP side).

Begins a login: validates the email and the RP callback endpoint, stores a
pending request keyed by (email, origin), and hands a confirmation link to
the link sink. Issuing again for the same pair replaces the pending token,
so only the most recently issued link can be confirmed.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import quote, urlencode

import structlog

from letsauth.core.email import LinkSink
from letsauth.core.errors import InvalidInputError
from letsauth.core.origin import canonicalize
from letsauth.core.store_backend import guarded
from letsauth.core.validation import is_valid_email, normalize_email
from letsauth.services.pending_request_store import (
    DEFAULT_PENDING_TTL,
    PendingRequestStore,
    hash_token,
)

logger = structlog.get_logger()

CONFIRM_PATH = "/api/v1/confirm"

# 16 random bytes -> 32 hex chars; the token is the only secret guarding
# the confirmation step
TOKEN_BYTES = 16
TOKEN_HEX_LENGTH = TOKEN_BYTES * 2

_DEFAULT_STORE_TIMEOUT = 2.0


@dataclass(frozen=True)
class IssuedAuthRequest:
    """Outcome of a successful issuance.

    Attributes:
        confirmation_link: Link to deliver to the user out-of-band.
        origin: Canonical origin of the requesting RP.
        expires_at: When the link stops working.
    """

    confirmation_link: str
    origin: str
    expires_at: datetime


def build_confirmation_link(
    idp_base_url: str, email: str, origin: str, token: str
) -> str:
    """Confirmation URL carrying email, origin, and token as query parameters."""
    params = urlencode(
        {"email": email, "origin": origin, "token": token}, quote_via=quote
    )
    return f"{idp_base_url.rstrip('/')}{CONFIRM_PATH}?{params}"


async def issue_auth_request(
    *,
    email: str,
    endpoint: str,
    store: PendingRequestStore,
    sink: LinkSink,
    idp_base_url: str,
    ttl: timedelta = DEFAULT_PENDING_TTL,
    store_timeout: float = _DEFAULT_STORE_TIMEOUT,
) -> IssuedAuthRequest:
    """Start a login for ``email`` at the RP owning ``endpoint``.

    Args:
        email: Address the user claims to control.
        endpoint: Absolute http(s) URI the RP wants the assertion sent to.
        store: Pending-request store.
        sink: Delivery channel for the confirmation link.
        idp_base_url: Public base URL of this IdP.
        ttl: Pending request lifetime.
        store_timeout: Deadline for the store write, in seconds.

    Returns:
        The issued confirmation link and its expiry.

    Raises:
        InvalidInputError: Email or endpoint is malformed (nothing stored).
        StoreUnavailableError: Store write failed or timed out.
    """
    email = normalize_email(email)
    if not is_valid_email(email):
        raise InvalidInputError("Email address is not valid")

    origin = canonicalize(endpoint)

    token = secrets.token_hex(TOKEN_BYTES)
    record = await guarded(
        "pending.put",
        store.put(email, origin, hash_token(token), endpoint.strip(), ttl),
        store_timeout,
    )

    link = build_confirmation_link(idp_base_url, email, origin, token)
    await sink.deliver(to_email=email, link=link, origin=origin)

    logger.info("Issued authentication request", origin=origin)
    return IssuedAuthRequest(
        confirmation_link=link,
        origin=origin,
        expires_at=record.expires_at,
    )
