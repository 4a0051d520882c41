"""Confirmation-token redemption and assertion minting (IdP side).

A confirmation link is single-use by construction: the pending request is
taken and deleted in one atomic store operation before the token is even
compared, so a second redemption always finds nothing.
"""

import hmac
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from letsauth.core.errors import InvalidOrExpiredTokenError
from letsauth.core.origin import canonicalize
from letsauth.core.signing import AssertionSigner
from letsauth.core.store_backend import guarded
from letsauth.core.validation import normalize_email
from letsauth.schemas.assertion import Assertion, to_epoch_ms
from letsauth.services.pending_request_store import PendingRequestStore, hash_token

logger = structlog.get_logger()

DEFAULT_ASSERTION_LIFETIME = timedelta(minutes=10)

NONCE_BYTES = 16

_DEFAULT_STORE_TIMEOUT = 2.0


@dataclass(frozen=True)
class MintedAssertion:
    """A freshly minted assertion and where it must be delivered.

    Attributes:
        assertion: The signed fields.
        serialized: Compact JWS to hand to the RP.
        endpoint: RP callback URI recorded at issuance.
    """

    assertion: Assertion
    serialized: str
    endpoint: str


def mint_assertion(
    *,
    email: str,
    origin: str,
    issuer: str,
    signer: AssertionSigner,
    lifetime: timedelta = DEFAULT_ASSERTION_LIFETIME,
    now: datetime | None = None,
) -> tuple[Assertion, str]:
    """Build and sign an assertion.

    Returns:
        Tuple of (assertion, serialized compact JWS).
    """
    now = now or datetime.now(UTC)
    assertion = Assertion(
        email=email,
        origin=origin,
        issuer=issuer,
        issued=to_epoch_ms(now),
        expires=to_epoch_ms(now + lifetime),
        nonce=secrets.token_hex(NONCE_BYTES),
    )
    return assertion, signer.sign(assertion.model_dump())


async def confirm_and_mint(
    *,
    email: str,
    origin: str,
    token: str,
    store: PendingRequestStore,
    signer: AssertionSigner,
    idp_base_url: str,
    lifetime: timedelta = DEFAULT_ASSERTION_LIFETIME,
    store_timeout: float = _DEFAULT_STORE_TIMEOUT,
) -> MintedAssertion:
    """Redeem a confirmation token and mint an assertion.

    Args:
        email: Email from the confirmation link.
        origin: Origin from the confirmation link (re-canonicalized here).
        token: Confirmation token from the link.
        store: Pending-request store.
        signer: IdP assertion signer.
        idp_base_url: Public base URL of this IdP; its origin is the issuer.
        lifetime: Assertion validity window.
        store_timeout: Deadline for the store operation, in seconds.

    Returns:
        The minted assertion and the RP endpoint to deliver it to.

    Raises:
        InvalidURIError: Origin is not an http(s) URI.
        InvalidOrExpiredTokenError: Unknown, expired, already-used, or
            mismatched token.
        StoreUnavailableError: Store operation failed or timed out.
    """
    email = normalize_email(email)
    origin = canonicalize(origin)

    record = await guarded(
        "pending.take_and_delete",
        store.take_and_delete(email, origin),
        store_timeout,
    )

    # Compare digests so both sides have equal length; constant-time
    if record is None or not hmac.compare_digest(record.token_hash, hash_token(token)):
        logger.info(
            "Confirmation rejected",
            origin=origin,
            reason="missing" if record is None else "token_mismatch",
        )
        raise InvalidOrExpiredTokenError()

    assertion, serialized = mint_assertion(
        email=email,
        origin=origin,
        issuer=canonicalize(idp_base_url),
        signer=signer,
        lifetime=lifetime,
    )

    logger.info("Minted assertion", origin=origin, nonce=assertion.nonce)
    return MintedAssertion(
        assertion=assertion,
        serialized=serialized,
        endpoint=record.endpoint,
    )
