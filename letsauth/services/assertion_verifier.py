"""Assertion verification (RP side).

Checks run in a fixed order and stop at the first failure:

1. parse the compact JWS and its payload      -> MalformedAssertion
2. issuer is the one this RP trusts           -> UnknownIssuer
3. signature verifies                         -> BadSignature
4. email is syntactically valid               -> InvalidEmail
5. origin is this RP's own origin             -> AudienceMismatch
6. issued < expires                           -> MalformedLifetime
7. now >= issued - skew                       -> NotYetValid
8. now <= expires + skew                      -> Expired
9. nonce not seen before for this email       -> ReplayedAssertion

No semantic field is trusted before step 3, and the nonce is recorded only
after every other check passed, so a forged or malformed assertion never
consumes a nonce slot.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
import structlog
from pydantic import ValidationError as PydanticValidationError

from letsauth.core.errors import (
    AssertionRejectedError,
    RejectionReason,
    StoreUnavailableError,
)
from letsauth.core.signing import (
    KeySourceUnavailableError,
    SigningKeyError,
    VerificationKeyResolver,
    read_unverified,
)
from letsauth.core.store_backend import guarded
from letsauth.core.validation import is_valid_email
from letsauth.schemas.assertion import Assertion, to_epoch_ms
from letsauth.services.nonce_ledger import NonceLedger

logger = structlog.get_logger()

DEFAULT_CLOCK_SKEW = timedelta(minutes=5)

_DEFAULT_STORE_TIMEOUT = 2.0


@dataclass(frozen=True)
class VerifiedIdentity:
    """An email the RP may now treat as authenticated.

    Attributes:
        email: Verified email address.
        issuer: IdP that vouched for it.
        origin: This RP's origin (the assertion's audience).
        expires_at: End of the assertion's validity window.
    """

    email: str
    issuer: str
    origin: str
    expires_at: datetime


def _reject(reason: RejectionReason, **context: object) -> AssertionRejectedError:
    logger.warning("Assertion rejected", reason=reason.value, **context)
    return AssertionRejectedError(reason)


def _parse(serialized: str) -> Assertion:
    try:
        return Assertion.model_validate(read_unverified(serialized))
    except (jwt.InvalidTokenError, PydanticValidationError) as exc:
        raise _reject(RejectionReason.MALFORMED_ASSERTION) from exc


async def _check_signature(
    serialized: str, claimed: Assertion, keys: VerificationKeyResolver
) -> None:
    try:
        key = await keys.resolve(serialized)
        payload = keys.verify(serialized, key)
    except KeySourceUnavailableError as exc:
        logger.error("Issuer keys unavailable", issuer=claimed.issuer)
        raise StoreUnavailableError("Issuer keys are unavailable") from exc
    except (SigningKeyError, jwt.InvalidTokenError) as exc:
        raise _reject(RejectionReason.BAD_SIGNATURE, issuer=claimed.issuer) from exc

    # jwt.decode re-reads the same bytes; guard anyway against a mismatch
    if payload != claimed.model_dump():
        raise _reject(RejectionReason.BAD_SIGNATURE, issuer=claimed.issuer)


async def verify_assertion(
    serialized: str,
    *,
    expected_issuer: str,
    expected_origin: str,
    keys: VerificationKeyResolver,
    ledger: NonceLedger,
    clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
    store_timeout: float = _DEFAULT_STORE_TIMEOUT,
    now: datetime | None = None,
) -> VerifiedIdentity:
    """Verify a serialized assertion and consume its nonce.

    Args:
        serialized: Compact JWS received from the browser.
        expected_issuer: Canonical origin of the trusted IdP.
        expected_origin: This RP's canonical origin.
        keys: Source of the IdP verification key.
        ledger: Nonce ledger for replay protection.
        clock_skew: Allowed IdP/RP clock difference.
        store_timeout: Deadline for each ledger operation, in seconds.
        now: Current time (defaults to the system clock).

    Returns:
        The verified identity.

    Raises:
        AssertionRejectedError: Any check failed; ``reason`` says which.
        StoreUnavailableError: Ledger or issuer key source unavailable.
    """
    now = now or datetime.now(UTC)
    now_ms = to_epoch_ms(now)
    skew_ms = int(clock_skew.total_seconds() * 1000)

    assertion = _parse(serialized)

    if assertion.issuer != expected_issuer:
        raise _reject(RejectionReason.UNKNOWN_ISSUER, issuer=assertion.issuer)

    await _check_signature(serialized, assertion, keys)

    if not is_valid_email(assertion.email):
        raise _reject(RejectionReason.INVALID_EMAIL)

    if assertion.origin != expected_origin:
        raise _reject(RejectionReason.AUDIENCE_MISMATCH, origin=assertion.origin)

    if assertion.issued >= assertion.expires:
        raise _reject(RejectionReason.MALFORMED_LIFETIME)

    if now_ms < assertion.issued - skew_ms:
        raise _reject(RejectionReason.NOT_YET_VALID, issued=assertion.issued)

    if now_ms > assertion.expires + skew_ms:
        raise _reject(RejectionReason.EXPIRED, expires=assertion.expires)

    # Remember the nonce for as long as the assertion could still pass step 8
    remember_for = timedelta(milliseconds=assertion.expires + 2 * skew_ms - now_ms)

    added = await guarded(
        "nonces.add_if_absent",
        ledger.add_if_absent(assertion.email, assertion.nonce, remember_for),
        store_timeout,
    )
    if not added:
        raise _reject(RejectionReason.REPLAYED_ASSERTION, nonce=assertion.nonce)

    await guarded(
        "nonces.extend_ttl",
        ledger.extend_ttl(assertion.email, remember_for),
        store_timeout,
    )

    logger.info("Assertion verified", issuer=assertion.issuer, origin=assertion.origin)
    return VerifiedIdentity(
        email=assertion.email,
        issuer=assertion.issuer,
        origin=assertion.origin,
        expires_at=assertion.expires_at,
    )
