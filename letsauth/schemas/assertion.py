"""Assertion wire format and protocol request/response schemas.

An assertion is serialized as a compact JWS whose payload is exactly the
Assertion fields below; the JWS signature is the assertion's signature.
Timestamps are integer milliseconds since the Unix epoch.
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, EmailStr, Field


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)


def to_epoch_ms(moment: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds (truncating)."""
    return (moment - _EPOCH) // _ONE_MS


def from_epoch_ms(value: int) -> datetime:
    """Convert integer epoch milliseconds to an aware UTC datetime."""
    return _EPOCH + value * _ONE_MS


# =============================================================================
# Wire format
# =============================================================================


class Assertion(BaseModel):
    """Signed claim that ``email`` is controlled by the bearer, for ``origin``.

    Strict: fields must have exactly these names and JSON types. Email
    syntax is deliberately not validated here; the verifier checks it only
    after the signature, so it can report the right rejection reason.
    """

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    email: str = Field(min_length=1, max_length=320)
    origin: str = Field(min_length=1, max_length=2048)
    issuer: str = Field(min_length=1, max_length=2048)
    issued: int
    expires: int
    nonce: str = Field(min_length=32, max_length=128)

    @property
    def issued_at(self) -> datetime:
        return from_epoch_ms(self.issued)

    @property
    def expires_at(self) -> datetime:
        return from_epoch_ms(self.expires)


# =============================================================================
# IdP
# =============================================================================


class AuthRequest(BaseModel):
    """Request body for POST /auth."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    endpoint: str = Field(min_length=1, max_length=2048)


class AuthRequestIssued(BaseModel):
    """Response data for POST /auth.

    ``confirmation_link`` is only populated when the deployment exposes
    links directly (development); otherwise it travels out-of-band only.
    """

    message: str
    origin: str
    expires_at: datetime
    confirmation_link: str | None = None


class ConfirmationResult(BaseModel):
    """Response data for GET /confirm: the assertion and where to deliver it."""

    assertion: str
    endpoint: str
    origin: str


# =============================================================================
# RP
# =============================================================================


class AuthbackRequest(BaseModel):
    """Request body for POST /authback."""

    model_config = ConfigDict(extra="forbid")

    assertion: str = Field(min_length=1, max_length=8192)


class AuthbackResult(BaseModel):
    """Response data for a successful POST /authback."""

    email: str
    message: str
