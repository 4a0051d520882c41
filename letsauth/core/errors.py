"""API and protocol error classes.

Every failure the protocol can signal maps to one class here, so services
raise and endpoints render them through a single exception handler.
"""

from enum import Enum


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "VALIDATION_ERROR").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors, query param errors, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class InvalidInputError(ValidationError):
    """Malformed email or endpoint at issuance (400).

    User-correctable; no state is created when this is raised.
    """


class InvalidURIError(InvalidInputError):
    """URI lacks a scheme or host, or uses a scheme other than http(s)."""

    def __init__(self, uri: str, reason: str = "must be an absolute http(s) URI") -> None:
        # Truncate: the URI is attacker-controlled and echoed back
        super().__init__(f"Invalid URI '{uri[:200]}': {reason}")
        self.uri = uri


class InvalidOrExpiredTokenError(APIError):
    """Confirmation failed (400).

    Raised for unknown, expired, already-redeemed, and mismatched tokens
    alike. The user must restart the flow at /auth.
    """

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_OR_EXPIRED_TOKEN",
            message="Invalid or expired confirmation link",
            status_code=400,
        )


class RejectionReason(str, Enum):
    """Why the verifier refused an assertion.

    All reasons surface to users as one "authentication failed" outcome;
    the value is kept for logging and auditing.
    """

    MALFORMED_ASSERTION = "MalformedAssertion"
    UNKNOWN_ISSUER = "UnknownIssuer"
    BAD_SIGNATURE = "BadSignature"
    INVALID_EMAIL = "InvalidEmail"
    AUDIENCE_MISMATCH = "AudienceMismatch"
    MALFORMED_LIFETIME = "MalformedLifetime"
    NOT_YET_VALID = "NotYetValid"
    EXPIRED = "Expired"
    REPLAYED_ASSERTION = "ReplayedAssertion"


class AssertionRejectedError(APIError):
    """Assertion failed verification at the RP (400).

    Args:
        reason: Which check rejected the assertion.
    """

    def __init__(self, reason: RejectionReason) -> None:
        super().__init__(
            code="ASSERTION_REJECTED",
            message="Authentication failed",
            status_code=400,
            details=[{"reason": reason.value}],
        )
        self.reason = reason


class StoreUnavailableError(APIError):
    """Backing store timed out or failed (503).

    Fail closed: authentication is denied, never silently allowed.
    The client may retry.
    """

    def __init__(self, message: str = "Authentication store is unavailable") -> None:
        super().__init__(
            code="STORE_UNAVAILABLE",
            message=message,
            status_code=503,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
