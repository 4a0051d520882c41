"""Pydantic request/response schemas for API endpoints."""

from letsauth.schemas.assertion import (
    Assertion,
    AuthbackRequest,
    AuthbackResult,
    AuthRequest,
    AuthRequestIssued,
    ConfirmationResult,
)

__all__ = [
    # Wire format
    "Assertion",
    # IdP
    "AuthRequest",
    "AuthRequestIssued",
    "ConfirmationResult",
    # RP
    "AuthbackRequest",
    "AuthbackResult",
]
