"""Response envelope models.

Success bodies are wrapped in ``{"data": ...}``; every failure, whether a
protocol rejection, a validation error, or a rate limit, renders as
``{"error": {"code", "message", "details"}}`` through error_response().
"""

from typing import Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Success envelope.

    Usage:
        @router.get("/confirm")
        async def confirm(...) -> DataResponse[ConfirmationResult]:
            minted = await confirm_and_mint(...)
            return DataResponse(data=ConfirmationResult(...))
    """

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "ASSERTION_REJECTED").
        message: Human-readable error message.
        details: Optional list of additional details (field errors, reasons).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Error envelope."""

    error: ErrorDetail


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render an error envelope as a JSON response."""
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(
        status_code=status_code, content=body.model_dump(), headers=headers
    )
