from __future__ import annotations

from fastapi import HTTPException, status

from interviewhub.schemas import ErrorCode, ErrorDetail, ErrorResponse

# PostgREST: "JSON object requested, multiple (or no) rows returned"
PGRST_NO_ROWS = "PGRST116"


class RemoteError(Exception):
    """A call to the hosted data service failed (HTTP error or network)."""

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    def __str__(self) -> str:
        if self.code:
            return f"{self.code}: {self.message}"
        return self.message


class NotFoundError(RemoteError):
    """The requested row/object does not exist."""


class NotAuthenticatedError(RemoteError):
    """No user session is attached to the remote client."""


def http_error(
    code: ErrorCode, message: str, http_status=status.HTTP_400_BAD_REQUEST, hint: str | None = None
):
    detail = ErrorDetail(code=code, message=message, hint=hint)
    return HTTPException(status_code=http_status, detail=detail.model_dump(mode="json"))


def envelope_from_http_exception(exc: HTTPException) -> ErrorResponse:
    d = exc.detail
    if isinstance(d, dict) and "code" in d and "message" in d:
        return ErrorResponse(error=d)  # already our shape
    # Fallback to INTERNAL_ERROR envelope
    return ErrorResponse(
        error=ErrorDetail(code=ErrorCode.INTERNAL_ERROR, message=str(d), hint=None).model_dump()
    )
