# interviewhub/deps.py
from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from interviewhub.data_context import DataContext
from interviewhub.errors import http_error
from interviewhub.schemas import ErrorCode

security = HTTPBearer(auto_error=False)

_STATUS_FOR = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_UPLOAD: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UPSTREAM_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def get_data(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> AsyncIterator[DataContext]:
    """
    One DataContext per request over the process-wide cache, acting as the
    bearer-token user. Detached when the response is done; background
    refreshes it started keep filling the shared cache.

    The cache is process-wide, so one user's /logout empties it for everyone:
    other sessions pay one cold read per key afterwards. Clearing bumps the
    cache generation, which makes refreshes still in flight from any request
    drop their results instead of writing them back.
    """
    state = request.app.state
    token = credentials.credentials if credentials else None
    ctx = DataContext(
        state.cache,
        state.remote.with_session(token),
        avatar_bucket=state.settings.avatar_bucket,
        avatar_max_bytes=state.settings.avatar_max_bytes,
    )
    try:
        yield ctx
    finally:
        ctx.close()


def raise_for_context(ctx: DataContext, default: ErrorCode = ErrorCode.INTERNAL_ERROR):
    """Turn the context's last failure into the JSON error envelope."""
    code = ctx.last_error or default
    raise http_error(
        code,
        ctx.message or code.value.lower().replace("_", " "),
        http_status=_STATUS_FOR.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR),
    )
