"""Translation of engine errors into HTTP errors."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..errors import NoHistory, NotFound

logger = logging.getLogger(__name__)


def to_http_error(exc: Exception, action: str) -> HTTPException:
    """Map an engine exception raised while performing ``action``."""

    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, NoHistory):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ConnectionError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service unavailable while trying to {action}: {exc}",
        )
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.exception("Failed to %s: %s", action, exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {exc}",
    )
