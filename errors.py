"""
HTTP error kinds used across the API.

Each kind is bound to one status code so every route reports the same
failure the same way.
"""

from fastapi import HTTPException, status

import config


class Unauthenticated(HTTPException):
    """Missing, malformed, invalid or expired bearer token."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class Forbidden(HTTPException):
    """Valid identity without the required ownership or privilege."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class InvalidInput(HTTPException):
    def __init__(self, detail: str = "Invalid input"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def internal_error(message: str, exc: Exception) -> HTTPException:
    # Exception text is only exposed in debug mode
    detail = f"{message}: {exc}" if config.DEBUG else message
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
