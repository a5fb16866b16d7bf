from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, status


class HttpError(Exception):
    """An error that maps onto an HTTP status when it reaches the API surface."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str | Dict[str, Any], status_code: int | None = None):
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class BadRequestError(HttpError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(HttpError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(HttpError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidCSRFError(ForbiddenError):
    def __init__(self) -> None:
        super().__init__("Invalid CSRF token")


def translate_http_error(error: HttpError) -> HTTPException:
    if isinstance(error.detail, (dict, list)):
        detail = error.detail
    else:
        detail = {'message': str(error.detail)}
    return HTTPException(status_code=error.status_code, detail=detail)
