"""HTTP error type and the ``{"error": {...}}`` response body used by every route."""

import logging
from http import HTTPStatus
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIError(HTTPException):
    def __init__(self, status_code: int, message: str, code: str | None = None, extra: dict[str, Any] | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.code = code or default_error_code(status_code)
        self.extra = extra or {}


def default_error_code(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return 'ERROR'


def error_body(status_code: int, message: Any, code: str, extra: dict[str, Any] | None = None) -> dict:
    error = {'message': message, 'code': code, 'status': status_code}
    if extra:
        error.update(extra)
    return {'error': error}


def database_unavailable() -> APIError:
    return APIError(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        'Database unavailable. Verify DATABASE_URL and database credentials.',
        code='DATABASE_UNAVAILABLE',
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = exc.code if isinstance(exc, APIError) else default_error_code(exc.status_code)
    extra = exc.extra if isinstance(exc, APIError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.detail, code, extra),
        headers=getattr(exc, 'headers', None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    message = first.get('msg', 'Invalid request.')
    if message.startswith('Value error, '):
        message = message[len('Value error, '):]

    logger.info('Validation failed for %s: %s', request.url.path, message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            status.HTTP_400_BAD_REQUEST,
            message,
            'VALIDATION_ERROR',
            {'fields': ['.'.join(str(part) for part in error.get('loc', ())) for error in errors]},
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Internal server error', 'INTERNAL_SERVER_ERROR'),
    )
