"""Shared API dependencies and error mapping"""
from fastapi import Request
from fastapi.responses import JSONResponse

from sharekit.core.container import ServiceContainer
from sharekit.core.exceptions import (
    AuthError, EncryptionError, InputValidationError, InvalidResponseFormatError,
    MediaProcessingError, PermissionDeniedError, ProcessingTimeoutError,
    RateLimitError, ShareKitError, TransientError
)

# Checked in order; subclasses before their bases
_STATUS_BY_ERROR = (
    (InputValidationError, 400),
    (AuthError, 401),
    (PermissionDeniedError, 403),
    (RateLimitError, 429),
    (ProcessingTimeoutError, 504),
    (TransientError, 502),
    (InvalidResponseFormatError, 502),
    (MediaProcessingError, 502),
    (EncryptionError, 500),
)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def status_for(error: ShareKitError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return status
    return 500


async def sharekit_error_handler(request: Request, exc: ShareKitError) -> JSONResponse:
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, PermissionDeniedError):
        content["remediation"] = exc.remediation
    return JSONResponse(status_code=status_for(exc), content=content)
