"""Map service errors onto HTTP responses."""

from fastapi import HTTPException

from core.exceptions import (
    AlreadyLoadingError,
    DownloadError,
    EngineError,
    LLMServiceError,
    ModelNotLoadedError,
    UnknownModelError,
)

_STATUS_CODES: list[tuple[type[LLMServiceError], int]] = [
    (UnknownModelError, 404),
    (AlreadyLoadingError, 409),
    (ModelNotLoadedError, 503),
    (DownloadError, 502),
    (EngineError, 500),
]


def to_http_exception(exc: LLMServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
