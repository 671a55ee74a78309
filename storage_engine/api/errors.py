import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..core.exceptions import (
    MountUnavailableError,
    MountValidationError,
    OperationInProgressError,
    RepositoryAuthError,
    StorageEngineError,
    UnknownServiceError,
)
from ..models import OperationResult

_STATUS_CODES = (
    (OperationInProgressError, status.HTTP_409_CONFLICT),
    (UnknownServiceError, status.HTTP_404_NOT_FOUND),
    (MountUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (MountValidationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RepositoryAuthError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_code_for(error: StorageEngineError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def storage_engine_error_handler(request: Request, exc: StorageEngineError) -> JSONResponse:
    code = status_code_for(exc)
    logging.warning(f"{request.method} {request.url.path} failed ({code}): {exc}")
    result = OperationResult.from_error(request.url.path, exc)
    return JSONResponse(status_code=code, content=result.model_dump(mode="json"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorageEngineError, storage_engine_error_handler)
