from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from community_engine.core.logger import logger
from community_engine.services.errors import (
    AuthorizationError,
    ConflictError,
    MembershipError,
    NotFoundError,
    StateError,
    TransientStoreError,
    ValidationError,
)


STATUS_BY_ERROR = {
    ConflictError: status.HTTP_409_CONFLICT,
    StateError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: MembershipError) -> int:
    for error_cls, code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_400_BAD_REQUEST


async def membership_error_handler(request: Request, exc: MembershipError) -> JSONResponse:
    code = status_for(exc)
    log = logger.error if code >= 500 else logger.info
    log(
        "membership_error",
        path=request.url.path,
        method=request.method,
        status_code=code,
        error_code=exc.code,
        error=exc.message,
    )
    headers = {"Retry-After": "1"} if code == status.HTTP_503_SERVICE_UNAVAILABLE else None
    return JSONResponse(status_code=code, content={"detail": exc.to_dict()}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MembershipError, membership_error_handler)
