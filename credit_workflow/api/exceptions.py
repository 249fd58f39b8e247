from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    DuplicateRequestError,
    ForbiddenError,
    InsufficientCreditsError,
    InvalidArgumentError,
    InvalidStateError,
    NoEligibleApproverError,
    NotFoundError,
    TransientStoreError,
)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(
        request: Request, exc: InvalidArgumentError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(DuplicateRequestError)
    async def duplicate_request_handler(
        request: Request, exc: DuplicateRequestError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InsufficientCreditsError)
    async def insufficient_credits_handler(
        request: Request, exc: InsufficientCreditsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(exc),
                "available": exc.available,
                "required": exc.required,
            },
        )

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(NoEligibleApproverError)
    async def no_approver_handler(
        request: Request, exc: NoEligibleApproverError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(TransientStoreError)
    async def transient_store_handler(
        request: Request, exc: TransientStoreError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable, please retry"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})
