"""HTTP mapping of the error taxonomy for the FastAPI services."""
from __future__ import annotations

from typing import Dict, Type

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .errors import (
    DuplicateEntry,
    InvalidParameter,
    NotFound,
    StateError,
    TreasuryError,
    Unauthorized,
)

__all__ = ["STATUS_BY_ERROR", "status_for", "install_error_handlers"]

STATUS_BY_ERROR: Dict[Type[TreasuryError], int] = {
    Unauthorized: status.HTTP_403_FORBIDDEN,
    DuplicateEntry: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidParameter: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StateError: status.HTTP_409_CONFLICT,
}


def status_for(exc: TreasuryError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return status.HTTP_400_BAD_REQUEST


async def _treasury_error_handler(_: Request, exc: TreasuryError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content=exc.as_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TreasuryError, _treasury_error_handler)
