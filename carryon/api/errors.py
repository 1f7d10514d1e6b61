"""Translate core outcomes into HTTP responses."""

from __future__ import annotations

from typing import NoReturn, TypeVar

from fastapi import HTTPException

from carryon.domain.errors import (
    AlreadyTaken,
    DispatchError,
    InvalidTransition,
    NotFound,
    OrderNotAvailable,
    Outcome,
    Unauthorized,
    UpstreamUnavailable,
    ValidationError,
)
from carryon.domain.matching import DriverBusy

T = TypeVar("T")

STATUS_CODES: dict[type[DispatchError], int] = {
    ValidationError: 400,
    Unauthorized: 403,
    NotFound: 404,
    OrderNotAvailable: 404,
    InvalidTransition: 409,
    AlreadyTaken: 409,
    DriverBusy: 409,
    UpstreamUnavailable: 502,
}


def status_for(error: DispatchError) -> int:
    for cls in type(error).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 400


def raise_http(error: DispatchError) -> NoReturn:
    raise HTTPException(
        status_code=status_for(error),
        detail={"code": error.code, "message": error.message},
    )


def unwrap(outcome: Outcome[T]) -> T:
    if not outcome.ok:
        raise_http(outcome.error)
    return outcome.value
