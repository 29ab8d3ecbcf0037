"""Translate engine errors into HTTP responses."""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from erp_logistics.core.errors import (
    ConcurrencyConflict,
    DeliveryOrderError,
    InvalidTransition,
    NotFound,
    OverDelivery,
    OverReversal,
    QuantityExceeded,
    SequenceExhausted,
    StockConflict,
    StorageFailure,
    ValidationError,
    _ItemisedError,
)

_STATUS_BY_ERROR: list[tuple[type[DeliveryOrderError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (StockConflict, status.HTTP_409_CONFLICT),
    (QuantityExceeded, status.HTTP_409_CONFLICT),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
    (SequenceExhausted, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
    (OverDelivery, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (OverReversal, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(exc: DeliveryOrderError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def raise_http(exc: DeliveryOrderError) -> NoReturn:
    """Re-raise ``exc`` as an ``HTTPException`` carrying its itemised issues."""

    detail: object
    if isinstance(exc, _ItemisedError):
        detail = exc.as_dict()
    else:
        detail = exc.message
    headers = {"Retry-After": "1"} if exc.retryable else None
    raise HTTPException(status_code=status_for(exc), detail=detail, headers=headers) from exc
