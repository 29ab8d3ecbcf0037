"""Shared helpers for database error handling."""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from erp_logistics.core.errors import ConcurrencyConflict, StorageFailure

LOCK_NOWAIT_ERROR_CODES = {3572}


def _is_lock_conflict(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    code = None
    if orig and getattr(orig, "args", None):
        try:
            code = int(orig.args[0])
        except (TypeError, ValueError):
            code = None
    message = str(getattr(exc, "orig", exc)).lower()
    return (
        code in LOCK_NOWAIT_ERROR_CODES
        or "could not obtain lock" in message
        or "could not acquire" in message
        or "database is locked" in message
    )


def translate_storage_error(exc: SQLAlchemyError) -> StorageFailure:
    """Map a SQLAlchemy failure to the retryable domain error surfaced to callers."""

    if isinstance(exc, StaleDataError):
        return ConcurrencyConflict(
            "Record has been updated by someone else. Please reload and try again."
        )
    if isinstance(exc, OperationalError) and _is_lock_conflict(exc):
        return ConcurrencyConflict("Resource is locked by another request. Please retry shortly.")
    if isinstance(exc, IntegrityError):
        return ConcurrencyConflict(
            "A conflicting write was committed concurrently. Please reload and try again."
        )
    return StorageFailure("Storage layer failed; no changes were applied. Please retry.")
