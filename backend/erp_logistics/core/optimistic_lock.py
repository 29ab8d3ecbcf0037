"""Helpers for optimistic concurrency control."""

from __future__ import annotations

from typing import Optional

from erp_logistics.core.errors import ConcurrencyConflict


def ensure_expected_version(current: int, expected: Optional[int]) -> None:
    """Raise ``ConcurrencyConflict`` if the persisted version is not the one the caller edited."""

    if expected is None or current == expected:
        return
    raise ConcurrencyConflict(
        "Record has been updated by someone else. Please reload and try again."
    )
