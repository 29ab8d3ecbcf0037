"""Domain error taxonomy for the delivery order engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Iterable


class IssueCode(str, Enum):
    QUANTITY_EXCEEDS_REMAINING = "QuantityExceedsRemaining"
    QUANTITY_EXCEEDS_STOCK = "QuantityExceedsStock"
    MISSING_WAREHOUSE = "MissingWarehouse"
    NON_POSITIVE_QUANTITY = "NonPositiveQuantity"
    UNKNOWN_SALES_ORDER_LINE = "UnknownSalesOrderLine"
    UNKNOWN_LINE = "UnknownLine"
    PRODUCT_MISMATCH = "ProductMismatch"
    INVALID_DISCOUNT = "InvalidDiscount"
    SALES_ORDER_NOT_FOUND = "SalesOrderNotFound"
    SALES_ORDER_NOT_ACTIVE = "SalesOrderNotActive"
    UNKNOWN_CARRIER = "UnknownCarrier"
    NO_LINES = "NoLines"
    MISSING_REASON = "MissingReason"


@dataclass(slots=True, frozen=True)
class LineIssue:
    """One itemised problem. ``line_no`` is ``None`` for header-level issues."""

    code: IssueCode
    message: str
    line_no: int | None = None
    field: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["code"] = self.code.value
        return payload


class DeliveryOrderError(Exception):
    """Base class for every error raised by the engine."""

    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class _ItemisedError(DeliveryOrderError):
    def __init__(self, message: str, issues: Iterable[LineIssue]) -> None:
        super().__init__(message)
        self.issues: list[LineIssue] = list(issues)

    @property
    def codes(self) -> set[IssueCode]:
        return {issue.code for issue in self.issues}

    def as_dict(self) -> dict[str, Any]:
        return {"message": self.message, "issues": [issue.as_dict() for issue in self.issues]}


class ValidationError(_ItemisedError):
    """Rejected input; always recoverable and never mutates state."""


class StockConflict(_ItemisedError):
    """Stock consumed concurrently between create and release."""

    retryable = True


class QuantityExceeded(_ItemisedError):
    """A sales order line no longer has enough remaining quantity at release time."""


class NotFound(DeliveryOrderError):
    pass


class InvalidTransition(DeliveryOrderError):
    def __init__(self, action: str, status: str, message: str | None = None) -> None:
        super().__init__(message or f"Cannot {action} a delivery order in status '{status}'.")
        self.action = action
        self.status = status


class SequenceExhausted(DeliveryOrderError):
    def __init__(self, seq_name: str, limit: int) -> None:
        super().__init__(f"Sequence {seq_name} is exhausted (limit {limit}).")
        self.seq_name = seq_name
        self.limit = limit


class StorageFailure(DeliveryOrderError):
    """The commit layer failed; nothing was persisted and the call may be retried."""

    retryable = True


class ConcurrencyConflict(StorageFailure):
    """Another request holds or has just changed the same document or stock."""


class OverDelivery(DeliveryOrderError):
    pass


class OverReversal(DeliveryOrderError):
    pass
