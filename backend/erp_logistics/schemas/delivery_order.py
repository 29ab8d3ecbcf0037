"""Pydantic schemas for delivery order operations."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal, field_validator

from erp_logistics.core.config import settings

# Matches the Numeric(18, 2) storage columns; sign checks are itemised by the engine.
Amount = condecimal(max_digits=18, decimal_places=2)


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class DeliveryOrderLineCreate(BaseModel):
    """One requested line.

    Quantities and discounts are checked by the engine rather than here so that
    every problem across all lines comes back in a single itemised error.
    ``stock_available`` may be echoed back by clients but is never trusted.
    """

    so_line_id: str = Field(min_length=1)
    product_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    qty_to_deliver: Amount
    discount: Amount = Decimal("0")
    stock_available: Optional[Decimal] = None
    line_notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("warehouse_id", "product_id")
    @classmethod
    def _blank_is_missing(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class DeliveryOrderCreate(BaseModel):
    delivery_date: date
    sales_order_id: str = Field(min_length=1)
    carrier_id: Optional[str] = None
    notes: Optional[str] = None
    lines: List[DeliveryOrderLineCreate] = Field(default_factory=list)

    @field_validator("sales_order_id")
    @classmethod
    def _strip_sales_order(cls, value: str) -> str:
        return value.strip()

    @field_validator("carrier_id")
    @classmethod
    def _strip_carrier(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class DeliveryOrderLinePatch(BaseModel):
    """Changes to an existing draft line, addressed by ``line_no``.

    Only fields present in the request are applied.
    """

    line_no: int = Field(gt=0)
    qty_to_deliver: Optional[Amount] = None
    warehouse_id: Optional[str] = None
    discount: Optional[Amount] = None
    line_notes: Optional[str] = Field(default=None, max_length=500)


class DeliveryOrderPatch(BaseModel):
    delivery_date: Optional[date] = None
    carrier_id: Optional[str] = None
    notes: Optional[str] = None
    lines: Optional[List[DeliveryOrderLinePatch]] = None
    expected_version: Optional[int] = Field(
        default=None,
        description="Version the client edited. Used for optimistic concurrency control.",
    )


class VoidPayload(BaseModel):
    reason: str = ""


class DeliveryOrderLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    line_no: int
    so_line_id: str
    product_id: str
    product_code: str
    product_name: str
    uom: str
    ordered_qty: Decimal
    delivered_to_date_qty: Decimal
    remaining_qty: Decimal
    qty_to_deliver: Decimal
    warehouse_id: str
    warehouse_name: str
    stock_available: Decimal
    unit_price: Decimal
    discount: Decimal
    line_amount: Decimal
    line_notes: Optional[str] = None


class DeliveryOrderAuditOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    at: datetime
    actor: str
    action: str
    detail: Optional[str] = None


class DeliveryOrderHeaderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    delivery_date: date
    sales_order_id: str
    sales_order_no: str
    customer_id: str
    customer_name: str
    carrier_id: Optional[str] = None
    carrier_name: Optional[str] = None
    notes: Optional[str] = None
    status: str
    total_qty: Decimal
    total_amount: Decimal
    created_by: Optional[str] = None
    created_at: datetime
    updated_by: Optional[str] = None
    updated_at: datetime
    released_at: Optional[datetime] = None
    invoiced_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    version: int


class DeliveryOrderOut(BaseModel):
    header: DeliveryOrderHeaderOut
    lines: List[DeliveryOrderLineOut]
    audit_trail: List[DeliveryOrderAuditOut] = Field(default_factory=list)


class DeliveryOrderListOut(BaseModel):
    items: List[DeliveryOrderHeaderOut]
    total: int
    page: int
    page_size: int


class DeliveryOrderListQuery(BaseModel):
    status: str = "all"
    search_text: Optional[str] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE)
