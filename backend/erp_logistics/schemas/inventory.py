"""Pydantic schemas for stock and master data lookups."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class StockAvailabilityOut(BaseModel):
    product_id: str
    warehouse_id: str
    quantity: Decimal


class StockLedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: str
    warehouse_id: str
    qty: Decimal
    unit_price: Decimal
    amount: Decimal
    ref_type: str
    ref_id: str
    ref_line_id: str
    movement: str
    occurred_at: datetime
    created_by: Optional[str] = None


class WarehouseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class ExpeditionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
