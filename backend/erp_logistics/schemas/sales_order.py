"""Pydantic schemas for the sales order lookups used by delivery orders."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class SalesOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    so_no: str
    so_date: date
    customer_id: str
    customer_name: str
    status: str


class SalesOrderLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    so_id: str
    product_id: str
    product_code: str
    product_name: str
    uom: str
    ordered_qty: Decimal
    delivered_qty: Decimal
    remaining_qty: Decimal
    price: Decimal
