"""Append-only stock ledger ORM model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_logistics.models.base import Base


class LedgerRefType(str, Enum):
    DELIVERY_ORDER = "DO"
    OPENING = "OPENING"
    RECEIPT = "RECEIPT"


class LedgerMovement(str, Enum):
    OUT = "OUT"
    REVERSAL = "REVERSAL"
    IN = "IN"


class InvStockLedger(Base):
    """One signed stock movement for a (product, warehouse) pair.

    Rows are only ever inserted. On-hand stock is the sum of ``qty`` over the
    pair; the unique key on the reference makes a repeated release or void of
    the same line fail at the storage layer.
    """

    __tablename__ = "inv_stock_ledger"
    __table_args__ = (
        UniqueConstraint(
            "ref_type", "ref_id", "ref_line_id", "movement", name="uq_inv_stock_ledger_ref"
        ),
        Index("ix_inv_stock_ledger_product_warehouse", "product_id", "warehouse_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False)
    qty: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    ref_type: Mapped[str] = mapped_column(String(16), nullable=False)
    ref_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ref_line_id: Mapped[str] = mapped_column(String(64), nullable=False)
    movement: Mapped[str] = mapped_column(String(16), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
