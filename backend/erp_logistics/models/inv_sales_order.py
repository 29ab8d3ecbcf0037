"""Sales order header and detail ORM models.

Sales orders are owned by the sales module. The delivery engine only writes
``delivered_qty`` on the lines and the active/closed status on the header.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_logistics.models.base import Base


class SalesOrderStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class InvSoHdr(Base):
    """Represents the sales order header table (``inv_so_hdr``)."""

    __tablename__ = "inv_so_hdr"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    so_no: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    so_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SalesOrderStatus.ACTIVE.value
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    items: Mapped[List["InvSoDtl"]] = relationship(
        back_populates="header",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvSoDtl.id",
    )


class InvSoDtl(Base):
    """Represents the sales order detail table (``inv_so_dtl``)."""

    __tablename__ = "inv_so_dtl"
    __table_args__ = (
        CheckConstraint("delivered_qty >= 0", name="ck_inv_so_dtl_delivered_non_negative"),
        CheckConstraint("delivered_qty <= ordered_qty", name="ck_inv_so_dtl_not_over_delivered"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    so_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("inv_so_hdr.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    uom: Mapped[str] = mapped_column(String(20), nullable=False)
    ordered_qty: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    delivered_qty: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    header: Mapped[InvSoHdr] = relationship(back_populates="items")

    @property
    def remaining_qty(self) -> Decimal:
        return Decimal(self.ordered_qty) - Decimal(self.delivered_qty or 0)
