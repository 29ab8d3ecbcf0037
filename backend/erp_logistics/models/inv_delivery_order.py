"""Delivery order header, detail and audit ORM models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_logistics.models.base import Base


class DeliveryOrderStatus(str, Enum):
    DRAFT = "draft"
    RELEASED = "released"
    INVOICED = "invoiced"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class InvDoHdr(Base):
    """Represents the delivery order header table (``inv_do_hdr``).

    ``status`` is the single source of truth for the lifecycle; the
    ``*_at`` columns only annotate when each transition happened.
    """

    __tablename__ = "inv_do_hdr"
    __table_args__ = (
        CheckConstraint(
            "cancel_reason IS NULL OR status = 'cancelled'",
            name="ck_inv_do_hdr_cancel_reason_only_when_cancelled",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    sales_order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("inv_so_hdr.id"), nullable=False, index=True
    )
    sales_order_no: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    carrier_id: Mapped[Optional[str]] = mapped_column(String(64))
    carrier_name: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DeliveryOrderStatus.DRAFT.value, index=True
    )
    total_qty: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    invoiced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[List["InvDoDtl"]] = relationship(
        back_populates="header",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvDoDtl.line_no",
    )
    audit_trail: Mapped[List["InvDoAudit"]] = relationship(
        back_populates="header",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvDoAudit.id",
    )

    __mapper_args__ = {"version_id_col": version}


class InvDoDtl(Base):
    """Represents the delivery order detail table (``inv_do_dtl``).

    ``ordered_qty``, ``delivered_to_date_qty``, ``remaining_qty`` and
    ``stock_available`` are snapshots taken when the line was last validated.
    """

    __tablename__ = "inv_do_dtl"
    __table_args__ = (
        CheckConstraint("qty_to_deliver > 0", name="ck_inv_do_dtl_positive_qty"),
        CheckConstraint("discount >= 0", name="ck_inv_do_dtl_discount_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    do_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("inv_do_hdr.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    so_line_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("inv_so_dtl.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_code: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    uom: Mapped[str] = mapped_column(String(20), nullable=False)
    ordered_qty: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    delivered_to_date_qty: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    remaining_qty: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    qty_to_deliver: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False)
    warehouse_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stock_available: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    line_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    line_notes: Mapped[Optional[str]] = mapped_column(String(500))

    header: Mapped[InvDoHdr] = relationship(back_populates="lines")


class InvDoAudit(Base):
    """Append-only audit trail of a delivery order (``inv_do_audit``)."""

    __tablename__ = "inv_do_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    do_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("inv_do_hdr.id", ondelete="CASCADE"), nullable=False, index=True
    )
    at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    detail: Mapped[Optional[str]] = mapped_column(Text)

    header: Mapped[InvDoHdr] = relationship(back_populates="audit_trail")
