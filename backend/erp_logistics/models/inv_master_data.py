"""Read-only master data looked up by the delivery engine."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from erp_logistics.models.base import Base


class InvWarehouse(Base):
    __tablename__ = "inv_warehouse"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class InvExpedition(Base):
    """Carriers that can be assigned to a delivery order."""

    __tablename__ = "inv_expedition"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
