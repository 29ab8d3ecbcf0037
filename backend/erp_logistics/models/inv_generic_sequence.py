"""Generic sequence table scoped by name (e.g. month-specific DO numbers)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from erp_logistics.models.base import Base


class InvGenericSequence(Base):
    """Stores the next value to hand out for each named sequence."""

    __tablename__ = "inv_gen_seq_no"

    seq_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq_no: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
