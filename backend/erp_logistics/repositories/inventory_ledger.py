"""Append-only access to the stock ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_logistics.models.inv_stock_ledger import InvStockLedger


class InventoryLedger:
    """On-hand stock is always folded from the ledger, never cached.

    There is no update or delete here; corrections are new
    entries (``REVERSAL``) that reference the document they undo.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, entries: Iterable[InvStockLedger]) -> list[InvStockLedger]:
        rows = list(entries)
        self.session.add_all(rows)
        await self.session.flush()
        return rows

    async def current_stock(self, product_id: str, warehouse_id: str) -> Decimal:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(InvStockLedger.qty), 0)).where(
                InvStockLedger.product_id == product_id,
                InvStockLedger.warehouse_id == warehouse_id,
            )
        )
        return Decimal(str(total or 0))

    async def history(
        self,
        product_id: str,
        warehouse_id: str,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        after_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Sequence[InvStockLedger]:
        """Entries for the pair in append order; ``after_id`` resumes a previous page."""

        stmt = select(InvStockLedger).where(
            InvStockLedger.product_id == product_id,
            InvStockLedger.warehouse_id == warehouse_id,
        )
        if since is not None:
            stmt = stmt.where(InvStockLedger.occurred_at >= since)
        if until is not None:
            stmt = stmt.where(InvStockLedger.occurred_at <= until)
        if after_id is not None:
            stmt = stmt.where(InvStockLedger.id > after_id)
        stmt = stmt.order_by(InvStockLedger.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return (await self.session.scalars(stmt)).all()

    async def entries_for_reference(self, ref_type: str, ref_id: str) -> Sequence[InvStockLedger]:
        stmt = (
            select(InvStockLedger)
            .where(InvStockLedger.ref_type == ref_type, InvStockLedger.ref_id == ref_id)
            .order_by(InvStockLedger.id)
        )
        return (await self.session.scalars(stmt)).all()
