"""Sales order reads used while building and releasing delivery orders."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_logistics.core.config import settings
from erp_logistics.models.inv_sales_order import InvSoDtl, InvSoHdr, SalesOrderStatus
from erp_logistics.repositories.base import SqlAlchemyRepository


class SalesOrderRepository(SqlAlchemyRepository[InvSoHdr]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, InvSoHdr)

    async def get(self, so_id: str, *, for_update: bool = False) -> Optional[InvSoHdr]:
        stmt = select(InvSoHdr).where(InvSoHdr.id == so_id)
        if for_update:
            stmt = stmt.with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        return await self.session.scalar(stmt)

    async def get_line(self, so_line_id: str, *, for_update: bool = False) -> Optional[InvSoDtl]:
        stmt = select(InvSoDtl).where(InvSoDtl.id == so_line_id)
        if for_update:
            stmt = stmt.with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        return await self.session.scalar(stmt)

    async def lines_by_id(self, ids: Iterable[str]) -> dict[str, InvSoDtl]:
        wanted = {value for value in ids if value}
        if not wanted:
            return {}
        rows = await self.session.scalars(select(InvSoDtl).where(InvSoDtl.id.in_(wanted)))
        return {row.id: row for row in rows}

    async def lines_for_order(self, so_id: str) -> Sequence[InvSoDtl]:
        stmt = select(InvSoDtl).where(InvSoDtl.so_id == so_id).order_by(InvSoDtl.id)
        return (await self.session.scalars(stmt)).all()

    async def list_active(self, search_text: str | None = None) -> Sequence[InvSoHdr]:
        stmt = select(InvSoHdr).where(InvSoHdr.status == SalesOrderStatus.ACTIVE.value)
        if search_text and search_text.strip():
            pattern = f"%{search_text.strip()}%"
            stmt = stmt.where(
                or_(InvSoHdr.so_no.ilike(pattern), InvSoHdr.customer_name.ilike(pattern))
            )
        stmt = stmt.order_by(InvSoHdr.so_date.desc(), InvSoHdr.so_no.desc())
        return (await self.session.scalars(stmt)).all()
