"""Persistence for delivery order headers and their lines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_logistics.core.config import settings
from erp_logistics.models.inv_delivery_order import DeliveryOrderStatus, InvDoDtl, InvDoHdr
from erp_logistics.repositories.base import SqlAlchemyRepository

STATUS_ALL = "all"
STATUS_UNINVOICED = "uninvoiced"


@dataclass(slots=True)
class DeliveryOrderFilter:
    """``status`` is a DO status, ``"all"`` or ``"uninvoiced"`` (released, not yet billed)."""

    status: str = STATUS_ALL
    search_text: str | None = None
    page: int = 1
    page_size: int = settings.DEFAULT_PAGE_SIZE


class DeliveryOrderRepository(SqlAlchemyRepository[InvDoHdr]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, InvDoHdr)

    async def get(self, do_id: str, *, for_update: bool = False) -> Optional[InvDoHdr]:
        stmt = select(InvDoHdr).where(InvDoHdr.id == do_id)
        if for_update:
            stmt = stmt.with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        return await self.session.scalar(stmt)

    async def get_by_code(self, code: str) -> Optional[InvDoHdr]:
        return await self.session.scalar(select(InvDoHdr).where(InvDoHdr.code == code))

    async def list(self, flt: DeliveryOrderFilter) -> tuple[Sequence[InvDoHdr], int]:
        """Return one page of headers, newest first, plus the unpaged total."""

        conditions = []
        status = (flt.status or STATUS_ALL).strip().lower()
        if status == STATUS_UNINVOICED:
            conditions.append(InvDoHdr.status == DeliveryOrderStatus.RELEASED.value)
            conditions.append(InvDoHdr.invoiced_at.is_(None))
        elif status != STATUS_ALL:
            conditions.append(InvDoHdr.status == status)
        if flt.search_text and flt.search_text.strip():
            pattern = f"%{flt.search_text.strip()}%"
            conditions.append(
                or_(
                    InvDoHdr.code.ilike(pattern),
                    InvDoHdr.sales_order_no.ilike(pattern),
                    InvDoHdr.customer_name.ilike(pattern),
                )
            )

        total = await self.session.scalar(
            select(func.count()).select_from(InvDoHdr).where(*conditions)
        )
        page = max(flt.page, 1)
        page_size = min(max(flt.page_size, 1), settings.MAX_PAGE_SIZE)
        stmt = (
            select(InvDoHdr)
            .where(*conditions)
            .order_by(InvDoHdr.created_at.desc(), InvDoHdr.code.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        items = (await self.session.scalars(stmt)).all()
        return items, int(total or 0)

    async def save(self, header: InvDoHdr, lines: Optional[Iterable[InvDoDtl]] = None) -> InvDoHdr:
        """Attach ``header`` (and optionally replace its lines) and flush.

        The enclosing unit of work owns the commit.
        """

        if lines is not None:
            header.lines = list(lines)
        self.add(header)
        await self.session.flush()
        return header
