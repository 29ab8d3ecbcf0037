"""Warehouse and expedition lookups."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_logistics.models.inv_master_data import InvExpedition, InvWarehouse


class MasterDataRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def warehouses_by_id(self, ids: Iterable[str]) -> dict[str, InvWarehouse]:
        wanted = {value for value in ids if value}
        if not wanted:
            return {}
        rows = await self.session.scalars(select(InvWarehouse).where(InvWarehouse.id.in_(wanted)))
        return {row.id: row for row in rows}

    async def get_expedition(self, expedition_id: str) -> Optional[InvExpedition]:
        return await self.session.get(InvExpedition, expedition_id)

    async def list_warehouses(self) -> Sequence[InvWarehouse]:
        return (await self.session.scalars(select(InvWarehouse).order_by(InvWarehouse.id))).all()

    async def list_expeditions(self) -> Sequence[InvExpedition]:
        return (await self.session.scalars(select(InvExpedition).order_by(InvExpedition.id))).all()
