"""Facade exposing delivery order operations and the lookups the UI needs."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from erp_logistics.core.concurrency import KeyedLocks
from erp_logistics.core.config import settings
from erp_logistics.core.errors import NotFound
from erp_logistics.repositories.delivery_orders import DeliveryOrderFilter
from erp_logistics.schemas.delivery_order import (
    DeliveryOrderCreate,
    DeliveryOrderHeaderOut,
    DeliveryOrderListOut,
    DeliveryOrderListQuery,
    DeliveryOrderOut,
    DeliveryOrderPatch,
)
from erp_logistics.schemas.inventory import (
    ExpeditionOut,
    StockAvailabilityOut,
    StockLedgerEntryOut,
    WarehouseOut,
)
from erp_logistics.schemas.sales_order import SalesOrderLineOut, SalesOrderOut
from erp_logistics.services.delivery_order_engine import DeliveryOrderEngine, to_out
from erp_logistics.services.unit_of_work import UnitOfWork


class DeliveryOrderService:
    """Single entry point used by the HTTP routes and by scripts.

    Mutations go through ``DeliveryOrderEngine``; reads open their own short
    unit of work.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[DeliveryOrderEngine] = None,
        lock_registry: Optional[KeyedLocks] = None,
    ):
        self.session_factory = session_factory
        self.engine = engine or DeliveryOrderEngine(session_factory, lock_registry)

    # delivery orders -------------------------------------------------
    async def list_delivery_orders(self, query: DeliveryOrderListQuery) -> DeliveryOrderListOut:
        flt = DeliveryOrderFilter(
            status=query.status,
            search_text=query.search_text,
            page=query.page,
            page_size=query.page_size,
        )
        async with UnitOfWork(self.session_factory) as uow:
            items, total = await uow.delivery_orders.list(flt)
            return DeliveryOrderListOut(
                items=[DeliveryOrderHeaderOut.model_validate(item) for item in items],
                total=total,
                page=flt.page,
                page_size=flt.page_size,
            )

    async def get_delivery_order(self, do_id: str) -> DeliveryOrderOut:
        async with UnitOfWork(self.session_factory) as uow:
            header = await uow.delivery_orders.get(do_id)
            if header is None:
                raise NotFound(f"Delivery order {do_id} not found.")
            return to_out(header)

    async def create_delivery_order(
        self,
        payload: DeliveryOrderCreate,
        actor: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryOrderOut:
        return await self.engine.create(payload, actor or settings.SYSTEM_ACTOR, idempotency_key)

    async def update_delivery_order(
        self, do_id: str, patch: DeliveryOrderPatch, actor: Optional[str] = None
    ) -> DeliveryOrderOut:
        return await self.engine.update(do_id, patch, actor or settings.SYSTEM_ACTOR)

    async def delete_delivery_order(self, do_id: str, actor: Optional[str] = None) -> None:
        await self.engine.delete(do_id, actor or settings.SYSTEM_ACTOR)

    async def release_delivery_order(
        self, do_id: str, actor: Optional[str] = None
    ) -> DeliveryOrderOut:
        return await self.engine.release(do_id, actor or settings.SYSTEM_ACTOR)

    async def void_delivery_order(
        self, do_id: str, reason: str, actor: Optional[str] = None
    ) -> DeliveryOrderOut:
        return await self.engine.void(do_id, reason, actor or settings.SYSTEM_ACTOR)

    async def mark_delivery_order_invoiced(
        self, do_id: str, actor: Optional[str] = None
    ) -> DeliveryOrderOut:
        return await self.engine.mark_invoiced(do_id, actor or settings.SYSTEM_ACTOR)

    async def mark_delivery_order_closed(
        self, do_id: str, actor: Optional[str] = None
    ) -> DeliveryOrderOut:
        return await self.engine.mark_closed(do_id, actor or settings.SYSTEM_ACTOR)

    # sales orders ----------------------------------------------------
    async def list_active_sales_orders(
        self, search_text: Optional[str] = None
    ) -> List[SalesOrderOut]:
        async with UnitOfWork(self.session_factory) as uow:
            rows = await uow.sales_orders.list_active(search_text)
            return [SalesOrderOut.model_validate(row) for row in rows]

    async def get_sales_order_lines(self, so_id: str) -> List[SalesOrderLineOut]:
        async with UnitOfWork(self.session_factory) as uow:
            if await uow.sales_orders.get(so_id) is None:
                raise NotFound(f"Sales order {so_id} not found.")
            rows = await uow.sales_orders.lines_for_order(so_id)
            return [SalesOrderLineOut.model_validate(row) for row in rows]

    # stock -----------------------------------------------------------
    async def get_stock_availability(
        self, product_id: str, warehouse_id: str
    ) -> StockAvailabilityOut:
        async with UnitOfWork(self.session_factory) as uow:
            quantity: Decimal = await uow.ledger.current_stock(product_id, warehouse_id)
        return StockAvailabilityOut(
            product_id=product_id, warehouse_id=warehouse_id, quantity=quantity
        )

    async def get_stock_history(
        self,
        product_id: str,
        warehouse_id: str,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        after_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[StockLedgerEntryOut]:
        async with UnitOfWork(self.session_factory) as uow:
            rows = await uow.ledger.history(
                product_id,
                warehouse_id,
                since=since,
                until=until,
                after_id=after_id,
                limit=limit,
            )
            return [StockLedgerEntryOut.model_validate(row) for row in rows]

    # master data -----------------------------------------------------
    async def list_warehouses(self) -> List[WarehouseOut]:
        async with UnitOfWork(self.session_factory) as uow:
            rows = await uow.master_data.list_warehouses()
            return [WarehouseOut.model_validate(row) for row in rows]

    async def list_expeditions(self) -> List[ExpeditionOut]:
        async with UnitOfWork(self.session_factory) as uow:
            rows = await uow.master_data.list_expeditions()
            return [ExpeditionOut.model_validate(row) for row in rows]
