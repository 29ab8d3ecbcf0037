"""Unit of Work.

One session and one transaction per engine operation; every repository handed
out by the unit shares that session, so ledger appends, sales order updates and
the header transition commit together or not at all.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from erp_logistics.repositories.delivery_orders import DeliveryOrderRepository
from erp_logistics.repositories.inventory_ledger import InventoryLedger
from erp_logistics.repositories.master_data import MasterDataRepository
from erp_logistics.repositories.sales_orders import SalesOrderRepository
from erp_logistics.repositories.sequences import SequenceGenerator


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._stack: Optional[AsyncExitStack] = None
        self.session: Optional[AsyncSession] = None
        self._delivery_orders: Optional[DeliveryOrderRepository] = None
        self._sales_orders: Optional[SalesOrderRepository] = None
        self._ledger: Optional[InventoryLedger] = None
        self._sequences: Optional[SequenceGenerator] = None
        self._master_data: Optional[MasterDataRepository] = None

    async def __aenter__(self) -> "UnitOfWork":
        stack = AsyncExitStack()
        try:
            self.session = await stack.enter_async_context(self._session_factory())
            # Commits on clean exit and rolls back when the block raises.
            await stack.enter_async_context(self.session.begin())
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        stack, self._stack = self._stack, None
        assert stack is not None
        return bool(await stack.__aexit__(exc_type, exc_val, exc_tb))

    def _require_session(self) -> AsyncSession:
        if self.session is None:
            raise RuntimeError("UnitOfWork used outside of 'async with'")
        return self.session

    @property
    def delivery_orders(self) -> DeliveryOrderRepository:
        if self._delivery_orders is None:
            self._delivery_orders = DeliveryOrderRepository(self._require_session())
        return self._delivery_orders

    @property
    def sales_orders(self) -> SalesOrderRepository:
        if self._sales_orders is None:
            self._sales_orders = SalesOrderRepository(self._require_session())
        return self._sales_orders

    @property
    def ledger(self) -> InventoryLedger:
        if self._ledger is None:
            self._ledger = InventoryLedger(self._require_session())
        return self._ledger

    @property
    def sequences(self) -> SequenceGenerator:
        if self._sequences is None:
            self._sequences = SequenceGenerator(self._require_session())
        return self._sequences

    @property
    def master_data(self) -> MasterDataRepository:
        if self._master_data is None:
            self._master_data = MasterDataRepository(self._require_session())
        return self._master_data

    async def flush(self) -> None:
        await self._require_session().flush()
