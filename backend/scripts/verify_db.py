import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from sqlalchemy import func, select, text
from erp_logistics.core.db import SessionLocal
from erp_logistics.models import InvDoHdr, InvStockLedger

async def main():
    async with SessionLocal() as s:
        # Simple ping
        one = await s.execute(text("SELECT 1"))
        print("db-ping:", one.scalar())

        orders = await s.scalar(select(func.count()).select_from(InvDoHdr))
        entries = await s.scalar(select(func.count()).select_from(InvStockLedger))
        print("delivery_orders:", orders)
        print("ledger_entries:", entries)

asyncio.run(main())
