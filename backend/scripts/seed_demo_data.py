import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from erp_logistics.core.db import SessionLocal, create_all, engine
from erp_logistics.core.logging import setup_logging
from erp_logistics.services.seed import seed_demo_data


async def main(with_orders: bool):
    await create_all(engine)
    created = await seed_demo_data(SessionLocal, include_delivery_orders=with_orders)
    print("seeded:" if created else "already seeded:", engine.url.render_as_string(hide_password=True))
    await engine.dispose()

if __name__ == "__main__":
    setup_logging()
    asyncio.run(main("--with-orders" in sys.argv[1:]))
