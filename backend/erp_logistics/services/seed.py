"""Demo data set: warehouses, expeditions, two sales orders and opening stock."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from erp_logistics.models import (
    InvExpedition,
    InvSoDtl,
    InvSoHdr,
    InvStockLedger,
    InvWarehouse,
    LedgerMovement,
    LedgerRefType,
    SalesOrderStatus,
)
from erp_logistics.schemas.delivery_order import DeliveryOrderCreate, DeliveryOrderLineCreate
from erp_logistics.services.delivery_order_engine import DeliveryOrderEngine
from erp_logistics.services.unit_of_work import UnitOfWork

SEED_ACTOR = "admin"

WAREHOUSES = [("wh_001", "Gudang CMA"), ("wh_002", "Gudang Pusat")]
EXPEDITIONS = [
    ("exp_001", "JNE"),
    ("exp_002", "J&T"),
    ("exp_003", "SAP"),
    ("exp_004", "Eksp. CV UTAMA"),
]

MARBLE = ("prod_001", "MRB-CAR-60X60", "Marble Carrara White 60x60cm")
GRANITE = ("prod_002", "GRN-BLK-80X80", "Granite Black Galaxy 80x80cm")
CERAMIC = ("prod_003", "CER-WHT-30X30", "Ceramic White Matt 30x30cm")

SALES_ORDERS = [
    {
        "id": "so_001",
        "so_no": "SO/2025/01/0001",
        "so_date": date(2025, 1, 15),
        "customer_id": "cust_001",
        "customer_name": "PT. Mitra Konstruksi",
        "lines": [
            ("sol_001", MARBLE, "100", "0", "850000"),
            ("sol_002", GRANITE, "50", "0", "1200000"),
        ],
    },
    {
        "id": "so_002",
        "so_no": "SO/2025/01/0002",
        "so_date": date(2025, 1, 16),
        "customer_id": "cust_002",
        "customer_name": "CV. Bangunan Sejahtera",
        "lines": [
            ("sol_003", CERAMIC, "200", "30", "350000"),
            ("sol_004", MARBLE, "75", "25", "850000"),
        ],
    },
]

# (product_id, warehouse_id) -> opening quantity
OPENING_STOCK = {
    ("prod_001", "wh_001"): "500",
    ("prod_001", "wh_002"): "300",
    ("prod_002", "wh_001"): "200",
    ("prod_002", "wh_002"): "150",
    ("prod_003", "wh_001"): "800",
    ("prod_003", "wh_002"): "600",
}


async def seed_demo_data(
    session_factory: async_sessionmaker[AsyncSession],
    include_delivery_orders: bool = False,
) -> bool:
    """Insert the demo data set. Returns ``False`` when it was already present."""

    async with UnitOfWork(session_factory) as uow:
        session = uow.session
        if await session.scalar(select(InvWarehouse.id).limit(1)) is not None:
            logger.info("seed_skipped_already_present")
            return False

        session.add_all(InvWarehouse(id=wid, name=name) for wid, name in WAREHOUSES)
        session.add_all(InvExpedition(id=eid, name=name) for eid, name in EXPEDITIONS)
        for so in SALES_ORDERS:
            header = InvSoHdr(
                id=so["id"],
                so_no=so["so_no"],
                so_date=so["so_date"],
                customer_id=so["customer_id"],
                customer_name=so["customer_name"],
                status=SalesOrderStatus.ACTIVE.value,
            )
            header.items = [
                InvSoDtl(
                    id=line_id,
                    product_id=product[0],
                    product_code=product[1],
                    product_name=product[2],
                    uom="M2",
                    ordered_qty=Decimal(ordered),
                    delivered_qty=Decimal(delivered),
                    price=Decimal(price),
                )
                for line_id, product, ordered, delivered, price in so["lines"]
            ]
            session.add(header)

        opened_at = datetime(2025, 1, 1)
        await uow.ledger.append(
            InvStockLedger(
                product_id=product_id,
                warehouse_id=warehouse_id,
                qty=Decimal(qty),
                unit_price=Decimal("0"),
                amount=Decimal("0"),
                ref_type=LedgerRefType.OPENING.value,
                ref_id="OPENING",
                ref_line_id=f"{product_id}@{warehouse_id}",
                movement=LedgerMovement.IN.value,
                occurred_at=opened_at,
                created_by=SEED_ACTOR,
            )
            for (product_id, warehouse_id), qty in OPENING_STOCK.items()
        )

    logger.bind(
        warehouses=len(WAREHOUSES), sales_orders=len(SALES_ORDERS), stock_keys=len(OPENING_STOCK)
    ).info("seed_master_data_created")

    if include_delivery_orders:
        await _seed_delivery_orders(DeliveryOrderEngine(session_factory))
    return True


async def _seed_delivery_orders(engine: DeliveryOrderEngine) -> None:
    """One draft on SO/2025/01/0002 and one released order on SO/2025/01/0001."""

    await engine.create(
        DeliveryOrderCreate(
            delivery_date=date(2025, 1, 17),
            sales_order_id="so_002",
            carrier_id="exp_001",
            notes="Delivery to project site - handle with care",
            lines=[
                DeliveryOrderLineCreate(
                    so_line_id="sol_003", warehouse_id="wh_001", qty_to_deliver=Decimal("30")
                ),
                DeliveryOrderLineCreate(
                    so_line_id="sol_004", warehouse_id="wh_001", qty_to_deliver=Decimal("25")
                ),
            ],
        ),
        SEED_ACTOR,
    )
    released = await engine.create(
        DeliveryOrderCreate(
            delivery_date=date(2025, 1, 16),
            sales_order_id="so_001",
            carrier_id="exp_002",
            notes="First batch delivery",
            lines=[
                DeliveryOrderLineCreate(
                    so_line_id="sol_001", warehouse_id="wh_002", qty_to_deliver=Decimal("30")
                ),
            ],
        ),
        SEED_ACTOR,
    )
    await engine.release(released.header.id, SEED_ACTOR)
