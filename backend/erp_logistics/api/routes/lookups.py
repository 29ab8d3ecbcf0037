"""Read-only lookups used while preparing delivery orders."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from erp_logistics.api.deps import get_delivery_service
from erp_logistics.api.errors import raise_http
from erp_logistics.core.errors import DeliveryOrderError
from erp_logistics.schemas.inventory import (
    ExpeditionOut,
    StockAvailabilityOut,
    StockLedgerEntryOut,
    WarehouseOut,
)
from erp_logistics.schemas.sales_order import SalesOrderLineOut, SalesOrderOut
from erp_logistics.services.delivery_orders import DeliveryOrderService

router = APIRouter(tags=["lookups"])


@router.get("/sales-orders/active", response_model=List[SalesOrderOut])
async def list_active_sales_orders(
    search: Optional[str] = Query(default=None),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> List[SalesOrderOut]:
    return await service.list_active_sales_orders(search)


@router.get("/sales-orders/{so_id}/lines", response_model=List[SalesOrderLineOut])
async def get_sales_order_lines(
    so_id: str,
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> List[SalesOrderLineOut]:
    try:
        return await service.get_sales_order_lines(so_id)
    except DeliveryOrderError as exc:
        raise_http(exc)


@router.get("/warehouses", response_model=List[WarehouseOut])
async def list_warehouses(
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> List[WarehouseOut]:
    return await service.list_warehouses()


@router.get("/expeditions", response_model=List[ExpeditionOut])
async def list_expeditions(
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> List[ExpeditionOut]:
    return await service.list_expeditions()


@router.get("/stock/{product_id}/{warehouse_id}", response_model=StockAvailabilityOut)
async def get_stock_availability(
    product_id: str,
    warehouse_id: str,
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> StockAvailabilityOut:
    return await service.get_stock_availability(product_id, warehouse_id)


@router.get(
    "/stock/{product_id}/{warehouse_id}/history", response_model=List[StockLedgerEntryOut]
)
async def get_stock_history(
    product_id: str,
    warehouse_id: str,
    since: Optional[datetime] = Query(default=None),
    until: Optional[datetime] = Query(default=None),
    after_id: Optional[int] = Query(default=None, ge=0),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> List[StockLedgerEntryOut]:
    return await service.get_stock_history(
        product_id,
        warehouse_id,
        since=since,
        until=until,
        after_id=after_id,
        limit=limit,
    )
