"""Delivered-quantity bookkeeping on sales order lines."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from loguru import logger

from erp_logistics.core.errors import NotFound, OverDelivery, OverReversal
from erp_logistics.models.inv_sales_order import InvSoDtl, SalesOrderStatus
from erp_logistics.repositories.sales_orders import SalesOrderRepository


def _now() -> datetime:
    return datetime.now()


def _positive(qty: Decimal) -> Decimal:
    qty = Decimal(qty)
    if qty <= 0:
        raise ValueError(f"quantity must be positive, got {qty}")
    return qty


class SalesOrderLineTracker:
    """Sole writer of ``delivered_qty`` and of the delivery-driven SO status.

    Both mutators keep ``0 <= delivered <= ordered`` and return the new
    remaining quantity.
    """

    def __init__(self, sales_orders: SalesOrderRepository):
        self.sales_orders = sales_orders

    async def _line(self, so_line_id: str) -> InvSoDtl:
        line = await self.sales_orders.get_line(so_line_id, for_update=True)
        if line is None:
            raise NotFound(f"Sales order line {so_line_id} not found.")
        return line

    async def record_delivery(self, so_line_id: str, qty: Decimal) -> Decimal:
        qty = _positive(qty)
        line = await self._line(so_line_id)
        delivered = Decimal(line.delivered_qty) + qty
        if delivered > Decimal(line.ordered_qty):
            logger.bind(so_line_id=so_line_id, qty=str(qty), remaining=str(line.remaining_qty)).error(
                "so_line_over_delivery"
            )
            raise OverDelivery(
                f"Delivering {qty} on {so_line_id} exceeds the remaining {line.remaining_qty}."
            )
        line.delivered_qty = delivered
        return line.remaining_qty

    async def reverse_delivery(self, so_line_id: str, qty: Decimal) -> Decimal:
        qty = _positive(qty)
        line = await self._line(so_line_id)
        delivered = Decimal(line.delivered_qty) - qty
        if delivered < 0:
            logger.bind(so_line_id=so_line_id, qty=str(qty), delivered=str(line.delivered_qty)).error(
                "so_line_over_reversal"
            )
            raise OverReversal(
                f"Reversing {qty} on {so_line_id} exceeds the delivered {line.delivered_qty}."
            )
        line.delivered_qty = delivered
        return line.remaining_qty

    async def derive_order_status(self, so_id: str) -> SalesOrderStatus:
        lines = await self.sales_orders.lines_for_order(so_id)
        if lines and all(line.remaining_qty <= 0 for line in lines):
            return SalesOrderStatus.CLOSED
        return SalesOrderStatus.ACTIVE

    async def refresh_order_status(self, so_id: str) -> SalesOrderStatus:
        header = await self.sales_orders.get(so_id, for_update=True)
        if header is None:
            raise NotFound(f"Sales order {so_id} not found.")
        if header.status == SalesOrderStatus.CANCELLED.value:
            return SalesOrderStatus.CANCELLED
        derived = await self.derive_order_status(so_id)
        if header.status != derived.value:
            logger.bind(so_id=so_id, old=header.status, new=derived.value).info(
                "sales_order_status_changed"
            )
            header.status = derived.value
            header.updated_at = _now()
        return derived
