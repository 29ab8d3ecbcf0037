"""ORM model exports for convenient imports elsewhere in the app."""

from erp_logistics.models.base import Base
from erp_logistics.models.inv_delivery_order import (
    DeliveryOrderStatus,
    InvDoAudit,
    InvDoDtl,
    InvDoHdr,
)
from erp_logistics.models.inv_generic_sequence import InvGenericSequence
from erp_logistics.models.inv_idempotency_key import InvIdempotencyKey
from erp_logistics.models.inv_master_data import InvExpedition, InvWarehouse
from erp_logistics.models.inv_sales_order import InvSoDtl, InvSoHdr, SalesOrderStatus
from erp_logistics.models.inv_stock_ledger import InvStockLedger, LedgerMovement, LedgerRefType

__all__ = [
    "Base",
    "DeliveryOrderStatus",
    "InvDoHdr",
    "InvDoDtl",
    "InvDoAudit",
    "InvExpedition",
    "InvGenericSequence",
    "InvIdempotencyKey",
    "InvSoHdr",
    "InvSoDtl",
    "InvStockLedger",
    "InvWarehouse",
    "LedgerMovement",
    "LedgerRefType",
    "SalesOrderStatus",
]
