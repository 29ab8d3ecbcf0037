"""Delivery order state machine and inventory reconciliation.

Lifecycle::

    draft -> released -> invoiced -> closed
    draft -> cancelled
    released -> cancelled

Every operation runs in one ``UnitOfWork`` so that ledger appends, sales order
updates and the header transition commit together. Writers are serialised per
document and per (product, warehouse) / sales order line through ``KeyedLocks``;
transient database failures are retried by ``with_db_retry``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from functools import partial
from typing import Awaitable, Callable, Iterable, Optional, Sequence, TypeVar
from uuid import uuid4

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from erp_logistics.core.concurrency import (
    KeyedLocks,
    document_key,
    locks as default_locks,
    sequence_key,
    so_line_key,
    stock_key,
)
from erp_logistics.core.config import settings
from erp_logistics.core.db_errors import translate_storage_error
from erp_logistics.core.db_retry import with_db_retry
from erp_logistics.core.errors import (
    DeliveryOrderError,
    InvalidTransition,
    IssueCode,
    LineIssue,
    NotFound,
    QuantityExceeded,
    StockConflict,
    ValidationError,
)
from erp_logistics.core.idempotency import (
    IdempotencyClaimState,
    claim_idempotency_key,
    complete_idempotency_key,
)
from erp_logistics.core.optimistic_lock import ensure_expected_version
from erp_logistics.models.inv_delivery_order import (
    DeliveryOrderStatus,
    InvDoAudit,
    InvDoDtl,
    InvDoHdr,
)
from erp_logistics.models.inv_master_data import InvExpedition, InvWarehouse
from erp_logistics.models.inv_sales_order import InvSoDtl, InvSoHdr, SalesOrderStatus
from erp_logistics.models.inv_stock_ledger import InvStockLedger, LedgerMovement, LedgerRefType
from erp_logistics.repositories.sequences import format_code, month_key, sequence_name
from erp_logistics.schemas.delivery_order import (
    DeliveryOrderAuditOut,
    DeliveryOrderCreate,
    DeliveryOrderHeaderOut,
    DeliveryOrderLineOut,
    DeliveryOrderOut,
    DeliveryOrderPatch,
)
from erp_logistics.services.sales_order_tracker import SalesOrderLineTracker
from erp_logistics.services.unit_of_work import UnitOfWork

T = TypeVar("T")

TWO_PLACES = Decimal("0.01")
IDEMPOTENCY_RESOURCE = "delivery_order"

# Statuses from which a repeated release is answered with the current state.
_ALREADY_RELEASED = {
    DeliveryOrderStatus.RELEASED.value,
    DeliveryOrderStatus.INVOICED.value,
    DeliveryOrderStatus.CLOSED.value,
}
_MUTABLE = {DeliveryOrderStatus.DRAFT.value, DeliveryOrderStatus.RELEASED.value}


def _now() -> datetime:
    return datetime.now()


def _quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES)


def _fmt(value: Decimal) -> str:
    return format(Decimal(value).normalize(), "f")


@dataclass(slots=True)
class _LineDraft:
    """A line as requested, before it is checked against live data."""

    line_no: int
    so_line_id: Optional[str]
    product_id: Optional[str]
    warehouse_id: Optional[str]
    qty: Decimal
    discount: Decimal
    line_notes: Optional[str] = None


@dataclass(slots=True)
class _LineFacts:
    """A draft line joined with the live sales order line, warehouse and stock."""

    draft: _LineDraft
    so_line: InvSoDtl
    warehouse: InvWarehouse
    stock: Decimal = Decimal("0")

    @property
    def line_amount(self) -> Decimal:
        return _quantize(self.draft.qty * Decimal(self.so_line.price) - self.draft.discount)


def _draft_from_line(line: InvDoDtl) -> _LineDraft:
    return _LineDraft(
        line_no=line.line_no,
        so_line_id=line.so_line_id,
        product_id=line.product_id,
        warehouse_id=line.warehouse_id,
        qty=Decimal(line.qty_to_deliver),
        discount=Decimal(line.discount),
        line_notes=line.line_notes,
    )


def _apply_facts(line: InvDoDtl, facts: _LineFacts) -> InvDoDtl:
    draft, so_line = facts.draft, facts.so_line
    line.line_no = draft.line_no
    line.so_line_id = so_line.id
    line.product_id = so_line.product_id
    line.product_code = so_line.product_code
    line.product_name = so_line.product_name
    line.uom = so_line.uom
    if line.ordered_qty is None:
        line.ordered_qty = so_line.ordered_qty
    line.delivered_to_date_qty = so_line.delivered_qty
    line.remaining_qty = so_line.remaining_qty
    line.qty_to_deliver = draft.qty
    line.warehouse_id = facts.warehouse.id
    line.warehouse_name = facts.warehouse.name
    line.stock_available = facts.stock
    line.unit_price = so_line.price
    line.discount = draft.discount
    line.line_amount = facts.line_amount
    line.line_notes = draft.line_notes
    return line


def _recompute_totals(header: InvDoHdr, lines: Sequence[InvDoDtl]) -> None:
    header.total_qty = _quantize(sum((Decimal(line.qty_to_deliver) for line in lines), Decimal("0")))
    header.total_amount = _quantize(
        sum((Decimal(line.line_amount) for line in lines), Decimal("0"))
    )


def _audit(actor: str, action: str, detail: Optional[str] = None) -> InvDoAudit:
    return InvDoAudit(at=_now(), actor=actor, action=action, detail=detail)


def effect_keys_for(lines: Iterable[InvDoDtl]) -> list[str]:
    """Stock and sales order line lock keys touched when ``lines`` are released or voided."""

    keys = {stock_key(line.product_id, line.warehouse_id) for line in lines}
    keys.update(so_line_key(line.so_line_id) for line in lines)
    return sorted(keys)


def to_out(header: InvDoHdr) -> DeliveryOrderOut:
    """Snapshot a loaded header as the ``{header, lines}`` shape returned to callers."""

    return DeliveryOrderOut(
        header=DeliveryOrderHeaderOut.model_validate(header),
        lines=[DeliveryOrderLineOut.model_validate(line) for line in header.lines],
        audit_trail=[DeliveryOrderAuditOut.model_validate(entry) for entry in header.audit_trail],
    )


class DeliveryOrderEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_registry: KeyedLocks | None = None,
        *,
        allow_delete_draft_with_lines: bool | None = None,
    ):
        self.session_factory = session_factory
        self.locks = lock_registry or default_locks
        self.allow_delete_draft_with_lines = (
            settings.ALLOW_DELETE_DRAFT_WITH_LINES
            if allow_delete_draft_with_lines is None
            else allow_delete_draft_with_lines
        )

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    async def _guard(self, op: str, do_id: Optional[str], call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except DeliveryOrderError as exc:
            logger.bind(
                op=op, do_id=do_id, error=type(exc).__name__, reason=exc.message
            ).warning("delivery_order_rejected")
            raise
        except SQLAlchemyError as exc:
            error = translate_storage_error(exc)
            logger.bind(op=op, do_id=do_id, error=str(exc)).error("delivery_order_storage_failure")
            raise error from exc

    async def _load(self, uow: UnitOfWork, do_id: str, *, for_update: bool = False) -> InvDoHdr:
        header = await uow.delivery_orders.get(do_id, for_update=for_update)
        if header is None:
            raise NotFound(f"Delivery order {do_id} not found.")
        return header

    async def _effect_keys(self, do_id: str) -> list[str]:
        async with UnitOfWork(self.session_factory) as uow:
            header = await self._load(uow, do_id)
            return effect_keys_for(header.lines)

    async def _check_lines(
        self, uow: UnitOfWork, so_id: str, drafts: Sequence[_LineDraft]
    ) -> tuple[list[_LineFacts], list[LineIssue]]:
        """Check every line against live data and collect all issues.

        Quantities drawn on the same sales order line, or on the same
        (product, warehouse) pair, are checked as a sum.
        """

        issues: list[LineIssue] = []
        so_lines = await uow.sales_orders.lines_by_id(d.so_line_id for d in drafts)
        warehouses = await uow.master_data.warehouses_by_id(d.warehouse_id for d in drafts)
        facts: list[_LineFacts] = []

        for draft in drafts:
            countable = True
            if draft.qty <= 0:
                issues.append(
                    LineIssue(
                        IssueCode.NON_POSITIVE_QUANTITY,
                        f"Quantity to deliver must be greater than zero (got {_fmt(draft.qty)}).",
                        draft.line_no,
                        "qty_to_deliver",
                    )
                )
                countable = False
            if draft.discount < 0:
                issues.append(
                    LineIssue(
                        IssueCode.INVALID_DISCOUNT,
                        "Discount cannot be negative.",
                        draft.line_no,
                        "discount",
                    )
                )

            warehouse = warehouses.get(draft.warehouse_id) if draft.warehouse_id else None
            if warehouse is None:
                message = (
                    f"Warehouse {draft.warehouse_id} does not exist."
                    if draft.warehouse_id
                    else "A warehouse is required."
                )
                issues.append(
                    LineIssue(IssueCode.MISSING_WAREHOUSE, message, draft.line_no, "warehouse_id")
                )
                countable = False

            so_line = so_lines.get(draft.so_line_id) if draft.so_line_id else None
            if so_line is None or so_line.so_id != so_id:
                issues.append(
                    LineIssue(
                        IssueCode.UNKNOWN_SALES_ORDER_LINE,
                        f"Sales order line {draft.so_line_id} does not belong to sales order {so_id}.",
                        draft.line_no,
                        "so_line_id",
                    )
                )
                continue
            if draft.product_id and draft.product_id != so_line.product_id:
                issues.append(
                    LineIssue(
                        IssueCode.PRODUCT_MISMATCH,
                        f"Product {draft.product_id} does not match sales order line product "
                        f"{so_line.product_id}.",
                        draft.line_no,
                        "product_id",
                    )
                )
                countable = False
            if draft.qty > 0 and draft.discount >= 0:
                gross = draft.qty * Decimal(so_line.price)
                if draft.discount > gross:
                    issues.append(
                        LineIssue(
                            IssueCode.INVALID_DISCOUNT,
                            f"Discount {_fmt(draft.discount)} exceeds the line value {_fmt(gross)}.",
                            draft.line_no,
                            "discount",
                        )
                    )
            if countable and warehouse is not None:
                facts.append(_LineFacts(draft=draft, so_line=so_line, warehouse=warehouse))

        by_so_line: dict[str, list[_LineFacts]] = defaultdict(list)
        by_stock: dict[tuple[str, str], list[_LineFacts]] = defaultdict(list)
        for fact in facts:
            by_so_line[fact.so_line.id].append(fact)
            by_stock[(fact.so_line.product_id, fact.warehouse.id)].append(fact)

        for group in by_so_line.values():
            requested = sum((f.draft.qty for f in group), Decimal("0"))
            remaining = group[0].so_line.remaining_qty
            if requested > remaining:
                for fact in group:
                    issues.append(
                        LineIssue(
                            IssueCode.QUANTITY_EXCEEDS_REMAINING,
                            f"Requested {_fmt(requested)} exceeds the remaining "
                            f"{_fmt(remaining)} on sales order line {fact.so_line.id}.",
                            fact.draft.line_no,
                            "qty_to_deliver",
                        )
                    )

        for (product_id, warehouse_id), group in by_stock.items():
            stock = await uow.ledger.current_stock(product_id, warehouse_id)
            requested = sum((f.draft.qty for f in group), Decimal("0"))
            for fact in group:
                fact.stock = stock
            if requested > stock:
                for fact in group:
                    issues.append(
                        LineIssue(
                            IssueCode.QUANTITY_EXCEEDS_STOCK,
                            f"Requested {_fmt(requested)} of {product_id} exceeds the "
                            f"{_fmt(stock)} available in {warehouse_id}.",
                            fact.draft.line_no,
                            "qty_to_deliver",
                        )
                    )

        issues.sort(key=lambda issue: (issue.line_no or 0))
        return facts, issues

    async def _check_carrier(
        self, uow: UnitOfWork, carrier_id: Optional[str], issues: list[LineIssue]
    ) -> Optional[InvExpedition]:
        if not carrier_id:
            return None
        carrier = await uow.master_data.get_expedition(carrier_id)
        if carrier is None:
            issues.append(
                LineIssue(
                    IssueCode.UNKNOWN_CARRIER,
                    f"Expedition {carrier_id} does not exist.",
                    field="carrier_id",
                )
            )
        return carrier

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    async def create(
        self,
        payload: DeliveryOrderCreate,
        actor: str,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryOrderOut:
        """Validate ``payload`` against live data and persist a draft.

        No stock or sales order effects happen until ``release``.
        """

        seq_name = sequence_name(
            month_key(payload.delivery_date.year, payload.delivery_date.month)
        )
        keys = [sequence_key(seq_name)]
        if idempotency_key:
            keys.append(f"idem:{IDEMPOTENCY_RESOURCE}:{idempotency_key}")

        async def _locked() -> DeliveryOrderOut:
            async with self.locks.hold(*keys):
                return await with_db_retry(
                    partial(self._create_once, payload, actor, idempotency_key)
                )

        return await self._guard("create", None, _locked)

    async def _create_once(
        self,
        payload: DeliveryOrderCreate,
        actor: str,
        idempotency_key: Optional[str],
    ) -> DeliveryOrderOut:
        async with UnitOfWork(self.session_factory) as uow:
            if idempotency_key:
                claim = await claim_idempotency_key(
                    uow.session,
                    idempotency_key=idempotency_key,
                    resource=IDEMPOTENCY_RESOURCE,
                )
                if claim.state == IdempotencyClaimState.REPLAY and claim.resource_id:
                    existing = await uow.delivery_orders.get(claim.resource_id)
                    if existing is not None:
                        logger.bind(do_id=existing.id, code=existing.code).info(
                            "delivery_order_create_replayed"
                        )
                        return to_out(existing)

            issues: list[LineIssue] = []
            so_header: Optional[InvSoHdr] = await uow.sales_orders.get(payload.sales_order_id)
            if so_header is None:
                issues.append(
                    LineIssue(
                        IssueCode.SALES_ORDER_NOT_FOUND,
                        f"Sales order {payload.sales_order_id} not found.",
                        field="sales_order_id",
                    )
                )
            elif so_header.status != SalesOrderStatus.ACTIVE.value:
                issues.append(
                    LineIssue(
                        IssueCode.SALES_ORDER_NOT_ACTIVE,
                        f"Sales order {so_header.so_no} is {so_header.status}.",
                        field="sales_order_id",
                    )
                )
            carrier = await self._check_carrier(uow, payload.carrier_id, issues)
            if not payload.lines:
                issues.append(
                    LineIssue(
                        IssueCode.NO_LINES,
                        "A delivery order needs at least one line.",
                        field="lines",
                    )
                )

            drafts = [
                _LineDraft(
                    line_no=index,
                    so_line_id=line.so_line_id,
                    product_id=line.product_id,
                    warehouse_id=line.warehouse_id,
                    qty=line.qty_to_deliver,
                    discount=line.discount,
                    line_notes=line.line_notes,
                )
                for index, line in enumerate(payload.lines, start=1)
            ]
            facts, line_issues = await self._check_lines(uow, payload.sales_order_id, drafts)
            issues.extend(line_issues)
            if issues or so_header is None:
                raise ValidationError("Delivery order is not valid.", issues)

            now = _now()
            year, month = payload.delivery_date.year, payload.delivery_date.month
            seq = await uow.sequences.next(month_key(year, month))
            header = InvDoHdr(
                id=uuid4().hex,
                code=format_code(year, month, seq),
                delivery_date=payload.delivery_date,
                sales_order_id=so_header.id,
                sales_order_no=so_header.so_no,
                customer_id=so_header.customer_id,
                customer_name=so_header.customer_name,
                carrier_id=carrier.id if carrier else None,
                carrier_name=carrier.name if carrier else None,
                notes=payload.notes,
                status=DeliveryOrderStatus.DRAFT.value,
                created_by=actor,
                created_at=now,
                updated_by=actor,
                updated_at=now,
            )
            lines = [_apply_facts(InvDoDtl(id=uuid4().hex), fact) for fact in facts]
            _recompute_totals(header, lines)
            header.audit_trail.append(
                _audit(actor, "created", f"code={header.code} lines={len(lines)}")
            )
            await uow.delivery_orders.save(header, lines)
            if idempotency_key:
                await complete_idempotency_key(
                    uow.session,
                    idempotency_key=idempotency_key,
                    resource=IDEMPOTENCY_RESOURCE,
                    resource_id=header.id,
                )
            result = to_out(header)

        logger.bind(
            do_id=result.header.id,
            code=result.header.code,
            sales_order_no=result.header.sales_order_no,
            total_qty=str(result.header.total_qty),
        ).info("delivery_order_created")
        return result

    # ------------------------------------------------------------------
    # release
    # ------------------------------------------------------------------
    async def release(self, do_id: str, actor: str) -> DeliveryOrderOut:
        """Consume stock and record delivery for every line of a draft."""

        async def _locked() -> DeliveryOrderOut:
            async with self.locks.hold(document_key(do_id)):
                effect_keys = await self._effect_keys(do_id)
                async with self.locks.hold(*effect_keys):
                    return await with_db_retry(partial(self._release_once, do_id, actor))

        return await self._guard("release", do_id, _locked)

    async def _release_once(self, do_id: str, actor: str) -> DeliveryOrderOut:
        async with UnitOfWork(self.session_factory) as uow:
            header = await self._load(uow, do_id, for_update=True)
            if header.status in _ALREADY_RELEASED:
                logger.bind(do_id=do_id, status=header.status).info("delivery_order_release_noop")
                return to_out(header)
            if header.status != DeliveryOrderStatus.DRAFT.value:
                raise InvalidTransition("release", header.status)

            facts, issues = await self._check_lines(
                uow, header.sales_order_id, [_draft_from_line(line) for line in header.lines]
            )
            so_header = await uow.sales_orders.get(header.sales_order_id)
            so_state = so_header.status if so_header is not None else "missing"
            if so_state != SalesOrderStatus.ACTIVE.value:
                issues.insert(
                    0,
                    LineIssue(
                        IssueCode.SALES_ORDER_NOT_ACTIVE,
                        f"Sales order {header.sales_order_no} is {so_state}.",
                        field="sales_order_id",
                    ),
                )
            if issues:
                codes = {issue.code for issue in issues}
                if IssueCode.QUANTITY_EXCEEDS_STOCK in codes:
                    raise StockConflict(
                        "Stock changed since the delivery order was created.", issues
                    )
                if IssueCode.QUANTITY_EXCEEDS_REMAINING in codes:
                    raise QuantityExceeded(
                        "Sales order quantities changed since the delivery order was created.",
                        issues,
                    )
                raise ValidationError("Delivery order can no longer be released.", issues)

            lines_by_no = {line.line_no: line for line in header.lines}
            for fact in facts:
                _apply_facts(lines_by_no[fact.draft.line_no], fact)

            now = _now()
            await uow.ledger.append(
                InvStockLedger(
                    product_id=line.product_id,
                    warehouse_id=line.warehouse_id,
                    qty=-Decimal(line.qty_to_deliver),
                    unit_price=line.unit_price,
                    amount=-Decimal(line.line_amount),
                    ref_type=LedgerRefType.DELIVERY_ORDER.value,
                    ref_id=header.id,
                    ref_line_id=line.id,
                    movement=LedgerMovement.OUT.value,
                    occurred_at=now,
                    created_by=actor,
                )
                for line in header.lines
            )
            tracker = SalesOrderLineTracker(uow.sales_orders)
            for line in header.lines:
                await tracker.record_delivery(line.so_line_id, Decimal(line.qty_to_deliver))
            so_status = await tracker.refresh_order_status(header.sales_order_id)

            header.status = DeliveryOrderStatus.RELEASED.value
            header.released_at = now
            header.updated_by = actor
            header.updated_at = now
            header.audit_trail.append(_audit(actor, "released", f"lines={len(header.lines)}"))
            await uow.flush()
            result = to_out(header)

        logger.bind(
            do_id=do_id, code=result.header.code, so_status=so_status.value
        ).info("delivery_order_released")
        return result

    # ------------------------------------------------------------------
    # void
    # ------------------------------------------------------------------
    async def void(self, do_id: str, reason: str, actor: str) -> DeliveryOrderOut:
        """Cancel a draft, or cancel a released order and reverse its effects."""

        reason = (reason or "").strip()

        async def _locked() -> DeliveryOrderOut:
            if not reason:
                raise ValidationError(
                    "A reason is required to void a delivery order.",
                    [LineIssue(IssueCode.MISSING_REASON, "Reason is required.", field="reason")],
                )
            async with self.locks.hold(document_key(do_id)):
                effect_keys = await self._effect_keys(do_id)
                async with self.locks.hold(*effect_keys):
                    return await with_db_retry(partial(self._void_once, do_id, reason, actor))

        return await self._guard("void", do_id, _locked)

    async def _void_once(self, do_id: str, reason: str, actor: str) -> DeliveryOrderOut:
        async with UnitOfWork(self.session_factory) as uow:
            header = await self._load(uow, do_id, for_update=True)
            previous = header.status
            if previous == DeliveryOrderStatus.CANCELLED.value:
                if header.cancel_reason != reason:
                    raise InvalidTransition(
                        "void",
                        previous,
                        "Delivery order is already cancelled with a different reason.",
                    )
                logger.bind(do_id=do_id).info("delivery_order_void_noop")
                return to_out(header)
            if previous not in _MUTABLE:
                raise InvalidTransition("void", previous)

            now = _now()
            if previous == DeliveryOrderStatus.RELEASED.value:
                await self._reverse_effects(uow, header, actor, now)

            header.status = DeliveryOrderStatus.CANCELLED.value
            header.cancelled_at = now
            header.cancel_reason = reason
            header.updated_by = actor
            header.updated_at = now
            header.audit_trail.append(_audit(actor, "voided", f"from={previous} reason={reason}"))
            await uow.flush()
            result = to_out(header)

        logger.bind(do_id=do_id, code=result.header.code, previous_status=previous).info(
            "delivery_order_voided"
        )
        return result

    async def _reverse_effects(
        self, uow: UnitOfWork, header: InvDoHdr, actor: str, now: datetime
    ) -> None:
        """Append one REVERSAL per OUT entry of ``header`` and give the quantities back."""

        entries = await uow.ledger.entries_for_reference(
            LedgerRefType.DELIVERY_ORDER.value, header.id
        )
        outs = [entry for entry in entries if entry.movement == LedgerMovement.OUT.value]
        await uow.ledger.append(
            InvStockLedger(
                product_id=entry.product_id,
                warehouse_id=entry.warehouse_id,
                qty=-Decimal(entry.qty),
                unit_price=entry.unit_price,
                amount=-Decimal(entry.amount),
                ref_type=LedgerRefType.DELIVERY_ORDER.value,
                ref_id=header.id,
                ref_line_id=entry.ref_line_id,
                movement=LedgerMovement.REVERSAL.value,
                occurred_at=now,
                created_by=actor,
            )
            for entry in outs
        )
        tracker = SalesOrderLineTracker(uow.sales_orders)
        lines_by_id = {line.id: line for line in header.lines}
        for entry in outs:
            line = lines_by_id[entry.ref_line_id]
            await tracker.reverse_delivery(line.so_line_id, -Decimal(entry.qty))
        await tracker.refresh_order_status(header.sales_order_id)

    # ------------------------------------------------------------------
    # update / delete
    # ------------------------------------------------------------------
    async def update(self, do_id: str, patch: DeliveryOrderPatch, actor: str) -> DeliveryOrderOut:
        """Patch header fields (draft or released) and line fields (draft only)."""

        async def _locked() -> DeliveryOrderOut:
            async with self.locks.hold(document_key(do_id)):
                return await with_db_retry(partial(self._update_once, do_id, patch, actor))

        return await self._guard("update", do_id, _locked)

    async def _update_once(
        self, do_id: str, patch: DeliveryOrderPatch, actor: str
    ) -> DeliveryOrderOut:
        fields = patch.model_fields_set
        async with UnitOfWork(self.session_factory) as uow:
            header = await self._load(uow, do_id, for_update=True)
            ensure_expected_version(header.version, patch.expected_version)
            if header.status not in _MUTABLE:
                raise InvalidTransition("update", header.status)
            if patch.lines and header.status != DeliveryOrderStatus.DRAFT.value:
                raise InvalidTransition(
                    "update",
                    header.status,
                    "Lines can only be changed while the delivery order is a draft.",
                )

            issues: list[LineIssue] = []
            changed: list[str] = []
            if "delivery_date" in fields and patch.delivery_date is not None:
                if patch.delivery_date != header.delivery_date:
                    header.delivery_date = patch.delivery_date
                    changed.append("delivery_date")
            if "carrier_id" in fields:
                carrier_id = (patch.carrier_id or "").strip() or None
                carrier = await self._check_carrier(uow, carrier_id, issues)
                if carrier_id != header.carrier_id:
                    header.carrier_id = carrier_id
                    header.carrier_name = carrier.name if carrier else None
                    changed.append("carrier")
            if "notes" in fields and patch.notes != header.notes:
                header.notes = patch.notes
                changed.append("notes")

            if patch.lines:
                drafts = {line.line_no: _draft_from_line(line) for line in header.lines}
                for line_patch in patch.lines:
                    draft = drafts.get(line_patch.line_no)
                    if draft is None:
                        issues.append(
                            LineIssue(
                                IssueCode.UNKNOWN_LINE,
                                f"Line {line_patch.line_no} does not exist on this delivery order.",
                                line_patch.line_no,
                                "line_no",
                            )
                        )
                        continue
                    line_fields = line_patch.model_fields_set
                    if "qty_to_deliver" in line_fields and line_patch.qty_to_deliver is not None:
                        draft.qty = line_patch.qty_to_deliver
                    if "warehouse_id" in line_fields:
                        draft.warehouse_id = (line_patch.warehouse_id or "").strip() or None
                    if "discount" in line_fields and line_patch.discount is not None:
                        draft.discount = line_patch.discount
                    if "line_notes" in line_fields:
                        draft.line_notes = line_patch.line_notes
                facts, line_issues = await self._check_lines(
                    uow, header.sales_order_id, list(drafts.values())
                )
                issues.extend(line_issues)
                if not issues:
                    lines_by_no = {line.line_no: line for line in header.lines}
                    for fact in facts:
                        _apply_facts(lines_by_no[fact.draft.line_no], fact)
                    _recompute_totals(header, header.lines)
                    changed.append("lines")

            if issues:
                raise ValidationError("Delivery order update is not valid.", issues)
            if not changed:
                return to_out(header)

            now = _now()
            header.updated_by = actor
            header.updated_at = now
            header.audit_trail.append(_audit(actor, "updated", ",".join(changed)))
            await uow.flush()
            result = to_out(header)

        logger.bind(do_id=do_id, changed=changed).info("delivery_order_updated")
        return result

    async def delete(self, do_id: str, actor: str) -> None:
        async def _locked() -> None:
            async with self.locks.hold(document_key(do_id)):
                await with_db_retry(partial(self._delete_once, do_id, actor))

        await self._guard("delete", do_id, _locked)

    async def _delete_once(self, do_id: str, actor: str) -> None:
        async with UnitOfWork(self.session_factory) as uow:
            header = await self._load(uow, do_id, for_update=True)
            if header.status != DeliveryOrderStatus.DRAFT.value:
                raise InvalidTransition("delete", header.status)
            if header.lines and not self.allow_delete_draft_with_lines:
                raise InvalidTransition(
                    "delete",
                    header.status,
                    "Draft delivery orders that have lines cannot be deleted; void it instead.",
                )
            code = header.code
            await uow.delivery_orders.delete(header)
        logger.bind(do_id=do_id, code=code, actor=actor).info("delivery_order_deleted")

    # ------------------------------------------------------------------
    # billing observations
    # ------------------------------------------------------------------
    async def mark_invoiced(self, do_id: str, actor: str) -> DeliveryOrderOut:
        return await self._observe(
            do_id, actor, DeliveryOrderStatus.RELEASED, DeliveryOrderStatus.INVOICED, "invoiced_at"
        )

    async def mark_closed(self, do_id: str, actor: str) -> DeliveryOrderOut:
        return await self._observe(
            do_id, actor, DeliveryOrderStatus.INVOICED, DeliveryOrderStatus.CLOSED, "closed_at"
        )

    async def _observe(
        self,
        do_id: str,
        actor: str,
        source: DeliveryOrderStatus,
        target: DeliveryOrderStatus,
        stamp: str,
    ) -> DeliveryOrderOut:
        async def _once() -> DeliveryOrderOut:
            async with UnitOfWork(self.session_factory) as uow:
                header = await self._load(uow, do_id, for_update=True)
                if header.status == target.value:
                    return to_out(header)
                if header.status != source.value:
                    raise InvalidTransition(f"mark as {target.value}", header.status)
                now = _now()
                header.status = target.value
                setattr(header, stamp, now)
                header.updated_by = actor
                header.updated_at = now
                header.audit_trail.append(_audit(actor, target.value))
                await uow.flush()
                result = to_out(header)
            logger.bind(do_id=do_id, status=target.value).info("delivery_order_status_observed")
            return result

        async def _locked() -> DeliveryOrderOut:
            async with self.locks.hold(document_key(do_id)):
                return await with_db_retry(_once)

        return await self._guard(f"mark_{target.value}", do_id, _locked)

