from datetime import date
from decimal import Decimal

import anyio
import pytest
from pydantic import ValidationError as PydanticValidationError

from factories import consume_stock, delivered, ledger_for, line, order, so_status, stock
from erp_logistics.core.errors import (
    ConcurrencyConflict,
    InvalidTransition,
    IssueCode,
    NotFound,
    QuantityExceeded,
    StockConflict,
    ValidationError,
)
from erp_logistics.models import InvSoHdr, InvWarehouse
from erp_logistics.repositories.delivery_orders import DeliveryOrderFilter
from erp_logistics.schemas.delivery_order import DeliveryOrderLinePatch, DeliveryOrderPatch
from erp_logistics.services.delivery_order_engine import DeliveryOrderEngine
from erp_logistics.services.unit_of_work import UnitOfWork


# --------------------------------------------------------------------------
# Reference scenarios
# --------------------------------------------------------------------------


@pytest.mark.anyio
async def test_create_snapshots_remaining_and_stock(do_engine, seeded):
    created = await do_engine.create(order("so_002", line("sol_004", 25)), "admin")

    assert created.header.status == "draft"
    assert created.header.code == "DO/2025/01/0001"
    assert created.header.customer_name == "CV. Bangunan Sejahtera"
    assert created.header.sales_order_no == "SO/2025/01/0002"
    (created_line,) = created.lines
    assert created_line.ordered_qty == Decimal("75")
    assert created_line.delivered_to_date_qty == Decimal("25")
    assert created_line.remaining_qty == Decimal("50")
    assert created_line.stock_available == Decimal("500")
    assert created_line.product_code == "MRB-CAR-60X60"
    assert created_line.warehouse_name == "Gudang CMA"
    assert created_line.line_amount == Decimal("21250000")
    assert [entry.action for entry in created.audit_trail] == ["created"]

    # Drafts have no stock or sales order effects.
    assert await ledger_for(seeded, created.header.id) == []
    assert await delivered(seeded, "sol_004") == Decimal("25")
    assert await stock(seeded, "prod_001", "wh_001") == Decimal("500")


@pytest.mark.anyio
async def test_create_rejects_quantity_above_remaining(do_engine, seeded):
    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(order("so_002", line("sol_004", 60)), "admin")

    assert ctx.value.codes == {IssueCode.QUANTITY_EXCEEDS_REMAINING}
    assert ctx.value.issues[0].line_no == 1

    listing, total = await _list_all(seeded)
    assert total == 0


@pytest.mark.anyio
async def test_release_consumes_stock_and_records_delivery(do_engine, seeded):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")

    released = await do_engine.release(draft.header.id, "admin")

    assert released.header.status == "released"
    assert released.header.released_at is not None
    entries = await ledger_for(seeded, draft.header.id)
    assert [(e.movement, e.qty) for e in entries] == [("OUT", Decimal("-30"))]
    assert entries[0].amount == Decimal("-25500000")
    assert await stock(seeded, "prod_001", "wh_002") == Decimal("270")
    assert await delivered(seeded, "sol_001") == Decimal("30")
    assert await so_status(seeded, "so_001") == "active"
    assert [entry.action for entry in released.audit_trail] == ["created", "released"]


@pytest.mark.anyio
async def test_void_of_released_order_reverses_every_effect(do_engine, seeded):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")
    await do_engine.release(draft.header.id, "admin")

    voided = await do_engine.void(draft.header.id, "customer refused", "admin")

    assert voided.header.status == "cancelled"
    assert voided.header.cancel_reason == "customer refused"
    assert voided.header.cancelled_at is not None
    entries = await ledger_for(seeded, draft.header.id)
    assert [(e.movement, e.qty) for e in entries] == [
        ("OUT", Decimal("-30")),
        ("REVERSAL", Decimal("30")),
    ]
    assert await stock(seeded, "prod_001", "wh_002") == Decimal("300")
    assert await delivered(seeded, "sol_001") == Decimal("0")
    assert voided.audit_trail[-1].action == "voided"


@pytest.mark.anyio
async def test_release_of_cancelled_order_is_an_invalid_transition(do_engine, seeded):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")
    await do_engine.release(draft.header.id, "admin")
    voided = await do_engine.void(draft.header.id, "customer refused", "admin")

    with pytest.raises(InvalidTransition):
        await do_engine.release(draft.header.id, "admin")

    assert len(await ledger_for(seeded, draft.header.id)) == 2
    async with UnitOfWork(seeded) as uow:
        header = await uow.delivery_orders.get(draft.header.id)
        assert header.status == "cancelled"
        assert header.version == voided.header.version


# --------------------------------------------------------------------------
# Validation
# --------------------------------------------------------------------------


@pytest.mark.anyio
async def test_every_line_problem_is_reported_at_once(do_engine):
    payload = order(
        "so_002",
        line("sol_004", 60),
        line("sol_003", 10, warehouse_id=None),
        line("sol_001", 5),
        line("sol_003", 0),
        line("sol_003", 5, warehouse_id="wh_404"),
    )

    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(payload, "admin")

    by_line = {(issue.line_no, issue.code) for issue in ctx.value.issues}
    assert by_line == {
        (1, IssueCode.QUANTITY_EXCEEDS_REMAINING),
        (2, IssueCode.MISSING_WAREHOUSE),
        (3, IssueCode.UNKNOWN_SALES_ORDER_LINE),
        (4, IssueCode.NON_POSITIVE_QUANTITY),
        (5, IssueCode.MISSING_WAREHOUSE),
    }


@pytest.mark.anyio
async def test_lines_on_the_same_sales_order_line_are_checked_as_a_sum(do_engine):
    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(
            order("so_002", line("sol_004", 30), line("sol_004", 30, "wh_002")), "admin"
        )

    assert [(i.line_no, i.code) for i in ctx.value.issues] == [
        (1, IssueCode.QUANTITY_EXCEEDS_REMAINING),
        (2, IssueCode.QUANTITY_EXCEEDS_REMAINING),
    ]


@pytest.mark.anyio
async def test_create_rejects_quantity_above_current_stock(do_engine, seeded):
    await consume_stock(seeded, "prod_001", "wh_002", 290)

    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")

    assert ctx.value.codes == {IssueCode.QUANTITY_EXCEEDS_STOCK}


@pytest.mark.anyio
async def test_stock_shared_by_two_lines_is_checked_as_a_sum(do_engine, seeded):
    await consume_stock(seeded, "prod_001", "wh_002", 270)

    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(
            order("so_002", line("sol_004", 20, "wh_002"), line("sol_004", 20, "wh_002")),
            "admin",
        )
    assert [(i.line_no, i.code) for i in ctx.value.issues] == [
        (1, IssueCode.QUANTITY_EXCEEDS_STOCK),
        (2, IssueCode.QUANTITY_EXCEEDS_STOCK),
    ]

    created = await do_engine.create(order("so_002", line("sol_004", 20, "wh_002")), "admin")
    assert created.lines[0].stock_available == Decimal("30")


@pytest.mark.anyio
async def test_header_problems_are_itemised(do_engine, seeded):
    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(order("so_404", carrier_id="exp_404"), "admin")
    assert ctx.value.codes == {
        IssueCode.SALES_ORDER_NOT_FOUND,
        IssueCode.UNKNOWN_CARRIER,
        IssueCode.NO_LINES,
    }

    async with UnitOfWork(seeded) as uow:
        header = await uow.session.get(InvSoHdr, "so_001")
        header.status = "closed"
    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(order("so_001", line("sol_001", 1)), "admin")
    assert ctx.value.codes == {IssueCode.SALES_ORDER_NOT_ACTIVE}


@pytest.mark.anyio
async def test_product_must_match_the_sales_order_line(do_engine):
    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(order("so_002", line("sol_004", 5, product_id="prod_003")), "admin")
    assert ctx.value.codes == {IssueCode.PRODUCT_MISMATCH}


@pytest.mark.anyio
async def test_discount_reduces_line_amount_and_is_bounded(do_engine):
    created = await do_engine.create(
        order(
            "so_001",
            line("sol_001", 10, discount=Decimal("500000")),
            line("sol_002", 2, "wh_002"),
            carrier_id="exp_002",
        ),
        "admin",
    )
    assert created.lines[0].line_amount == Decimal("8000000")
    assert created.header.total_qty == Decimal("12")
    assert created.header.total_amount == Decimal("10400000")
    assert created.header.carrier_name == "J&T"

    with pytest.raises(ValidationError) as ctx:
        await do_engine.create(
            order(
                "so_001",
                line("sol_001", 1, discount=Decimal("900000")),
                line("sol_002", 1, discount=Decimal("-1")),
            ),
            "admin",
        )
    assert [(i.line_no, i.code) for i in ctx.value.issues] == [
        (1, IssueCode.INVALID_DISCOUNT),
        (2, IssueCode.INVALID_DISCOUNT),
    ]


@pytest.mark.anyio
async def test_codes_follow_the_delivery_month(do_engine):
    first = await do_engine.create(order("so_001", line("sol_001", 1)), "admin")
    february = await do_engine.create(
        order("so_001", line("sol_001", 1), delivery_date=date(2025, 2, 3)), "admin"
    )
    second = await do_engine.create(order("so_001", line("sol_001", 1)), "admin")

    assert first.header.code == "DO/2025/01/0001"
    assert february.header.code == "DO/2025/02/0001"
    assert second.header.code == "DO/2025/01/0002"


@pytest.mark.parametrize(
    "build",
    [
        lambda: line("sol_004", "0.004"),
        lambda: line("sol_004", 5, discount=Decimal("0.125")),
        lambda: DeliveryOrderLinePatch(line_no=1, qty_to_deliver=Decimal("1.005")),
        lambda: line("sol_004", "1" * 17 + ".5"),
    ],
)
def test_amounts_beyond_stored_precision_are_rejected(build):
    with pytest.raises(PydanticValidationError):
        build()


@pytest.mark.anyio
async def test_two_decimal_quantities_survive_storage_and_release(do_engine, seeded):
    created = await do_engine.create(order("so_002", line("sol_004", "0.25")), "admin")
    assert created.lines[0].qty_to_deliver == Decimal("0.25")

    released = await do_engine.release(created.header.id, "admin")

    assert released.header.status == "released"
    assert released.header.total_qty == Decimal("0.25")
    assert await delivered(seeded, "sol_004") == Decimal("25.25")
    assert await stock(seeded, "prod_001", "wh_001") == Decimal("499.75")


# --------------------------------------------------------------------------
# Release
# --------------------------------------------------------------------------


@pytest.mark.anyio
async def test_release_rejects_stock_taken_since_creation(do_engine, seeded):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")
    await consume_stock(seeded, "prod_001", "wh_002", 280)

    with pytest.raises(StockConflict) as ctx:
        await do_engine.release(draft.header.id, "admin")

    assert ctx.value.retryable is True
    assert IssueCode.QUANTITY_EXCEEDS_STOCK in ctx.value.codes
    assert await ledger_for(seeded, draft.header.id) == []
    assert await delivered(seeded, "sol_001") == Decimal("0")
    async with UnitOfWork(seeded) as uow:
        assert (await uow.delivery_orders.get(draft.header.id)).status == "draft"


@pytest.mark.anyio
async def test_release_rejects_remaining_used_by_another_order(do_engine, seeded):
    first = await do_engine.create(order("so_002", line("sol_004", 30)), "admin")
    second = await do_engine.create(order("so_002", line("sol_004", 30)), "admin")
    await do_engine.release(first.header.id, "admin")

    with pytest.raises(QuantityExceeded) as ctx:
        await do_engine.release(second.header.id, "admin")

    assert ctx.value.codes == {IssueCode.QUANTITY_EXCEEDS_REMAINING}
    assert await delivered(seeded, "sol_004") == Decimal("55")
    assert await stock(seeded, "prod_001", "wh_001") == Decimal("470")


@pytest.mark.anyio
async def test_release_is_idempotent(do_engine, seeded):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")
    first = await do_engine.release(draft.header.id, "admin")
    again = await do_engine.release(draft.header.id, "admin")

    assert again.header.status == "released"
    assert again.header.version == first.header.version
    assert len(await ledger_for(seeded, draft.header.id)) == 1
    assert await delivered(seeded, "sol_001") == Decimal("30")


@pytest.mark.anyio
async def test_concurrent_releases_write_the_ledger_once(do_engine, seeded):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")
    results = []

    async def _release():
        results.append(await do_engine.release(draft.header.id, "admin"))

    async with anyio.create_task_group() as tg:
        for _ in range(3):
            tg.start_soon(_release)

    assert {result.header.status for result in results} == {"released"}
    assert len(await ledger_for(seeded, draft.header.id)) == 1
    assert await stock(seeded, "prod_001", "wh_002") == Decimal("270")


@pytest.mark.anyio
async def test_full_delivery_closes_the_sales_order_and_void_reopens_it(do_engine, seeded):
    draft = await do_engine.create(
        order("so_002", line("sol_003", 170), line("sol_004", 50)), "admin"
    )
    await do_engine.release(draft.header.id, "admin")
    assert await so_status(seeded, "so_002") == "closed"

    await do_engine.void(draft.header.id, "wrong truck", "admin")
    assert await so_status(seeded, "so_002") == "active"
    assert await delivered(seeded, "sol_003") == Decimal("30")
    assert await delivered(seeded, "sol_004") == Decimal("25")


@pytest.mark.anyio
async def test_stock_is_conserved_across_release_and_void(do_engine, seeded):
    keys = [("prod_001", "wh_001"), ("prod_003", "wh_001"), ("prod_002", "wh_002")]
    before = [await stock(seeded, *key) for key in keys]

    a = await do_engine.create(
        order("so_002", line("sol_003", 40), line("sol_004", 10)), "admin"
    )
    b = await do_engine.create(order("so_001", line("sol_002", 20, "wh_002")), "admin")
    await do_engine.release(a.header.id, "admin")
    await do_engine.release(b.header.id, "admin")
    assert [await stock(seeded, *key) for key in keys] == [
        before[0] - 10,
        before[1] - 40,
        before[2] - 20,
    ]

    await do_engine.void(a.header.id, "returned", "admin")
    await do_engine.void(b.header.id, "returned", "admin")
    assert [await stock(seeded, *key) for key in keys] == before


@pytest.mark.anyio
async def test_releases_of_different_orders_share_the_stock(do_engine, seeded):
    await consume_stock(seeded, "prod_001", "wh_002", 180)
    first = await do_engine.create(order("so_001", line("sol_001", 75, "wh_002")), "admin")
    second = await do_engine.create(order("so_002", line("sol_004", 50, "wh_002")), "admin")
    outcomes = {}

    async def _release(draft):
        try:
            await do_engine.release(draft.header.id, "admin")
            outcomes[draft.header.id] = "released"
        except StockConflict:
            outcomes[draft.header.id] = "conflict"

    async with anyio.create_task_group() as tg:
        tg.start_soon(_release, first)
        tg.start_soon(_release, second)

    assert sorted(outcomes.values()) == ["conflict", "released"]
    shipped = Decimal("75") if outcomes[first.header.id] == "released" else Decimal("50")
    assert await stock(seeded, "prod_001", "wh_002") == Decimal("120") - shipped
    for draft in (first, second):
        entries = await ledger_for(seeded, draft.header.id)
        assert len(entries) == (1 if outcomes[draft.header.id] == "released" else 0)


@pytest.mark.anyio
async def test_release_rechecks_the_sales_order_status(do_engine, seeded):
    draft = await do_engine.create(order("so_002", line("sol_004", 10)), "admin")
    async with UnitOfWork(seeded) as uow:
        header = await uow.session.get(InvSoHdr, "so_002")
        header.status = "cancelled"

    with pytest.raises(ValidationError) as ctx:
        await do_engine.release(draft.header.id, "admin")

    assert ctx.value.codes == {IssueCode.SALES_ORDER_NOT_ACTIVE}
    assert await ledger_for(seeded, draft.header.id) == []
    assert await delivered(seeded, "sol_004") == Decimal("25")
    assert await stock(seeded, "prod_001", "wh_001") == Decimal("500")
    async with UnitOfWork(seeded) as uow:
        assert (await uow.delivery_orders.get(draft.header.id)).status == "draft"


@pytest.mark.anyio
async def test_release_reports_non_quantity_problems_as_validation_errors(do_engine, seeded):
    draft = await do_engine.create(order("so_002", line("sol_004", 10)), "admin")
    async with UnitOfWork(seeded) as uow:
        await uow.session.delete(await uow.session.get(InvWarehouse, "wh_001"))

    with pytest.raises(ValidationError) as ctx:
        await do_engine.release(draft.header.id, "admin")

    assert ctx.value.codes == {IssueCode.MISSING_WAREHOUSE}
    assert [issue.line_no for issue in ctx.value.issues] == [1]
    assert await delivered(seeded, "sol_004") == Decimal("25")


# --------------------------------------------------------------------------
# Void
# --------------------------------------------------------------------------


@pytest.mark.anyio
async def test_void_of_draft_only_cancels(do_engine, seeded):
    draft = await do_engine.create(order("so_002", line("sol_004", 5)), "admin")

    voided = await do_engine.void(draft.header.id, "duplicate", "admin")

    assert voided.header.status == "cancelled"
    assert await ledger_for(seeded, draft.header.id) == []
    assert await delivered(seeded, "sol_004") == Decimal("25")


@pytest.mark.anyio
async def test_void_requires_a_reason_and_is_idempotent(do_engine):
    draft = await do_engine.create(order("so_002", line("sol_004", 5)), "admin")

    with pytest.raises(ValidationError) as ctx:
        await do_engine.void(draft.header.id, "   ", "admin")
    assert ctx.value.codes == {IssueCode.MISSING_REASON}

    first = await do_engine.void(draft.header.id, "duplicate", "admin")
    again = await do_engine.void(draft.header.id, "duplicate", "admin")
    assert again.header.version == first.header.version
    with pytest.raises(InvalidTransition):
        await do_engine.void(draft.header.id, "another reason", "admin")


@pytest.mark.anyio
async def test_invoiced_and_closed_orders_are_terminal(do_engine, seeded):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")

    with pytest.raises(InvalidTransition):
        await do_engine.mark_invoiced(draft.header.id, "billing")

    await do_engine.release(draft.header.id, "admin")
    invoiced = await do_engine.mark_invoiced(draft.header.id, "billing")
    assert invoiced.header.status == "invoiced"
    assert invoiced.header.invoiced_at is not None

    with pytest.raises(InvalidTransition):
        await do_engine.void(draft.header.id, "too late", "admin")
    with pytest.raises(InvalidTransition):
        await do_engine.update(draft.header.id, DeliveryOrderPatch(notes="x"), "admin")
    assert (await do_engine.release(draft.header.id, "admin")).header.status == "invoiced"

    closed = await do_engine.mark_closed(draft.header.id, "billing")
    assert closed.header.status == "closed"
    assert closed.header.closed_at is not None
    assert [entry.action for entry in closed.audit_trail] == [
        "created",
        "released",
        "invoiced",
        "closed",
    ]
    assert len(await ledger_for(seeded, draft.header.id)) == 1


# --------------------------------------------------------------------------
# Update / delete
# --------------------------------------------------------------------------


@pytest.mark.anyio
async def test_update_draft_lines_recomputes_totals(do_engine):
    draft = await do_engine.create(
        order("so_002", line("sol_003", 10), line("sol_004", 5)), "admin"
    )

    updated = await do_engine.update(
        draft.header.id,
        DeliveryOrderPatch(
            lines=[
                DeliveryOrderLinePatch(line_no=1, qty_to_deliver=Decimal("20")),
                DeliveryOrderLinePatch(line_no=2, warehouse_id="wh_002", line_notes="fragile"),
            ],
            expected_version=draft.header.version,
        ),
        "editor",
    )

    assert updated.lines[0].qty_to_deliver == Decimal("20")
    assert updated.lines[1].warehouse_name == "Gudang Pusat"
    assert updated.lines[1].stock_available == Decimal("300")
    assert updated.lines[1].line_notes == "fragile"
    assert updated.header.total_qty == Decimal("25")
    assert updated.header.total_amount == Decimal("11250000")
    assert updated.header.updated_by == "editor"
    assert updated.header.version == draft.header.version + 1


@pytest.mark.anyio
async def test_update_rejects_invalid_lines_without_changes(do_engine, seeded):
    draft = await do_engine.create(order("so_002", line("sol_004", 5)), "admin")

    with pytest.raises(ValidationError) as ctx:
        await do_engine.update(
            draft.header.id,
            DeliveryOrderPatch(
                notes="changed",
                lines=[
                    DeliveryOrderLinePatch(line_no=1, qty_to_deliver=Decimal("80")),
                    DeliveryOrderLinePatch(line_no=9, qty_to_deliver=Decimal("1")),
                ],
            ),
            "admin",
        )

    assert ctx.value.codes == {IssueCode.QUANTITY_EXCEEDS_REMAINING, IssueCode.UNKNOWN_LINE}
    current = await _get(seeded, draft.header.id)
    assert current.notes is None
    assert current.lines[0].qty_to_deliver == Decimal("5")


@pytest.mark.anyio
async def test_update_with_stale_version_conflicts(do_engine):
    draft = await do_engine.create(order("so_002", line("sol_004", 5)), "admin")
    await do_engine.update(draft.header.id, DeliveryOrderPatch(notes="first"), "a")

    with pytest.raises(ConcurrencyConflict):
        await do_engine.update(
            draft.header.id,
            DeliveryOrderPatch(notes="second", expected_version=draft.header.version),
            "b",
        )


@pytest.mark.anyio
async def test_released_order_accepts_header_patches_only(do_engine):
    draft = await do_engine.create(order("so_001", line("sol_001", 30, "wh_002")), "admin")
    await do_engine.release(draft.header.id, "admin")

    patched = await do_engine.update(
        draft.header.id,
        DeliveryOrderPatch(
            notes="call before arrival", carrier_id="exp_003", delivery_date=date(2025, 3, 1)
        ),
        "admin",
    )
    assert patched.header.notes == "call before arrival"
    assert patched.header.carrier_name == "SAP"
    assert patched.header.delivery_date == date(2025, 3, 1)
    assert patched.header.code == draft.header.code

    with pytest.raises(InvalidTransition):
        await do_engine.update(
            draft.header.id,
            DeliveryOrderPatch(lines=[DeliveryOrderLinePatch(line_no=1, qty_to_deliver=Decimal("1"))]),
            "admin",
        )
    with pytest.raises(ValidationError) as ctx:
        await do_engine.update(draft.header.id, DeliveryOrderPatch(carrier_id="exp_404"), "admin")
    assert ctx.value.codes == {IssueCode.UNKNOWN_CARRIER}


@pytest.mark.anyio
async def test_delete_draft(do_engine, seeded):
    draft = await do_engine.create(order("so_002", line("sol_004", 5)), "admin")

    await do_engine.delete(draft.header.id, "admin")

    with pytest.raises(NotFound):
        await do_engine.delete(draft.header.id, "admin")
    listing, total = await _list_all(seeded)
    assert total == 0


@pytest.mark.anyio
async def test_delete_policy_and_released_orders(seeded, lock_registry):
    strict = DeliveryOrderEngine(seeded, lock_registry, allow_delete_draft_with_lines=False)
    draft = await strict.create(order("so_002", line("sol_004", 5)), "admin")

    with pytest.raises(InvalidTransition):
        await strict.delete(draft.header.id, "admin")

    await strict.release(draft.header.id, "admin")
    lenient = DeliveryOrderEngine(seeded, lock_registry)
    with pytest.raises(InvalidTransition):
        await lenient.delete(draft.header.id, "admin")


# --------------------------------------------------------------------------
# Concurrency / idempotency
# --------------------------------------------------------------------------


@pytest.mark.anyio
async def test_concurrent_creates_get_unique_sequential_codes(do_engine):
    codes = []

    async def _create():
        created = await do_engine.create(order("so_002", line("sol_003", 1)), "admin")
        codes.append(created.header.code)

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(_create)

    assert sorted(codes) == [f"DO/2025/01/{n:04d}" for n in range(1, 6)]


@pytest.mark.anyio
async def test_create_with_idempotency_key_replays(do_engine, seeded):
    payload = order("so_002", line("sol_004", 5))
    first = await do_engine.create(payload, "admin", idempotency_key="abc-1")
    again = await do_engine.create(payload, "admin", idempotency_key="abc-1")
    other = await do_engine.create(payload, "admin", idempotency_key="abc-2")

    assert again.header.id == first.header.id
    assert other.header.id != first.header.id
    listing, total = await _list_all(seeded)
    assert total == 2


@pytest.mark.anyio
async def test_failed_create_does_not_burn_the_idempotency_key(do_engine):
    with pytest.raises(ValidationError):
        await do_engine.create(order("so_002", line("sol_004", 90)), "admin", idempotency_key="k")

    created = await do_engine.create(
        order("so_002", line("sol_004", 9)), "admin", idempotency_key="k"
    )
    assert created.header.code == "DO/2025/01/0001"


async def _list_all(session_factory):
    async with UnitOfWork(session_factory) as uow:
        items, total = await uow.delivery_orders.list(DeliveryOrderFilter())
        return [item.code for item in items], total


async def _get(session_factory, do_id):
    async with UnitOfWork(session_factory) as uow:
        return await uow.delivery_orders.get(do_id)
