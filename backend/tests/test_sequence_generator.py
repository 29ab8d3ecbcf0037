import pytest

from erp_logistics.core.errors import SequenceExhausted
from erp_logistics.repositories.sequences import SequenceGenerator, format_code, month_key
from erp_logistics.services.unit_of_work import UnitOfWork


def test_format_code_pads_month_and_sequence():
    assert format_code(2025, 1, 7) == "DO/2025/01/0007"
    assert month_key(2025, 11) == "2025/11"


@pytest.mark.anyio
async def test_sequence_starts_at_one_and_is_scoped_per_month(session_factory):
    async with UnitOfWork(session_factory) as uow:
        assert await uow.sequences.next("2025/01") == 1
        assert await uow.sequences.next("2025/01") == 2
        assert await uow.sequences.next("2025/02") == 1

    async with UnitOfWork(session_factory) as uow:
        assert await uow.sequences.next("2025/01") == 3


@pytest.mark.anyio
async def test_peek_does_not_reserve(session_factory):
    async with UnitOfWork(session_factory) as uow:
        assert await uow.sequences.peek("2025/03") == 1
        assert await uow.sequences.peek("2025/03") == 1
        assert await uow.sequences.next("2025/03") == 1
        assert await uow.sequences.peek("2025/03") == 2


@pytest.mark.anyio
async def test_rolled_back_reservation_is_handed_out_again(session_factory):
    with pytest.raises(RuntimeError):
        async with UnitOfWork(session_factory) as uow:
            assert await uow.sequences.next("2025/04") == 1
            raise RuntimeError("create failed")

    async with UnitOfWork(session_factory) as uow:
        assert await uow.sequences.next("2025/04") == 1


@pytest.mark.anyio
async def test_exhausted_sequence_raises_without_consuming(session_factory):
    async with UnitOfWork(session_factory) as uow:
        generator = SequenceGenerator(uow.session, limit=2)
        assert await generator.next("2025/05") == 1
        assert await generator.next("2025/05") == 2

    with pytest.raises(SequenceExhausted) as ctx:
        async with UnitOfWork(session_factory) as uow:
            await SequenceGenerator(uow.session, limit=2).next("2025/05")
    assert ctx.value.seq_name == "DO/2025/05"

    async with UnitOfWork(session_factory) as uow:
        assert await uow.sequences.peek("2025/05") == 3
