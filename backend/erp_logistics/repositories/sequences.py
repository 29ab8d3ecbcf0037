"""Month-scoped document numbering backed by the generic sequence table."""

from __future__ import annotations

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from erp_logistics.core.config import settings
from erp_logistics.core.errors import SequenceExhausted
from erp_logistics.models.inv_generic_sequence import InvGenericSequence

CODE_PREFIX = "DO"


def month_key(year: int, month: int) -> str:
    return f"{year:04d}/{month:02d}"


def sequence_name(key: str) -> str:
    return f"{CODE_PREFIX}/{key}"


def format_code(year: int, month: int, seq: int) -> str:
    """``DO/2025/01/0001``"""
    return f"{CODE_PREFIX}/{year:04d}/{month:02d}/{seq:04d}"


class SequenceGenerator:
    """Hands out strictly increasing numbers per month key (``"YYYY/MM"``).

    The row stores the *next* value to hand out. Reservation happens inside the
    caller's transaction, so a rolled back create leaves no gap behind; a gap
    only appears when a committed draft is deleted, and numbers are never
    reused either way.
    """

    max_attempts = 5

    def __init__(self, session: AsyncSession, limit: int | None = None):
        self.session = session
        self.limit = limit if limit is not None else settings.DO_SEQUENCE_LIMIT

    async def peek(self, key: str) -> int:
        """Return the next value without reserving it."""

        current = await self.session.scalar(
            select(InvGenericSequence.seq_no).where(
                InvGenericSequence.seq_name == sequence_name(key)
            )
        )
        return int(current or 1)

    async def next(self, key: str) -> int:
        """Reserve and return the next value for ``key``."""

        seq_name = sequence_name(key)
        attempts = 0
        while True:
            attempts += 1
            row = await self.session.scalar(
                select(InvGenericSequence)
                .where(InvGenericSequence.seq_name == seq_name)
                .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
            )
            if row:
                current = int(row.seq_no or 1)
                if current > self.limit:
                    logger.bind(seq_name=seq_name, limit=self.limit).error("sequence_exhausted")
                    raise SequenceExhausted(seq_name, self.limit)
                row.seq_no = current + 1
                await self.session.flush()
                return current
            try:
                async with self.session.begin_nested():
                    await self.session.execute(
                        insert(InvGenericSequence).values(seq_name=seq_name, seq_no=1)
                    )
            except IntegrityError:
                # Another transaction created the row first; read it again.
                if attempts >= self.max_attempts:
                    logger.bind(seq_name=seq_name).warning("sequence_reservation_exhausted")
                    raise
                continue
