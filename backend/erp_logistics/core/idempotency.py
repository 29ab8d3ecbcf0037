"""Helpers for enforcing request idempotency on delivery order creation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Literal

from fastapi import HTTPException, Request, status
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_logistics.core.config import settings
from erp_logistics.models.inv_idempotency_key import InvIdempotencyKey

MAX_KEY_LENGTH = 128
ResourceName = Literal["delivery_order"]


class IdempotencyClaimState(str, Enum):
    NEW = "new"
    REPLAY = "replay"


@dataclass(slots=True)
class IdempotencyClaim:
    """Represents the result of attempting to claim an idempotency key."""

    state: IdempotencyClaimState
    record: InvIdempotencyKey | None = None

    @property
    def resource_id(self) -> str | None:
        return self.record.resource_id if self.record else None


def _now() -> datetime:
    return datetime.now()


def _ttl() -> timedelta:
    return timedelta(minutes=settings.IDEMPOTENCY_TTL_MINUTES)


def optional_idempotency_key(request: Request) -> str | None:
    """Extract and validate the optional Idempotency-Key header."""

    raw = request.headers.get("Idempotency-Key")
    if raw is None:
        return None
    key = raw.strip()
    if not key:
        return None
    if len(key) > MAX_KEY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key must be 128 characters or fewer.",
        )
    return key


async def claim_idempotency_key(
    session: AsyncSession,
    *,
    idempotency_key: str,
    resource: ResourceName,
) -> IdempotencyClaim:
    """Register the key for this resource inside the caller's transaction.

    The first caller inserts the row (state=NEW). A later caller whose key was
    completed within the TTL sees REPLAY with the stored resource id. Concurrent
    callers with the same key are serialised by the engine's keyed lock, and a
    rolled back create takes its claim with it.
    """

    now = _now()
    try:
        async with session.begin_nested():
            await session.execute(
                insert(InvIdempotencyKey).values(
                    idempotency_key=idempotency_key,
                    resource=resource,
                    status="P",
                    last_seen_at=now,
                    expires_at=now + _ttl(),
                )
            )
        return IdempotencyClaim(state=IdempotencyClaimState.NEW)
    except IntegrityError:
        record = await session.scalar(
            select(InvIdempotencyKey)
            .where(
                InvIdempotencyKey.idempotency_key == idempotency_key,
                InvIdempotencyKey.resource == resource,
            )
            .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        )
        if not record:
            raise
        expired = record.expires_at is None or record.expires_at <= now
        if record.status == "C" and record.resource_id and not expired:
            record.last_seen_at = now
            await session.flush()
            return IdempotencyClaim(IdempotencyClaimState.REPLAY, record)
        record.status = "P"
        record.resource_id = None
        record.last_seen_at = now
        record.expires_at = now + _ttl()
        await session.flush()
        return IdempotencyClaim(IdempotencyClaimState.NEW, record)


async def complete_idempotency_key(
    session: AsyncSession,
    *,
    idempotency_key: str,
    resource: ResourceName,
    resource_id: str,
) -> None:
    """Mark the request as completed so subsequent replays can short-circuit."""

    now = _now()
    await session.execute(
        update(InvIdempotencyKey)
        .where(
            InvIdempotencyKey.idempotency_key == idempotency_key,
            InvIdempotencyKey.resource == resource,
        )
        .values(
            status="C",
            resource_id=resource_id,
            last_seen_at=now,
            expires_at=now + _ttl(),
        )
    )
