"""Generic async repository: the primitives shared by every aggregate."""

from __future__ import annotations

from typing import Generic, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from erp_logistics.models.base import Base

T = TypeVar("T", bound=Base)


class SqlAlchemyRepository(Generic[T]):
    def __init__(self, session: AsyncSession, model_cls: Type[T]):
        self.session = session
        self.model_cls = model_cls

    def add(self, entity: T) -> T:
        """Attach the entity to the session."""
        self.session.add(entity)
        return entity

    async def delete(self, entity: T) -> None:
        await self.session.delete(entity)
