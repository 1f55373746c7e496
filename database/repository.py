"""Generic document-style access over SQLAlchemy models."""

import logging
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

OrderBy = Union[str, Sequence[str]]


class Repository(Generic[ModelT]):
    """
    Store operations used by the services: find-one, find-many with sort and
    limit, count, insert, update, delete and grouped counts.

    Filters are equality matches on column names. Sort keys are column names,
    prefixed with ``-`` for descending order.
    """

    def __init__(self, db: AsyncSession, model: Type[ModelT]):
        self.db = db
        self.model = model

    def _where(self, query, filters: Optional[Dict[str, Any]]):
        for name, value in (filters or {}).items():
            column = getattr(self.model, name)
            if isinstance(value, (list, tuple, set)):
                query = query.where(column.in_(list(value)))
            else:
                query = query.where(column == value)
        return query

    def _order(self, query, order_by: Optional[OrderBy]):
        if not order_by:
            return query
        keys = [order_by] if isinstance(order_by, str) else list(order_by)
        for key in keys:
            if key.startswith("-"):
                query = query.order_by(getattr(self.model, key[1:]).desc())
            else:
                query = query.order_by(getattr(self.model, key))
        return query

    async def find_one(self, **filters) -> Optional[ModelT]:
        query = self._where(select(self.model), filters).limit(1)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def find_many(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ModelT]:
        query = self._order(self._where(select(self.model), filters), order_by)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count(self, **filters) -> int:
        query = self._where(select(func.count()).select_from(self.model), filters)
        result = await self.db.execute(query)
        return int(result.scalar() or 0)

    async def insert(self, **values) -> ModelT:
        instance = self.model(**values)
        self.db.add(instance)
        await self.db.flush()
        return instance

    async def update(self, filters: Dict[str, Any], values: Dict[str, Any]) -> int:
        query = self._where(update(self.model), filters).values(**values)
        result = await self.db.execute(query.execution_options(synchronize_session="fetch"))
        return result.rowcount or 0

    async def delete(self, **filters) -> int:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        query = self._where(delete(self.model), filters)
        result = await self.db.execute(query.execution_options(synchronize_session="fetch"))
        return result.rowcount or 0

    async def group_count(self, column: str, **filters) -> Dict[Any, int]:
        """Count rows grouped by ``column``."""
        group_column = getattr(self.model, column)
        query = self._where(
            select(group_column, func.count()).select_from(self.model),
            filters,
        ).group_by(group_column)
        result = await self.db.execute(query)
        return {key: int(total) for key, total in result.all()}

    async def distinct(self, column: str, **filters) -> List[Any]:
        target = getattr(self.model, column)
        query = self._where(select(target).distinct(), filters).order_by(target)
        result = await self.db.execute(query)
        return [row[0] for row in result.all()]
