from typing import Any, Generic, TypeVar, cast

from sqlalchemy import CursorResult, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loggers import get_logger
from src.core.database.base import Base as SQLAlchemyBase

logger = get_logger(__name__)

T = TypeVar("T", bound=SQLAlchemyBase)


class BaseRepository(Generic[T]):
    """
    Row access shared by the user and refresh token repositories.

    Repositories never open or commit transactions: callers wrap them in
    ``safe_begin`` so that multi-step writes (revoke + insert on rotation)
    land atomically.
    """

    model: type[T]

    def __init__(self) -> None:
        if not hasattr(self, "model"):
            raise NotImplementedError("Subclasses must define class variable 'model'")

    async def create(self, session: AsyncSession, data: dict[str, Any]) -> T:
        instance = self.model(**data)
        session.add(instance)
        # Flush so server defaults (ids, timestamps) are populated for the caller
        await session.flush()
        logger.debug("%s staged", self.model.__name__)
        return instance

    async def get_single(self, session: AsyncSession, **filters: Any) -> T | None:
        query = select(self.model).filter_by(**filters).limit(1)
        result = await session.execute(query)
        return result.scalars().first()

    async def update(
        self, session: AsyncSession, data: dict[str, Any], **filters: Any
    ) -> T | None:
        """Apply ``data`` to the first row matching ``filters``; None when nothing matches."""
        self._ensure_filters_present(filters)
        instance = await self.get_single(session, **filters)
        if instance is None:
            logger.debug("%s update skipped, no match", self.model.__name__)
            return None
        for key, value in data.items():
            setattr(instance, key, value)
        return instance

    async def bulk_update(
        self, session: AsyncSession, data: dict[str, Any], **filters: Any
    ) -> int:
        """One UPDATE over every matching row. Returns the affected row count."""
        self._ensure_filters_present(filters)
        statement = (
            update(self.model)
            .filter_by(**filters)
            .values(**data)
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await session.execute(statement))
        affected = int(result.rowcount or 0)
        logger.debug("%s bulk update affected %s row(s)", self.model.__name__, affected)
        return affected

    @staticmethod
    def _ensure_filters_present(filters: dict[str, Any]) -> None:
        if not filters:
            raise ValueError("Refusing an unfiltered update")
