from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.repositories import BaseRepository
from src.user.models import User, UserSetting


class UserRepository(BaseRepository[User]):

    model = User

    async def get_by_external_id(
        self, session: AsyncSession, external_id: str
    ) -> User | None:
        return await self.get_single(session, external_id=external_id)


class UserSettingRepository(BaseRepository[UserSetting]):

    model = UserSetting

    async def get_for_user(self, session: AsyncSession, user_id: UUID) -> list[UserSetting]:
        query = (
            select(UserSetting)
            .where(UserSetting.user_id == user_id)
            .order_by(UserSetting.key)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def upsert(
        self, session: AsyncSession, user_id: UUID, values: dict[str, Any]
    ) -> list[UserSetting]:
        """Overwrite the given keys for the user, inserting the ones that are missing."""
        rows = []
        for key, value in values.items():
            row = await self.update(session, {"value": value}, user_id=user_id, key=key)
            if row is None:
                row = await self.create(
                    session, {"user_id": user_id, "key": key, "value": value}
                )
            rows.append(row)
        return rows
