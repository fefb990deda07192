from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.repositories import BaseRepository
from src.session.models import UserRefreshToken


class RefreshTokenRepository(BaseRepository[UserRefreshToken]):

    model = UserRefreshToken

    async def get_valid(
        self,
        session: AsyncSession,
        user_id: UUID,
        session_id: str,
        now: datetime,
    ) -> UserRefreshToken | None:
        """Newest non-revoked, non-expired record for the pair."""
        query = (
            select(UserRefreshToken)
            .where(
                UserRefreshToken.user_id == user_id,
                UserRefreshToken.session_id == session_id,
                UserRefreshToken.revoked.is_(False),
                UserRefreshToken.expires_at > now,
            )
            .order_by(UserRefreshToken.created_at.desc(), UserRefreshToken.id.desc())
            .limit(1)
        )
        result = await session.execute(query)
        return result.scalars().first()

    async def revoke_active(
        self, session: AsyncSession, user_id: UUID, session_id: str
    ) -> int:
        return await self.bulk_update(
            session,
            {"revoked": True},
            user_id=user_id,
            session_id=session_id,
            revoked=False,
        )
