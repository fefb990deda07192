from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loggers import get_logger
from src.core.crypto.cipher import decrypt_token, encrypt_token
from src.core.database.transactions import safe_begin
from src.core.errors.exceptions import InfrastructureException, InstanceNotFoundException
from src.core.utils.datetime_utils import get_utc_now
from src.core.utils.security import mask_identifier
from src.session.repositories import RefreshTokenRepository
from src.user.repositories import UserRepository

logger = get_logger(__name__)


class RefreshTokenLedger:
    """
    Durable, append-mostly record of refresh tokens per (user, session).

    Tokens are stored only as AES-GCM blobs. ``user_id`` arguments are the
    provider subject (external id); the ledger resolves it to the user row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption_key: bytes,
        token_lifetime_seconds: int,
        user_repository: UserRepository | None = None,
        token_repository: RefreshTokenRepository | None = None,
        clock: Callable[[], datetime] = get_utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.encryption_key = encryption_key
        self.token_lifetime = timedelta(seconds=token_lifetime_seconds)
        self.user_repository = user_repository or UserRepository()
        self.token_repository = token_repository or RefreshTokenRepository()
        self.clock = clock

    async def save(
        self,
        session_id: str,
        new_token: str,
        user_id: str,
        old_token: str | None = None,
    ) -> None:
        """
        Insert an encrypted record for ``new_token``. With ``old_token`` this is
        a rotation: the pair's active records are revoked first, in the same
        transaction as the insert.
        """
        encrypted = encrypt_token(new_token, self.encryption_key)

        async with self._unit(session_id) as session:
            async with safe_begin(session):
                user_pk = await self._resolve_user(session, user_id)
                revoked = 0
                if old_token is not None:
                    revoked = await self.token_repository.revoke_active(
                        session, user_id=user_pk, session_id=session_id
                    )
                await self.token_repository.create(
                    session,
                    {
                        "user_id": user_pk,
                        "session_id": session_id,
                        "encrypted_token": encrypted,
                        "expires_at": self.clock() + self.token_lifetime,
                    },
                )

        logger.info(
            "[RefreshTokenLedger] Token saved session=%s rotated=%s revoked=%s",
            mask_identifier(session_id),
            old_token is not None,
            revoked,
        )

    async def fetch_valid(self, session_id: str, user_id: str) -> str:
        """Decrypted newest valid token for the pair. Decryption failures propagate."""
        async with self._unit(session_id) as session:
            user_pk = await self._resolve_user(session, user_id)
            record = await self.token_repository.get_valid(
                session, user_id=user_pk, session_id=session_id, now=self.clock()
            )

        if record is None:
            raise InstanceNotFoundException(
                "No valid refresh token for session",
                additional_info={"session": mask_identifier(session_id)},
            )
        return decrypt_token(record.encrypted_token, self.encryption_key)

    async def revoke_all(self, session_id: str, user_id: str) -> int:
        """Revoke every active record for the pair; a repeated call revokes nothing."""
        async with self._unit(session_id) as session:
            async with safe_begin(session):
                user_pk = await self._resolve_user(session, user_id)
                revoked = await self.token_repository.revoke_active(
                    session, user_id=user_pk, session_id=session_id
                )

        logger.info(
            "[RefreshTokenLedger] Revoked %s token(s) session=%s",
            revoked,
            mask_identifier(session_id),
        )
        return revoked

    async def _resolve_user(self, session: AsyncSession, user_id: str) -> UUID:
        user = await self.user_repository.get_by_external_id(session, user_id)
        if user is None:
            raise InstanceNotFoundException("User not found")
        return user.id

    @asynccontextmanager
    async def _unit(self, session_id: str) -> AsyncGenerator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "[RefreshTokenLedger] Database error session=%s error=%s",
                mask_identifier(session_id),
                type(exc).__name__,
            )
            raise InfrastructureException(
                "Refresh token ledger unavailable",
                additional_info={
                    "session": mask_identifier(session_id),
                    "error": type(exc).__name__,
                },
            ) from exc
