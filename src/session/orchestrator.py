from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import cast

from redis.asyncio import Redis
from redis.exceptions import RedisError

from loggers import get_logger
from src.core.errors.exceptions import UpstreamException
from src.core.utils.datetime_utils import get_utc_timestamp
from src.core.utils.security import generate_nonce, mask_identifier
from src.identity.client import IdentityProviderClient
from src.identity.verifier import TokenVerifier
from src.main.config import SessionConfig
from src.session.ledger import RefreshTokenLedger
from src.session.redis_scripts import RELEASE_LOCK_SCRIPT
from src.session.schemas import RefreshOutcome, SessionData
from src.session.store import SessionStore

logger = get_logger(__name__)


def rotation_lock_key(session_id: str) -> str:
    return f"session:{session_id}:rotating"


class TokenRefreshOrchestrator:
    """
    Rotates the access/refresh pair of a session once the access token is
    inside the refresh window.

    Refresh is best-effort: any failure degrades to the access token the
    session already holds, so the current request proceeds and the next one
    retries. Concurrent requests for one session are serialized by a short
    ``SET NX`` lock; a request that loses the race serves the current token.
    """

    def __init__(
        self,
        session_store: SessionStore,
        ledger: RefreshTokenLedger,
        identity_client: IdentityProviderClient,
        verifier: TokenVerifier,
        redis_client: Redis,
        session_config: SessionConfig,
        audience: str,
        clock: Callable[[], float] = get_utc_timestamp,
    ) -> None:
        self.session_store = session_store
        self.ledger = ledger
        self.identity_client = identity_client
        self.verifier = verifier
        self.redis_client = redis_client
        self.session_config = session_config
        self.audience = audience
        self.clock = clock

    def needs_refresh(self, session: SessionData) -> bool:
        time_left_ms = session.access_exp * 1000 - self.clock() * 1000
        return time_left_ms <= self.session_config.REFRESH_TOKEN_WINDOW_SECONDS * 1000

    async def maybe_refresh(self, session_id: str, session: SessionData) -> RefreshOutcome:
        fallback = RefreshOutcome(refreshed=False, access_token=session.access_token)
        if not self.needs_refresh(session):
            return fallback

        masked = mask_identifier(session_id)
        try:
            async with self._rotation_lock(session_id) as acquired:
                if not acquired:
                    logger.info(
                        "[TokenRefresh] Rotation already in progress session=%s", masked
                    )
                    return fallback
                access_token = await self._rotate(session_id, session)
        except Exception as exc:
            logger.warning(
                "[TokenRefresh] Rotation failed, serving current token session=%s reason=%s",
                masked,
                type(exc).__name__,
            )
            return fallback

        logger.info("[TokenRefresh] Session rotated session=%s", masked)
        return RefreshOutcome(refreshed=True, access_token=access_token)

    async def _rotate(self, session_id: str, session: SessionData) -> str:
        old_refresh_token = await self.ledger.fetch_valid(session_id, session.user_id)

        tokens = await self.identity_client.exchange_refresh_token(old_refresh_token)
        if not tokens.access_token or not tokens.refresh_token:
            raise UpstreamException(
                "Identity provider omitted tokens on refresh",
                additional_info={
                    "has_access_token": bool(tokens.access_token),
                    "has_refresh_token": bool(tokens.refresh_token),
                },
            )

        claims = await self.verifier.verify(tokens.access_token, audience=self.audience)

        await self.session_store.update(
            session_id,
            SessionData(
                access_token=tokens.access_token,
                user_id=session.user_id,
                access_exp=claims.exp,
            ),
        )
        await self.ledger.save(
            session_id,
            tokens.refresh_token,
            session.user_id,
            old_token=old_refresh_token,
        )
        return tokens.access_token

    @asynccontextmanager
    async def _rotation_lock(self, session_id: str) -> AsyncGenerator[bool]:
        key = rotation_lock_key(session_id)
        owner = generate_nonce()
        acquired = bool(
            await self.redis_client.set(
                key, owner, nx=True, ex=self.session_config.ROTATION_LOCK_TTL
            )
        )
        try:
            yield acquired
        finally:
            if acquired:
                await self._release_lock(key, owner)

    async def _release_lock(self, key: str, owner: str) -> None:
        try:
            await cast(
                Awaitable[int],
                self.redis_client.eval(RELEASE_LOCK_SCRIPT, 1, key, owner),
            )
        except RedisError as exc:
            # The lock expires on its own after ROTATION_LOCK_TTL
            logger.warning("[TokenRefresh] Lock release failed: %s", type(exc).__name__)
