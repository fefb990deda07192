from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from loggers import get_logger
from src.core.errors.exceptions import InfrastructureException, InstanceNotFoundException
from src.core.utils.datetime_utils import get_utc_timestamp
from src.core.utils.security import generate_session_id, mask_identifier
from src.identity.claims import decode_unverified
from src.main.config import SessionConfig
from src.session.schemas import SessionData, SessionLookup

logger = get_logger(__name__)

MARKER_MISSING = -2
MARKER_NO_EXPIRY = -1


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def liveness_key(session_id: str) -> str:
    return f"session:{session_id}:active"


@asynccontextmanager
async def _store_errors(operation: str, session_id: str) -> AsyncGenerator[None]:
    try:
        yield
    except RedisError as exc:
        logger.error(
            "[SessionStore] %s failed session=%s error=%s",
            operation,
            mask_identifier(session_id),
            type(exc).__name__,
        )
        raise InfrastructureException(
            "Session store unavailable",
            additional_info={
                "operation": operation,
                "session": mask_identifier(session_id),
                "error": type(exc).__name__,
            },
        ) from exc


class SessionStore:
    """
    Session records plus a liveness marker per session.

    ``session:<id>`` holds the payload and lives no longer than the access
    token inside it. ``session:<id>:active`` carries no data; its TTL is the
    sliding inactivity window. A record without a marker is logically expired.
    """

    def __init__(
        self,
        redis_client: Redis,
        session_config: SessionConfig,
        clock: Callable[[], float] = get_utc_timestamp,
    ) -> None:
        self.redis_client = redis_client
        self.session_config = session_config
        self.clock = clock

    def session_ttl(self, access_exp: int) -> int:
        remaining = int(access_exp - self.clock())
        return max(1, min(self.session_config.SESSION_TTL, remaining))

    async def create(
        self, user_id: str, access_token: str, session_id: str | None = None
    ) -> str:
        claims = decode_unverified(access_token)
        session_id = session_id or generate_session_id()
        data = SessionData(
            access_token=access_token, user_id=user_id, access_exp=claims.exp
        )

        async with _store_errors("create", session_id):
            await self.redis_client.set(
                session_key(session_id), data.to_json(), ex=self.session_ttl(claims.exp)
            )
            await self.redis_client.set(
                liveness_key(session_id),
                "1",
                ex=self.session_config.INACTIVITY_TIMEOUT,
            )

        logger.info("[SessionStore] Session created session=%s", mask_identifier(session_id))
        return session_id

    async def fetch(self, session_id: str) -> SessionLookup:
        async with _store_errors("fetch", session_id):
            raw = await self.redis_client.get(session_key(session_id))
            if raw is None:
                raise InstanceNotFoundException(
                    "Session not found",
                    additional_info={"session": mask_identifier(session_id)},
                )
            session = self._parse(session_id, raw)

            marker_ttl_ms = await self.redis_client.pttl(liveness_key(session_id))
            if marker_ttl_ms == MARKER_MISSING:
                return SessionLookup(session=session, active=False)

            threshold_ms = self.session_config.INACTIVITY_REFRESH_THRESHOLD * 1000
            if marker_ttl_ms == MARKER_NO_EXPIRY or marker_ttl_ms < threshold_ms:
                await self.redis_client.expire(
                    liveness_key(session_id), self.session_config.INACTIVITY_TIMEOUT
                )
                logger.debug(
                    "[SessionStore] Liveness extended session=%s",
                    mask_identifier(session_id),
                )

        return SessionLookup(session=session, active=True)

    async def update(self, session_id: str, session: SessionData) -> None:
        """
        Replace the payload of an existing record; the TTL is recomputed from
        the new access token. A record deleted meanwhile (logout) is not recreated.
        """
        async with _store_errors("update", session_id):
            written = await self.redis_client.set(
                session_key(session_id),
                session.to_json(),
                ex=self.session_ttl(session.access_exp),
                xx=True,
            )
        if not written:
            raise InstanceNotFoundException(
                "Session not found",
                additional_info={"session": mask_identifier(session_id)},
            )

    async def delete(self, session_id: str) -> bool:
        async with _store_errors("delete", session_id):
            removed = await self.redis_client.delete(
                session_key(session_id), liveness_key(session_id)
            )
        return bool(removed)

    @staticmethod
    def _parse(session_id: str, raw: str | bytes) -> SessionData:
        try:
            return SessionData.model_validate_json(raw)
        except ValidationError:
            raise InfrastructureException(
                "Session record is unreadable",
                additional_info={"session": mask_identifier(session_id)},
            )
