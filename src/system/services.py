from collections.abc import Awaitable

from redis.asyncio import Redis
from redis.exceptions import RedisError
import sentry_sdk
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loggers import get_logger
from src.core.errors.exceptions import InfrastructureException
from src.system.schemas import HealthCheckResponse

logger = get_logger(__name__)


class HealthService:
    """Checks the two stores a session request depends on."""

    def __init__(self, redis_client: Redis) -> None:
        self.redis_client = redis_client

    async def get_status(self, session: AsyncSession) -> HealthCheckResponse:
        redis_is_ok = await self._check_redis()
        postgres_is_ok = await self._check_postgres(session)
        if not redis_is_ok or not postgres_is_ok:
            raise InfrastructureException(
                "System health check failed",
                additional_info={"redis": redis_is_ok, "postgres": postgres_is_ok},
            )
        return HealthCheckResponse(status="ok", redis=True, postgres=True)

    async def _check_redis(self) -> bool:
        try:
            ping_result = self.redis_client.ping()
            if isinstance(ping_result, Awaitable):
                return bool(await ping_result)
            return bool(ping_result)
        except RedisError as exc:
            logger.error("[Health] Redis check failed: %s", type(exc).__name__)
            sentry_sdk.capture_exception(exc)
            return False

    async def _check_postgres(self, session: AsyncSession) -> bool:
        try:
            await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.error("[Health] Postgres check failed: %s", type(exc).__name__)
            sentry_sdk.capture_exception(exc)
            return False
