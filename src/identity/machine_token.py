from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from loggers import get_logger
from src.identity.client import IdentityProviderClient
from src.identity.schemas import MachineToken

logger = get_logger(__name__)


class MachineTokenProvider:
    """
    Serves the client-credentials token used for role management.

    The token lives in one global cache key with the provider's ``expires_in``
    as TTL. A cache miss, an unreadable entry or a cache outage falls back to a
    fresh client-credentials exchange.
    """

    def __init__(
        self,
        redis_client: Redis,
        identity_client: IdentityProviderClient,
        cache_key: str,
    ) -> None:
        self.redis_client = redis_client
        self.identity_client = identity_client
        self.cache_key = cache_key

    async def get_token(self) -> str:
        cached = await self._read_cache()
        if cached is not None:
            return cached.access_token

        token = await self.identity_client.exchange_client_credentials()
        await self._write_cache(token)
        return token.access_token

    async def invalidate(self) -> None:
        try:
            await self.redis_client.delete(self.cache_key)
        except RedisError as exc:
            logger.warning("[MachineToken] Cache invalidation failed: %s", type(exc).__name__)

    async def _read_cache(self) -> MachineToken | None:
        try:
            raw = await self.redis_client.get(self.cache_key)
        except RedisError as exc:
            logger.warning("[MachineToken] Cache read failed: %s", type(exc).__name__)
            return None
        if not raw:
            logger.debug("[MachineToken] Cache miss")
            return None
        try:
            return MachineToken.model_validate_json(raw)
        except ValidationError:
            logger.warning("[MachineToken] Discarding unreadable cache entry")
            return None

    async def _write_cache(self, token: MachineToken) -> None:
        if token.expires_in <= 0:
            return
        try:
            await self.redis_client.set(
                self.cache_key, token.model_dump_json(), ex=token.expires_in
            )
        except RedisError as exc:
            logger.warning("[MachineToken] Cache write failed: %s", type(exc).__name__)
