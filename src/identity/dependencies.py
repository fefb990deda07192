from typing import cast

from fastapi import Depends, Request
import httpx
from jwt import PyJWKClient
from redis.asyncio import Redis

from src.core.redis.dependencies import get_redis_client
from src.identity.client import IdentityProviderClient
from src.identity.machine_token import MachineTokenProvider
from src.identity.verifier import TokenVerifier
from src.main.config import config


async def get_idp_http_client(request: Request) -> httpx.AsyncClient:
    http_client = getattr(request.app.state, "idp_http_client", None)
    if http_client is None:
        raise RuntimeError(
            "Identity provider HTTP client is not initialized. Ensure startup lifecycle ran."
        )
    return cast(httpx.AsyncClient, http_client)


async def get_jwks_client(request: Request) -> PyJWKClient:
    jwks_client = getattr(request.app.state, "jwks_client", None)
    if jwks_client is None:
        raise RuntimeError("JWKS client is not initialized. Ensure startup lifecycle ran.")
    return cast(PyJWKClient, jwks_client)


def get_identity_provider_client(
    http_client: httpx.AsyncClient = Depends(get_idp_http_client),
) -> IdentityProviderClient:
    return IdentityProviderClient(http_client=http_client, idp_config=config.idp)


def get_token_verifier(
    jwks_client: PyJWKClient = Depends(get_jwks_client),
) -> TokenVerifier:
    return TokenVerifier(
        jwks_client=jwks_client,
        issuer=config.idp.issuer,
        algorithms=config.idp.IDP_ALGORITHMS,
    )


def get_machine_token_provider(
    redis_client: Redis = Depends(get_redis_client),
    identity_client: IdentityProviderClient = Depends(get_identity_provider_client),
) -> MachineTokenProvider:
    return MachineTokenProvider(
        redis_client=redis_client,
        identity_client=identity_client,
        cache_key=config.idp.IDP_MANAGEMENT_TOKEN_CACHE_KEY,
    )
