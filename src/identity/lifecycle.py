import logging

from fastapi import FastAPI
import httpx
from jwt import PyJWKClient

from src.main.config import IdentityProviderConfig

logger = logging.getLogger("identity")


def create_http_client(idp_config: IdentityProviderConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(idp_config.IDP_HTTP_TIMEOUT),
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
    )


def create_jwks_client(idp_config: IdentityProviderConfig) -> PyJWKClient:
    return PyJWKClient(
        idp_config.jwks_url,
        cache_keys=True,
        lifespan=3600,
        timeout=int(idp_config.IDP_HTTP_TIMEOUT),
    )


async def on_identity_startup(app: FastAPI, idp_config: IdentityProviderConfig) -> None:
    """
    Attach the provider HTTP client and the JWKS client to app.state for DI access.
    """
    app.state.idp_http_client = create_http_client(idp_config)
    app.state.jwks_client = create_jwks_client(idp_config)
    logger.info("Identity provider clients created successfully.")


async def on_identity_shutdown(app: FastAPI) -> None:
    http_client = getattr(app.state, "idp_http_client", None)
    if http_client:
        logger.info("Closing identity provider HTTP client...")
        await http_client.aclose()
        logger.info("Identity provider HTTP client closed.")
