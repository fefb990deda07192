from functools import lru_cache

from fastapi import Depends, Request, Response
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.crypto.cipher import load_encryption_key
from src.core.database.session import get_session_factory
from src.core.errors.exceptions import (
    SessionExpiredException,
    SessionRejectedException,
    UnauthorizedException,
)
from src.core.redis.dependencies import get_redis_client
from src.core.utils.cookies import set_session_cookie
from src.identity.client import IdentityProviderClient
from src.identity.dependencies import get_identity_provider_client, get_token_verifier
from src.identity.verifier import TokenVerifier
from src.main.config import config
from src.session.gate import SessionValidationGate
from src.session.ledger import RefreshTokenLedger
from src.session.orchestrator import TokenRefreshOrchestrator
from src.session.schemas import ExpiredSession, MissingSession, ValidSession
from src.session.store import SessionStore


@lru_cache
def get_encryption_key() -> bytes:
    return load_encryption_key(config.session.REFRESH_TOKEN_ENCRYPTION_KEY)


def get_session_store(redis_client: Redis = Depends(get_redis_client)) -> SessionStore:
    return SessionStore(redis_client=redis_client, session_config=config.session)


def get_refresh_token_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RefreshTokenLedger:
    return RefreshTokenLedger(
        session_factory=session_factory,
        encryption_key=get_encryption_key(),
        token_lifetime_seconds=config.session.REFRESH_TOKEN_EXPIRY,
    )


def get_token_refresh_orchestrator(
    session_store: SessionStore = Depends(get_session_store),
    ledger: RefreshTokenLedger = Depends(get_refresh_token_ledger),
    identity_client: IdentityProviderClient = Depends(get_identity_provider_client),
    verifier: TokenVerifier = Depends(get_token_verifier),
    redis_client: Redis = Depends(get_redis_client),
) -> TokenRefreshOrchestrator:
    return TokenRefreshOrchestrator(
        session_store=session_store,
        ledger=ledger,
        identity_client=identity_client,
        verifier=verifier,
        redis_client=redis_client,
        session_config=config.session,
        audience=config.idp.IDP_AUDIENCE,
    )


def get_session_validation_gate(
    session_store: SessionStore = Depends(get_session_store),
    orchestrator: TokenRefreshOrchestrator = Depends(get_token_refresh_orchestrator),
    ledger: RefreshTokenLedger = Depends(get_refresh_token_ledger),
) -> SessionValidationGate:
    return SessionValidationGate(
        session_store=session_store, orchestrator=orchestrator, ledger=ledger
    )


async def require_session(
    request: Request,
    response: Response,
    gate: SessionValidationGate = Depends(get_session_validation_gate),
) -> ValidSession:
    """
    Resolve the session cookie to a live session.

    The access token is exposed on ``request.state.access_token``; after a
    rotation the cookie is re-issued so its lifetime follows the session.
    """
    session_id = request.cookies.get(config.session.SESSION_COOKIE_NAME)
    if not session_id:
        raise UnauthorizedException("No session")

    result = await gate.validate(session_id)
    match result:
        case ValidSession():
            if result.refreshed:
                set_session_cookie(response, result.session_id)
            request.state.access_token = result.access_token
            request.state.user_id = result.session.user_id
            return result
        case ExpiredSession():
            raise SessionExpiredException(
                "Session expired due to inactivity",
                additional_info={
                    "tokens_revoked": result.cleanup.tokens_revoked,
                    "session_deleted": result.cleanup.session_deleted,
                },
            )
        case MissingSession():
            raise SessionRejectedException("Session not found or expired")
