from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loggers import get_logger
from src.core.database.session import get_session_factory
from src.core.errors.exceptions import UnauthorizedException
from src.identity.claims import AccessTokenClaims
from src.identity.dependencies import get_token_verifier
from src.identity.verifier import TokenVerifier
from src.internal.services import InternalUserService
from src.main.config import config
from src.session.dependencies import get_session_store
from src.session.store import SessionStore
from src.user.dependencies import get_plan_role_synchronizer
from src.user.synchronizer import PlanRoleSynchronizer

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "


async def require_machine_credential(
    request: Request,
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> AccessTokenClaims:
    """
    Verify the machine-to-machine bearer credential of an internal call.
    Same checks as user tokens, against the internal audience.
    """
    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        logger.warning("[InternalRPC] Missing or malformed Authorization header")
        raise UnauthorizedException("Missing or invalid token")

    token = authorization[len(BEARER_PREFIX) :].strip()
    if not token:
        raise UnauthorizedException("Missing or invalid token")

    claims = await verifier.verify(token, audience=config.internal.INTERNAL_RPC_AUDIENCE)
    logger.debug("[InternalRPC] Machine credential accepted azp=%s", claims.azp)
    return claims


def get_internal_user_service(
    session_store: SessionStore = Depends(get_session_store),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    synchronizer: PlanRoleSynchronizer = Depends(get_plan_role_synchronizer),
) -> InternalUserService:
    return InternalUserService(
        session_store=session_store,
        session_factory=session_factory,
        synchronizer=synchronizer,
        role_claim=config.idp.role_claim,
    )
