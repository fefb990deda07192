from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loggers import get_logger
from src.core.database.session import get_session
from src.core.database.transactions import safe_begin
from src.core.utils.security import mask_email, mask_identifier
from src.identity.claims import AccessTokenClaims
from src.identity.client import IdentityProviderClient
from src.identity.dependencies import get_identity_provider_client, get_token_verifier
from src.identity.verifier import TokenVerifier
from src.main.config import config
from src.session.dependencies import get_refresh_token_ledger, get_session_store
from src.session.ledger import RefreshTokenLedger
from src.session.store import SessionStore
from src.user.models import User
from src.user.repositories import UserRepository, UserSettingRepository

logger = get_logger(__name__)


class LoginUseCase:
    """Completes the authorization code flow and opens a session."""

    def __init__(
        self,
        identity_client: IdentityProviderClient,
        verifier: TokenVerifier,
        session_store: SessionStore,
        ledger: RefreshTokenLedger,
        session: AsyncSession,
        user_repository: UserRepository | None = None,
        setting_repository: UserSettingRepository | None = None,
    ) -> None:
        self.identity_client = identity_client
        self.verifier = verifier
        self.session_store = session_store
        self.ledger = ledger
        self.session = session
        self.user_repository = user_repository or UserRepository()
        self.setting_repository = setting_repository or UserSettingRepository()

    async def execute(self, code: str) -> str:
        tokens = await self.identity_client.exchange_authorization_code(code)
        id_claims = await self.verifier.verify(
            tokens.id_token, audience=config.idp.IDP_CLIENT_ID
        )
        await self.verifier.verify(tokens.access_token, audience=config.idp.IDP_AUDIENCE)

        await self._ensure_user(id_claims)

        session_id = await self.session_store.create(id_claims.sub, tokens.access_token)
        try:
            await self.ledger.save(session_id, tokens.refresh_token, id_claims.sub)
        except Exception:
            # A session without a ledger record could never rotate
            await self.session_store.delete(session_id)
            raise

        logger.info("[Login] Session opened session=%s", mask_identifier(session_id))
        return session_id

    async def _ensure_user(self, id_claims: AccessTokenClaims) -> User:
        async with safe_begin(self.session):
            user = await self.user_repository.get_by_external_id(
                self.session, id_claims.sub
            )
            if user is not None:
                return user

            email = id_claims.custom_claim("email")
            user = await self.user_repository.create(
                self.session,
                {
                    "external_id": id_claims.sub,
                    "email": email,
                    "plan_id": config.plans.DEFAULT_PLAN_ID,
                },
            )
            await self.setting_repository.upsert(
                self.session, user.id, config.plans.DEFAULT_USER_SETTINGS
            )
        logger.info(
            "[Login] First login, user created email=%s plan=%s settings=%s",
            mask_email(email),
            config.plans.DEFAULT_PLAN_ID,
            len(config.plans.DEFAULT_USER_SETTINGS),
        )
        return user


def get_login_use_case(
    identity_client: IdentityProviderClient = Depends(get_identity_provider_client),
    verifier: TokenVerifier = Depends(get_token_verifier),
    session_store: SessionStore = Depends(get_session_store),
    ledger: RefreshTokenLedger = Depends(get_refresh_token_ledger),
    session: AsyncSession = Depends(get_session),
) -> LoginUseCase:
    return LoginUseCase(
        identity_client=identity_client,
        verifier=verifier,
        session_store=session_store,
        ledger=ledger,
        session=session,
    )
