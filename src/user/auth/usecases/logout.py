from fastapi import Depends

from loggers import get_logger
from src.core.errors.exceptions import InstanceNotFoundException
from src.core.utils.security import mask_identifier
from src.identity.client import IdentityProviderClient
from src.identity.dependencies import get_identity_provider_client
from src.session.dependencies import get_refresh_token_ledger, get_session_store
from src.session.ledger import RefreshTokenLedger
from src.session.schemas import CleanupOutcome
from src.session.store import SessionStore

logger = get_logger(__name__)


class LogoutUseCase:
    """
    Revokes the session's refresh tokens, drops the cached session and signs
    out at the provider. Every step is attempted; failures are logged and
    reported in the returned outcome so the caller can still clear the cookie.
    """

    def __init__(
        self,
        session_store: SessionStore,
        ledger: RefreshTokenLedger,
        identity_client: IdentityProviderClient,
    ) -> None:
        self.session_store = session_store
        self.ledger = ledger
        self.identity_client = identity_client

    async def execute(self, session_id: str) -> CleanupOutcome:
        masked = mask_identifier(session_id)

        tokens_revoked = False
        try:
            lookup = await self.session_store.fetch(session_id)
            await self.ledger.revoke_all(session_id, lookup.session.user_id)
            tokens_revoked = True
        except InstanceNotFoundException:
            logger.info("[Logout] No session found, skipping revocation session=%s", masked)
        except Exception as exc:
            logger.warning(
                "[Logout] Revocation failed session=%s reason=%s", masked, type(exc).__name__
            )

        session_deleted = False
        try:
            session_deleted = await self.session_store.delete(session_id)
        except Exception as exc:
            logger.warning(
                "[Logout] Session delete failed session=%s reason=%s",
                masked,
                type(exc).__name__,
            )

        await self.identity_client.logout()
        outcome = CleanupOutcome(
            tokens_revoked=tokens_revoked, session_deleted=session_deleted
        )
        logger.info("[Logout] Completed session=%s complete=%s", masked, outcome.complete)
        return outcome


def get_logout_use_case(
    session_store: SessionStore = Depends(get_session_store),
    ledger: RefreshTokenLedger = Depends(get_refresh_token_ledger),
    identity_client: IdentityProviderClient = Depends(get_identity_provider_client),
) -> LogoutUseCase:
    return LogoutUseCase(
        session_store=session_store, ledger=ledger, identity_client=identity_client
    )
