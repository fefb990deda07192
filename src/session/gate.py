from loggers import get_logger
from src.core.errors.exceptions import InstanceNotFoundException
from src.core.utils.security import mask_identifier
from src.session.ledger import RefreshTokenLedger
from src.session.orchestrator import TokenRefreshOrchestrator
from src.session.schemas import (
    CleanupOutcome,
    ExpiredSession,
    MissingSession,
    SessionData,
    SessionValidation,
    ValidSession,
)
from src.session.store import SessionStore

logger = get_logger(__name__)


class SessionValidationGate:
    """
    Single entry point for request handlers that need a live access token.

    Returns one of ValidSession, ExpiredSession or MissingSession. Infrastructure
    failures while reading the session propagate; cleanup failures for an
    expired session are recorded in its CleanupOutcome and never raised.
    """

    def __init__(
        self,
        session_store: SessionStore,
        orchestrator: TokenRefreshOrchestrator,
        ledger: RefreshTokenLedger,
    ) -> None:
        self.session_store = session_store
        self.orchestrator = orchestrator
        self.ledger = ledger

    async def validate(self, session_id: str | None) -> SessionValidation:
        if not session_id:
            return MissingSession(session_id=None)

        masked = mask_identifier(session_id)
        try:
            lookup = await self.session_store.fetch(session_id)
        except InstanceNotFoundException:
            logger.info("[SessionGate] Session not found session=%s", masked)
            return MissingSession(session_id=session_id)

        if not lookup.active:
            logger.info("[SessionGate] Session expired due to inactivity session=%s", masked)
            cleanup = await self.cleanup_expired(session_id, lookup.session)
            return ExpiredSession(
                session_id=session_id, session=lookup.session, cleanup=cleanup
            )

        outcome = await self.orchestrator.maybe_refresh(session_id, lookup.session)
        return ValidSession(
            session_id=session_id,
            session=lookup.session,
            access_token=outcome.access_token,
            refreshed=outcome.refreshed,
        )

    async def cleanup_expired(self, session_id: str, session: SessionData) -> CleanupOutcome:
        """Revoke ledger records and delete the cached session; each step runs regardless of the other."""
        masked = mask_identifier(session_id)

        tokens_revoked = True
        try:
            await self.ledger.revoke_all(session_id, session.user_id)
        except Exception as exc:
            tokens_revoked = False
            logger.warning(
                "[SessionGate] Revoke on expiry failed session=%s reason=%s",
                masked,
                type(exc).__name__,
            )

        session_deleted = True
        try:
            await self.session_store.delete(session_id)
        except Exception as exc:
            session_deleted = False
            logger.warning(
                "[SessionGate] Session delete on expiry failed session=%s reason=%s",
                masked,
                type(exc).__name__,
            )

        cleanup = CleanupOutcome(
            tokens_revoked=tokens_revoked, session_deleted=session_deleted
        )
        if not cleanup.complete:
            logger.warning(
                "[SessionGate] Partial cleanup session=%s revoked=%s deleted=%s",
                masked,
                tokens_revoked,
                session_deleted,
            )
        return cleanup
