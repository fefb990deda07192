from datetime import datetime
import json

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loggers import get_logger
from src.core.database.transactions import safe_begin
from src.core.errors.exceptions import (
    InstanceNotFoundException,
    SessionExpiredException,
)
from src.core.utils.security import mask_identifier
from src.identity.claims import decode_unverified
from src.internal.schemas import SessionDetailsResponse, UserSettingsResponse
from src.session.store import SessionStore
from src.user.repositories import UserRepository, UserSettingRepository
from src.user.synchronizer import PlanRoleSynchronizer, PlanSyncResult

logger = get_logger(__name__)


class InternalUserService:
    """Calls made by other services on behalf of a user; callers are authenticated upstream."""

    def __init__(
        self,
        session_store: SessionStore,
        session_factory: async_sessionmaker[AsyncSession],
        synchronizer: PlanRoleSynchronizer,
        role_claim: str,
        user_repository: UserRepository | None = None,
        setting_repository: UserSettingRepository | None = None,
    ) -> None:
        self.session_store = session_store
        self.session_factory = session_factory
        self.synchronizer = synchronizer
        self.role_claim = role_claim
        self.user_repository = user_repository or UserRepository()
        self.setting_repository = setting_repository or UserSettingRepository()

    async def get_session_details(self, session_id: str) -> SessionDetailsResponse:
        lookup = await self.session_store.fetch(session_id)
        if not lookup.active:
            raise SessionExpiredException(
                "Session expired due to inactivity",
                additional_info={"session": mask_identifier(session_id)},
            )

        claims = decode_unverified(lookup.session.access_token)
        role = claims.custom_claim(self.role_claim)
        logger.info(
            "[InternalRPC] Session details served session=%s role=%s",
            mask_identifier(session_id),
            role,
        )
        return SessionDetailsResponse(
            user_id=lookup.session.user_id,
            role=role,
            permissions=claims.permissions,
        )

    async def get_user_settings(self, user_id: str) -> UserSettingsResponse:
        async with self.session_factory() as session:
            user = await self.user_repository.get_by_external_id(session, user_id)
            if user is None:
                raise InstanceNotFoundException("User not found")
            settings = await self.setting_repository.get_for_user(session, user.id)

        logger.info("[InternalRPC] Served %s setting(s)", len(settings))
        return UserSettingsResponse(
            settings={setting.key: json.dumps(setting.value) for setting in settings}
        )

    async def update_user_plan(
        self, user_id: str, plan_id: str, updated_at: datetime
    ) -> PlanSyncResult:
        # Unmapped plans fail before anything is written
        self.synchronizer.resolve_role(plan_id)

        async with self.session_factory() as session:
            async with safe_begin(session):
                user = await self.user_repository.update(
                    session,
                    {"plan_id": plan_id, "updated_at": updated_at},
                    external_id=user_id,
                )
                if user is None:
                    raise InstanceNotFoundException("User not found")

        logger.info("[InternalRPC] Plan stored plan=%s, syncing role", plan_id)
        return await self.synchronizer.sync_plan(user_id, plan_id)
