from dataclasses import dataclass

from loggers import get_logger
from src.core.errors.exceptions import (
    ConfigurationException,
    NoRoleAssignedException,
    UpstreamException,
)
from src.identity.client import IdentityProviderClient
from src.identity.machine_token import MachineTokenProvider

logger = get_logger(__name__)


@dataclass(slots=True)
class PlanSyncResult:
    plan_id: str
    role_id: str
    previous_role_id: str | None
    changed: bool


class PlanRoleSynchronizer:
    """
    Keeps the provider role of a user in line with the static plan->role mapping.

    Same role as target is a no-op. A failed add after a successful remove
    surfaces as RoleReplacementException; calling sync again then finds no
    role and only adds the target.
    """

    def __init__(
        self,
        identity_client: IdentityProviderClient,
        machine_tokens: MachineTokenProvider,
        plan_role_mapping: dict[str, str],
    ) -> None:
        self.identity_client = identity_client
        self.machine_tokens = machine_tokens
        self.plan_role_mapping = plan_role_mapping

    def resolve_role(self, plan_id: str) -> str:
        role_id = self.plan_role_mapping.get(plan_id)
        if not role_id:
            raise ConfigurationException(
                "Plan is not mapped to a role", additional_info={"plan_id": plan_id}
            )
        return role_id

    async def sync_plan(self, user_id: str, plan_id: str) -> PlanSyncResult:
        target_role_id = self.resolve_role(plan_id)
        machine_token = await self.machine_tokens.get_token()

        try:
            return await self._sync(machine_token, user_id, plan_id, target_role_id)
        except UpstreamException as exc:
            # Cached token rejected: drop it and retry once, re-reading the role
            if exc.status_code != 401:
                raise
            logger.warning("[PlanSync] Machine token rejected, issuing a new one")
            await self.machine_tokens.invalidate()
            machine_token = await self.machine_tokens.get_token()
            return await self._sync(machine_token, user_id, plan_id, target_role_id)

    async def _sync(
        self, machine_token: str, user_id: str, plan_id: str, target_role_id: str
    ) -> PlanSyncResult:
        try:
            current_role_id: str | None = await self.identity_client.get_user_role(
                machine_token, user_id
            )
        except NoRoleAssignedException:
            current_role_id = None

        if current_role_id == target_role_id:
            logger.info("[PlanSync] Role already matches plan=%s", plan_id)
            return PlanSyncResult(
                plan_id=plan_id,
                role_id=target_role_id,
                previous_role_id=current_role_id,
                changed=False,
            )

        if current_role_id is None:
            logger.warning("[PlanSync] User has no role, assigning plan=%s", plan_id)
            await self.identity_client.add_user_role(machine_token, user_id, target_role_id)
        else:
            await self.identity_client.replace_user_role(
                machine_token, user_id, current_role_id, target_role_id
            )

        logger.info(
            "[PlanSync] Role updated plan=%s from=%s to=%s",
            plan_id,
            current_role_id,
            target_role_id,
        )
        return PlanSyncResult(
            plan_id=plan_id,
            role_id=target_role_id,
            previous_role_id=current_role_id,
            changed=True,
        )
