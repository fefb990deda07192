from fastapi import Depends

from src.identity.client import IdentityProviderClient
from src.identity.dependencies import (
    get_identity_provider_client,
    get_machine_token_provider,
)
from src.identity.machine_token import MachineTokenProvider
from src.main.config import config
from src.user.synchronizer import PlanRoleSynchronizer


def get_plan_role_synchronizer(
    identity_client: IdentityProviderClient = Depends(get_identity_provider_client),
    machine_tokens: MachineTokenProvider = Depends(get_machine_token_provider),
) -> PlanRoleSynchronizer:
    return PlanRoleSynchronizer(
        identity_client=identity_client,
        machine_tokens=machine_tokens,
        plan_role_mapping=config.plans.PLAN_ROLE_MAPPING,
    )
