from typing import Annotated

from fastapi import APIRouter, Depends, Path

from src.core.schemas import SuccessResponse
from src.internal.dependencies import get_internal_user_service, require_machine_credential
from src.internal.schemas import (
    SessionDetailsResponse,
    UpdateUserPlanRequest,
    UserSettingsResponse,
)
from src.internal.services import InternalUserService

router = APIRouter(dependencies=[Depends(require_machine_credential)])


@router.get("/sessions/{session_id}", response_model=SessionDetailsResponse)
async def get_session_details(
    session_id: Annotated[str, Path(min_length=1)],
    service: Annotated[InternalUserService, Depends(get_internal_user_service)],
) -> SessionDetailsResponse:
    """Identity, role and permissions behind a session id."""
    return await service.get_session_details(session_id)


@router.get("/users/{user_id}/settings", response_model=UserSettingsResponse)
async def get_user_settings(
    user_id: Annotated[str, Path(min_length=1)],
    service: Annotated[InternalUserService, Depends(get_internal_user_service)],
) -> UserSettingsResponse:
    """Settings map of a user, values JSON encoded."""
    return await service.get_user_settings(user_id)


@router.put("/users/{user_id}/plan", response_model=SuccessResponse)
async def update_user_plan(
    user_id: Annotated[str, Path(min_length=1)],
    payload: UpdateUserPlanRequest,
    service: Annotated[InternalUserService, Depends(get_internal_user_service)],
) -> SuccessResponse:
    """
    Store the new plan and bring the provider role in line with it.
    """
    result = await service.update_user_plan(user_id, payload.plan_id, payload.updated_at)
    message = "Role updated" if result.changed else "Role already up to date"
    return SuccessResponse(success=True, message=message)
