from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_session
from src.system.dependencies import get_health_service
from src.system.schemas import HealthCheckResponse
from src.system.services import HealthService

router = APIRouter()


@router.get("/health/", response_model=HealthCheckResponse)
@router.head("/health/", response_model=HealthCheckResponse, include_in_schema=False)
async def check_health(
    health_service: Annotated[HealthService, Depends(get_health_service)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthCheckResponse:
    """
    Check the session cache and the refresh token database. Either one
    failing makes every authenticated request fail, so both are required.
    """
    return await health_service.get_status(session=session)
