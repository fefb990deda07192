from datetime import datetime

from src.core.schemas import Base


class SessionDetailsResponse(Base):
    user_id: str
    role: str | None = None
    permissions: list[str] = []


class UserSettingsResponse(Base):
    settings: dict[str, str]


class UpdateUserPlanRequest(Base):
    plan_id: str
    updated_at: datetime
