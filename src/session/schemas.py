from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class SessionData(BaseModel):
    """Cached session payload, stored as ``{accessToken, userId, accessExp}``."""

    access_token: str = Field(alias="accessToken")
    user_id: str = Field(alias="userId")
    access_exp: int = Field(alias="accessExp")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def __repr__(self) -> str:
        return f"SessionData(user_id={self.user_id!r}, access_exp={self.access_exp})"

    __str__ = __repr__


@dataclass(slots=True)
class SessionLookup:
    session: SessionData
    active: bool


@dataclass(slots=True)
class RefreshOutcome:
    refreshed: bool
    access_token: str

    def __repr__(self) -> str:
        return f"RefreshOutcome(refreshed={self.refreshed})"


class SessionStatus(StrEnum):
    VALID = "valid"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class CleanupOutcome:
    """Which cascading cleanup steps completed for an expired session."""

    tokens_revoked: bool
    session_deleted: bool

    @property
    def complete(self) -> bool:
        return self.tokens_revoked and self.session_deleted


@dataclass(slots=True)
class ValidSession:
    session_id: str
    session: SessionData
    access_token: str
    refreshed: bool
    status: SessionStatus = SessionStatus.VALID

    def __repr__(self) -> str:
        return f"ValidSession(user_id={self.session.user_id!r}, refreshed={self.refreshed})"


@dataclass(slots=True)
class ExpiredSession:
    session_id: str
    session: SessionData
    cleanup: CleanupOutcome
    status: SessionStatus = SessionStatus.EXPIRED


@dataclass(slots=True)
class MissingSession:
    session_id: str | None
    status: SessionStatus = SessionStatus.NOT_FOUND


SessionValidation = ValidSession | ExpiredSession | MissingSession
