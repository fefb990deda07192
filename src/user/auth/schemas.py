from src.core.schemas import Base


class SessionDetailsResponse(Base):
    user_id: str
    access_exp: int
    refreshed: bool
