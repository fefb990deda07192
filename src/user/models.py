from datetime import datetime
from typing import Any
from uuid import UUID as PY_UUID

from sqlalchemy import JSON, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base
from src.core.database.mixins import TimestampMixin, UUIDIDMixin


class User(Base, UUIDIDMixin, TimestampMixin):
    __tablename__ = "users"

    # Subject claim issued by the identity provider
    external_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan_id: Mapped[str] = mapped_column(String(64))

    def __repr__(self) -> str:
        return f"<User(id={str(self.id)}, plan_id={self.plan_id!r})>"


class UserSetting(Base):
    __tablename__ = "user_settings"

    user_id: Mapped[PY_UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    # JSONB on postgres, plain JSON elsewhere
    value: Mapped[Any] = mapped_column(JSON().with_variant(JSONB(), "postgresql"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        server_default=func.now(),
        onupdate=func.now(),
    )
