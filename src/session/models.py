from datetime import datetime
from uuid import UUID as PY_UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, false
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base
from src.core.database.mixins import TimestampMixin, UUID7IDMixin


class UserRefreshToken(Base, UUID7IDMixin, TimestampMixin):
    """
    Ledger row for one issued refresh token.

    Rows are never deleted by the application: rotation, logout and
    inactivity expiry flip ``revoked`` so the history stays auditable.
    """

    __tablename__ = "user_refresh_tokens"
    __table_args__ = (
        Index(
            "ix_user_refresh_tokens_user_session_revoked",
            "user_id",
            "session_id",
            "revoked",
        ),
    )

    user_id: Mapped[PY_UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE")
    )
    # nonce:tag:ciphertext, see src.core.crypto.cipher
    encrypted_token: Mapped[str] = mapped_column(Text, unique=True)
    session_id: Mapped[str] = mapped_column(String(64))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    revoked: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<UserRefreshToken(id={str(self.id)}, session_id={self.session_id!r}, "
            f"revoked={self.revoked})>"
        )
