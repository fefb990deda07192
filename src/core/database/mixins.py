from datetime import datetime
import uuid
from uuid import UUID as PY_UUID

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column
import uuid6


class TimestampMixin:
    """
    Add columns to a mapped class
    created_at: DateTime, `on create` trigger
    updated_at: DateTime, `on update` trigger
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        server_default=func.now(),
        onupdate=func.now(),
    )


class UUIDIDMixin:
    """
    Add a UUID column to a mapped class
    id: UUID v4
    """

    __abstract__ = True

    id: Mapped[PY_UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )


class UUID7IDMixin:
    """
    Add a UUID v7 column to a mapped class
    id: UUID v7 (time-ordered)

    Append-mostly tables (the refresh token ledger) benefit from the monotonic
    ordering: inserts stay clustered and "newest record" is an index scan.
    """

    __abstract__ = True

    id: Mapped[PY_UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid6.uuid7
    )
