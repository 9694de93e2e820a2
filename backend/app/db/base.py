import uuid
from datetime import datetime, timezone
from typing import ClassVar

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


def soft_deletable(model: type[Base]) -> bool:
    """Whether rows of ``model`` are retired by setting ``deleted_at`` rather than
    being removed. Only models that mix in ``SoftDeleteMixin`` carry the flag."""
    return getattr(model, "supports_soft_delete", False)


class UUIDMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class SoftDeleteMixin:
    supports_soft_delete: ClassVar[bool] = True

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
