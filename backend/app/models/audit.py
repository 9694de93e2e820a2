from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin


class Audit(Base, UUIDMixin, TimestampMixin):
    """A compliance audit engagement; imported observations belong to one."""

    __tablename__ = "audits"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    audit_type: Mapped[str] = mapped_column(String(50), nullable=False, default="INTERNAL")  # INTERNAL, EXTERNAL, ISO, REGULATORY
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="IN_PROGRESS")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Entity(Base, UUIDMixin, TimestampMixin):
    """Organisational unit an observation is raised against."""

    __tablename__ = "entities"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
