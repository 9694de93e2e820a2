from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin

ROLES = ("SYSTEM_ADMIN", "AUDIT_ADMIN", "AUDITOR", "AUDITEE", "VIEWER")

# Roles allowed to run bulk imports and manage mapping templates.
IMPORT_ROLES = ("SYSTEM_ADMIN", "AUDIT_ADMIN")


class User(Base, UUIDMixin, TimestampMixin):
    """Account known to the audit system. Credentials are held by the identity
    provider; this table only backs token subjects, ownership and lookups by
    responsible-party text during import."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # soft delete
