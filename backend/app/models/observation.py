import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin, utcnow


class Observation(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """A single audit finding. Retired by soft delete, never erased."""

    __tablename__ = "observations"
    __table_args__ = (
        UniqueConstraint("audit_id", "sequence_number", name="uq_observations_audit_sequence"),
        Index(
            "uq_observations_audit_external_ref",
            "audit_id",
            "external_reference",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    audit_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("audits.id"), nullable=False, index=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("entities.id"), nullable=True)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    external_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    audit_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    control_domain_area: Mapped[str | None] = mapped_column(String(255), nullable=True)
    control_clause_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    control_requirement: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    finding_classification: Mapped[str | None] = mapped_column(String(100), nullable=True)
    risk_rating: Mapped[str] = mapped_column(String(20), nullable=False, default="MEDIUM")  # CRITICAL, HIGH, MEDIUM, LOW, INFORMATIONAL
    root_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    impact: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommendation: Mapped[str | None] = mapped_column(Text, nullable=True)
    responsible_party_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    corrective_action_plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="OPEN")
    open_date: Mapped[date] = mapped_column(Date, nullable=False)
    target_date: Mapped[date] = mapped_column(Date, nullable=False)
    recurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    import_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("import_jobs.id"), nullable=True, index=True
    )
    import_row_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    review_cycles: Mapped[list["ObservationReviewCycle"]] = relationship(
        "ObservationReviewCycle",
        back_populates="observation",
        cascade="all, delete-orphan",
        order_by="ObservationReviewCycle.period",
    )


class ObservationReviewCycle(Base, UUIDMixin):
    """Periodic review comment on an observation (e.g. 'Q1 2024')."""

    __tablename__ = "observation_review_cycles"

    observation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("observations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    period: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    observation: Mapped["Observation"] = relationship("Observation", back_populates="review_cycles")
