"""Persistence for the import pipeline.

``ImportStore`` is the contract the services depend on; ``SqlImportStore``
implements it over one ``AsyncSession``. Every write commits on its own, so
a failure only loses the unit that failed. Objects handed back are detached
from the session and act as read-only snapshots.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import StorageWriteError
from app.db.base import Base, soft_deletable
from app.models.audit import Audit, Entity
from app.models.import_job import ImportJob, ImportJobRecord, ImportMappingTemplate, ImportStatus
from app.models.observation import Observation, ObservationReviewCycle
from app.models.user import User
from app.services.row_validator import ValidatedRow

logger = logging.getLogger(__name__)

OBSERVATION_TARGET = "observation"


@dataclass(frozen=True)
class ObservationFilter:
    """Scope for the observation read path. At least one of the ids is required."""

    audit_id: uuid.UUID | None = None
    import_job_id: uuid.UUID | None = None
    include_deleted: bool = False

    def __post_init__(self) -> None:
        if self.audit_id is None and self.import_job_id is None:
            raise ValueError("ObservationFilter needs an audit_id or an import_job_id")


class ImportStore(Protocol):
    # Reference lookups
    async def audit_exists(self, audit_id: uuid.UUID) -> bool: ...
    async def find_entity(self, reference: str) -> uuid.UUID | None: ...
    async def find_user_by_text(self, text: str) -> uuid.UUID | None: ...

    # Jobs
    async def create_job(self, job: ImportJob) -> ImportJob: ...
    async def get_job(self, job_id: uuid.UUID) -> ImportJob | None: ...
    async def find_completed_job_by_checksum(self, audit_id: uuid.UUID, checksum: str) -> ImportJob | None: ...
    async def update_job(self, job_id: uuid.UUID, **values: Any) -> None: ...
    async def transition(
        self, job_id: uuid.UUID, from_statuses: Iterable[str], to_status: str, **values: Any
    ) -> bool: ...
    async def update_progress(
        self, job_id: uuid.UUID, processed: int, successful: int, failed: int, errors: list[dict]
    ) -> None: ...

    # Forward path
    async def create_observations(
        self, job_id: uuid.UUID, audit_id: uuid.UUID, created_by: uuid.UUID | None,
        rows: list[ValidatedRow], start_position: int,
    ) -> list[uuid.UUID]: ...
    async def create_observation(
        self, job_id: uuid.UUID, audit_id: uuid.UUID, created_by: uuid.UUID | None,
        row: ValidatedRow, position: int,
    ) -> uuid.UUID: ...

    # Manifest and reversal
    async def list_manifest(self, job_id: uuid.UUID) -> list[ImportJobRecord]: ...
    async def count_manifest(self, job_id: uuid.UUID) -> int: ...
    async def soft_delete(self, model: type[Base], record_id: uuid.UUID, at: datetime) -> bool: ...
    async def hard_delete(self, model: type[Base], record_id: uuid.UUID) -> bool: ...

    # Read path
    async def get_observation(self, observation_id: uuid.UUID, include_deleted: bool = False) -> Observation | None: ...
    async def list_observations(self, filter: ObservationFilter) -> list[Observation]: ...

    # Templates
    async def list_templates(self) -> list[ImportMappingTemplate]: ...
    async def get_template(self, template_id: uuid.UUID) -> ImportMappingTemplate | None: ...
    async def get_template_by_name(self, name: str) -> ImportMappingTemplate | None: ...
    async def create_template(self, template: ImportMappingTemplate) -> ImportMappingTemplate: ...
    async def delete_template(self, template_id: uuid.UUID) -> bool: ...


class SqlImportStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _commit(self, action: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageWriteError(f"{action} failed: {exc.__class__.__name__}") from exc

    async def _execute_write(self, action: str, stmt) -> int:
        try:
            result = await self.session.execute(stmt.execution_options(synchronize_session=False))
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageWriteError(f"{action} failed: {exc.__class__.__name__}") from exc
        return result.rowcount

    def _detach(self, obj):
        if obj is not None:
            self.session.expunge(obj)
        return obj

    # ─── Reference lookups ───

    async def audit_exists(self, audit_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(Audit.id).where(Audit.id == audit_id, Audit.deleted_at.is_(None))
        )
        return result.scalar_one_or_none() is not None

    async def find_entity(self, reference: str) -> uuid.UUID | None:
        """Match an entity by id, code or name (case-insensitive). None if absent."""
        try:
            as_id = uuid.UUID(reference)
        except ValueError:
            as_id = None

        if as_id is not None:
            stmt = select(Entity.id).where(Entity.id == as_id)
        else:
            key = reference.strip().lower()
            stmt = select(Entity.id).where(
                or_(func.lower(Entity.code) == key, func.lower(Entity.name) == key)
            )
        result = await self.session.execute(stmt.where(Entity.is_active.is_(True)).limit(1))
        return result.scalar_one_or_none()

    async def find_user_by_text(self, text: str) -> uuid.UUID | None:
        key = text.strip().lower()
        result = await self.session.execute(
            select(User.id)
            .where(
                or_(func.lower(User.email) == key, func.lower(User.name) == key),
                User.is_active.is_(True),
                User.deleted_at.is_(None),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ─── Jobs ───

    async def create_job(self, job: ImportJob) -> ImportJob:
        self.session.add(job)
        await self._commit("Creating import job")
        return self._detach(job)

    async def get_job(self, job_id: uuid.UUID) -> ImportJob | None:
        job = await self.session.get(ImportJob, job_id, populate_existing=True)
        return self._detach(job)

    async def find_completed_job_by_checksum(self, audit_id: uuid.UUID, checksum: str) -> ImportJob | None:
        result = await self.session.execute(
            select(ImportJob)
            .where(
                ImportJob.audit_id == audit_id,
                ImportJob.file_checksum == checksum,
                ImportJob.status == ImportStatus.COMPLETED.value,
            )
            .order_by(ImportJob.created_at.desc())
            .limit(1)
        )
        return self._detach(result.scalar_one_or_none())

    async def update_job(self, job_id: uuid.UUID, **values: Any) -> None:
        await self._execute_write(
            "Updating import job", update(ImportJob).where(ImportJob.id == job_id).values(**values)
        )

    async def transition(
        self, job_id: uuid.UUID, from_statuses: Iterable[str], to_status: str, **values: Any
    ) -> bool:
        """Move the job to ``to_status`` only if its persisted status is one of
        ``from_statuses``. Returns False when another caller got there first."""
        stmt = (
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status.in_(list(from_statuses)))
            .values(status=to_status, **values)
        )
        return await self._execute_write("Changing import job status", stmt) == 1

    async def update_progress(
        self, job_id: uuid.UUID, processed: int, successful: int, failed: int, errors: list[dict]
    ) -> None:
        await self.update_job(
            job_id,
            processed_rows=processed,
            successful_rows=successful,
            failed_rows=failed,
            errors=list(errors),
        )

    # ─── Forward path ───

    async def _next_sequence(self, audit_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.max(Observation.sequence_number)).where(Observation.audit_id == audit_id)
        )
        return (result.scalar_one_or_none() or 0) + 1

    def _stage_observation(
        self, job_id: uuid.UUID, audit_id: uuid.UUID, created_by: uuid.UUID | None,
        row: ValidatedRow, position: int, sequence_number: int,
    ) -> uuid.UUID:
        observation = Observation(
            id=uuid.uuid4(),
            audit_id=audit_id,
            sequence_number=sequence_number,
            entity_id=row.entity_id,
            owner_id=row.owner_id,
            created_by=created_by,
            import_job_id=job_id,
            import_row_number=row.row_number,
            **row.values,
        )
        observation.review_cycles = [
            ObservationReviewCycle(id=uuid.uuid4(), period=period, comment=comment, created_by=created_by)
            for period, comment in row.review_comments
        ]
        self.session.add(observation)
        self.session.add(
            ImportJobRecord(
                id=uuid.uuid4(),
                job_id=job_id,
                position=position,
                target_type=OBSERVATION_TARGET,
                target_id=observation.id,
                row_number=row.row_number,
            )
        )
        return observation.id

    async def create_observations(
        self, job_id: uuid.UUID, audit_id: uuid.UUID, created_by: uuid.UUID | None,
        rows: list[ValidatedRow], start_position: int,
    ) -> list[uuid.UUID]:
        """Create a batch of observations and their manifest entries as one commit."""
        try:
            sequence = await self._next_sequence(audit_id)
            ids = [
                self._stage_observation(job_id, audit_id, created_by, row, start_position + i, sequence + i)
                for i, row in enumerate(rows)
            ]
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageWriteError(f"Creating {len(rows)} observations failed: {exc.__class__.__name__}") from exc
        self.session.expunge_all()
        return ids

    async def create_observation(
        self, job_id: uuid.UUID, audit_id: uuid.UUID, created_by: uuid.UUID | None,
        row: ValidatedRow, position: int,
    ) -> uuid.UUID:
        ids = await self.create_observations(job_id, audit_id, created_by, [row], position)
        return ids[0]

    # ─── Manifest and reversal ───

    async def list_manifest(self, job_id: uuid.UUID) -> list[ImportJobRecord]:
        result = await self.session.execute(
            select(ImportJobRecord).where(ImportJobRecord.job_id == job_id).order_by(ImportJobRecord.position)
        )
        records = list(result.scalars().all())
        for record in records:
            self.session.expunge(record)
        return records

    async def count_manifest(self, job_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(ImportJobRecord).where(ImportJobRecord.job_id == job_id)
        )
        return result.scalar_one()

    async def soft_delete(self, model: type[Base], record_id: uuid.UUID, at: datetime) -> bool:
        """Set ``deleted_at`` on a live record. False if it is absent or already deleted."""
        if not soft_deletable(model):
            raise TypeError(f"{model.__name__} does not support soft delete")
        stmt = (
            update(model)
            .where(model.id == record_id, model.deleted_at.is_(None))
            .values(deleted_at=at)
        )
        return await self._execute_write(f"Soft-deleting {model.__name__}", stmt) == 1

    async def hard_delete(self, model: type[Base], record_id: uuid.UUID) -> bool:
        stmt = delete(model).where(model.id == record_id)
        return await self._execute_write(f"Deleting {model.__name__}", stmt) == 1

    # ─── Read path ───

    async def get_observation(self, observation_id: uuid.UUID, include_deleted: bool = False) -> Observation | None:
        stmt = (
            select(Observation)
            .options(selectinload(Observation.review_cycles))
            .where(Observation.id == observation_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            stmt = stmt.where(Observation.deleted_at.is_(None))
        result = await self.session.execute(stmt)
        observation = result.scalar_one_or_none()
        if observation is not None:
            self.session.expunge_all()
        return observation

    async def list_observations(self, filter: ObservationFilter) -> list[Observation]:
        stmt = select(Observation).options(selectinload(Observation.review_cycles))
        if filter.audit_id is not None:
            stmt = stmt.where(Observation.audit_id == filter.audit_id)
        if filter.import_job_id is not None:
            stmt = stmt.where(Observation.import_job_id == filter.import_job_id)
        if not filter.include_deleted:
            stmt = stmt.where(Observation.deleted_at.is_(None))
        result = await self.session.execute(
            stmt.order_by(Observation.sequence_number).execution_options(populate_existing=True)
        )
        observations = list(result.scalars().all())
        self.session.expunge_all()
        return observations

    # ─── Templates ───

    async def list_templates(self) -> list[ImportMappingTemplate]:
        result = await self.session.execute(
            select(ImportMappingTemplate).order_by(
                ImportMappingTemplate.is_default.desc(), ImportMappingTemplate.name
            )
        )
        templates = list(result.scalars().all())
        for template in templates:
            self.session.expunge(template)
        return templates

    async def get_template(self, template_id: uuid.UUID) -> ImportMappingTemplate | None:
        template = await self.session.get(ImportMappingTemplate, template_id, populate_existing=True)
        return self._detach(template)

    async def get_template_by_name(self, name: str) -> ImportMappingTemplate | None:
        result = await self.session.execute(
            select(ImportMappingTemplate).where(func.lower(ImportMappingTemplate.name) == name.strip().lower())
        )
        return self._detach(result.scalar_one_or_none())

    async def create_template(self, template: ImportMappingTemplate) -> ImportMappingTemplate:
        self.session.add(template)
        await self._commit("Creating mapping template")
        return self._detach(template)

    async def delete_template(self, template_id: uuid.UUID) -> bool:
        stmt = delete(ImportMappingTemplate).where(ImportMappingTemplate.id == template_id)
        return await self._execute_write("Deleting mapping template", stmt) == 1
