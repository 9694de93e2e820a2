"""Shared fakes and fixtures for the import pipeline tests.

``FakeImportStore`` keeps everything in memory. Each async method yields to
the event loop once before touching state, so concurrent callers interleave
the way they would against a real database, while every individual
operation stays atomic.
"""
import asyncio
import uuid
from datetime import datetime, timezone

import pytest

from app.core.config import Settings
from app.core.errors import StorageWriteError
from app.db.base import soft_deletable
from app.models.import_job import ImportJob, ImportJobRecord, ImportMappingTemplate
from app.models.observation import Observation, ObservationReviewCycle
from app.repositories.import_store import OBSERVATION_TARGET, ObservationFilter
from app.services.import_jobs import ImportJobService

FIXED_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def _copy_job(job: ImportJob) -> ImportJob:
    return ImportJob(**{c.key: getattr(job, c.key) for c in ImportJob.__table__.columns})


class FakeImportStore:
    def __init__(self) -> None:
        self.audits: set[uuid.UUID] = set()
        self.entities: dict[uuid.UUID, tuple[str, str]] = {}
        self.users: dict[uuid.UUID, tuple[str, str]] = {}
        self.jobs: dict[uuid.UUID, ImportJob] = {}
        self.observations: dict[uuid.UUID, Observation] = {}
        self.manifest: list[ImportJobRecord] = []
        self.templates: dict[uuid.UUID, ImportMappingTemplate] = {}
        self.progress_updates: list[tuple[int, int, int]] = []
        self.batch_calls: list[int] = []
        # Failure injection
        self.fail_batches = False
        self.fail_rows: set[int] = set()
        self.outage = False

    # ─── Reference lookups ───

    async def audit_exists(self, audit_id):
        await asyncio.sleep(0)
        return audit_id in self.audits

    async def find_entity(self, reference):
        await asyncio.sleep(0)
        key = reference.strip().lower()
        for entity_id, (code, name) in self.entities.items():
            if str(entity_id) == key or code.lower() == key or name.lower() == key:
                return entity_id
        return None

    async def find_user_by_text(self, text):
        await asyncio.sleep(0)
        key = text.strip().lower()
        for user_id, (email, name) in self.users.items():
            if email.lower() == key or name.lower() == key:
                return user_id
        return None

    # ─── Jobs ───

    async def create_job(self, job):
        await asyncio.sleep(0)
        self.jobs[job.id] = _copy_job(job)
        return _copy_job(job)

    async def get_job(self, job_id):
        await asyncio.sleep(0)
        job = self.jobs.get(job_id)
        return _copy_job(job) if job is not None else None

    async def find_completed_job_by_checksum(self, audit_id, checksum):
        await asyncio.sleep(0)
        for job in self.jobs.values():
            if job.audit_id == audit_id and job.file_checksum == checksum and job.status == "COMPLETED":
                return _copy_job(job)
        return None

    async def update_job(self, job_id, **values):
        await asyncio.sleep(0)
        for key, value in values.items():
            setattr(self.jobs[job_id], key, value)

    async def transition(self, job_id, from_statuses, to_status, **values):
        await asyncio.sleep(0)
        job = self.jobs[job_id]
        if job.status not in set(from_statuses):
            return False
        job.status = to_status
        for key, value in values.items():
            setattr(job, key, value)
        return True

    async def update_progress(self, job_id, processed, successful, failed, errors):
        await self.update_job(
            job_id, processed_rows=processed, successful_rows=successful, failed_rows=failed, errors=list(errors)
        )
        self.progress_updates.append((processed, successful, failed))

    # ─── Forward path ───

    def _check_row(self, audit_id, row, pending):
        if self.outage or row.row_number in self.fail_rows:
            raise StorageWriteError(f"Row {row.row_number} rejected by storage")
        ref = row.values.get("external_reference")
        if ref is None:
            return
        live = [o for o in self.observations.values() if o.audit_id == audit_id and o.deleted_at is None]
        if any(o.external_reference == ref for o in live) or ref in pending:
            raise StorageWriteError("Creating observation failed: IntegrityError")
        pending.add(ref)

    async def create_observations(self, job_id, audit_id, created_by, rows, start_position):
        await asyncio.sleep(0)
        self.batch_calls.append(len(rows))
        if self.fail_batches and len(rows) > 1:
            raise StorageWriteError(f"Creating {len(rows)} observations failed: OperationalError")
        pending: set[str] = set()
        for row in rows:
            self._check_row(audit_id, row, pending)

        ids = []
        sequence = sum(1 for o in self.observations.values() if o.audit_id == audit_id) + 1
        for offset, row in enumerate(rows):
            observation = Observation(
                id=uuid.uuid4(),
                audit_id=audit_id,
                sequence_number=sequence + offset,
                entity_id=row.entity_id,
                owner_id=row.owner_id,
                created_by=created_by,
                import_job_id=job_id,
                import_row_number=row.row_number,
                deleted_at=None,
                **row.values,
            )
            observation.review_cycles = [
                ObservationReviewCycle(id=uuid.uuid4(), period=p, comment=c) for p, c in row.review_comments
            ]
            self.observations[observation.id] = observation
            self.manifest.append(
                ImportJobRecord(
                    id=uuid.uuid4(),
                    job_id=job_id,
                    position=start_position + offset,
                    target_type=OBSERVATION_TARGET,
                    target_id=observation.id,
                    row_number=row.row_number,
                )
            )
            ids.append(observation.id)
        return ids

    async def create_observation(self, job_id, audit_id, created_by, row, position):
        ids = await self.create_observations(job_id, audit_id, created_by, [row], position)
        return ids[0]

    # ─── Manifest and reversal ───

    async def list_manifest(self, job_id):
        await asyncio.sleep(0)
        return sorted((r for r in self.manifest if r.job_id == job_id), key=lambda r: r.position)

    async def count_manifest(self, job_id):
        await asyncio.sleep(0)
        return sum(1 for r in self.manifest if r.job_id == job_id)

    async def soft_delete(self, model, record_id, at):
        await asyncio.sleep(0)
        if not soft_deletable(model):
            raise TypeError(f"{model.__name__} does not support soft delete")
        observation = self.observations.get(record_id)
        if observation is None or observation.deleted_at is not None:
            return False
        observation.deleted_at = at
        return True

    async def hard_delete(self, model, record_id):
        await asyncio.sleep(0)
        return self.observations.pop(record_id, None) is not None

    # ─── Read path ───

    async def get_observation(self, observation_id, include_deleted=False):
        await asyncio.sleep(0)
        observation = self.observations.get(observation_id)
        if observation is None or (observation.deleted_at is not None and not include_deleted):
            return None
        return observation

    async def list_observations(self, filter: ObservationFilter):
        await asyncio.sleep(0)
        found = [
            o for o in self.observations.values()
            if (filter.audit_id is None or o.audit_id == filter.audit_id)
            and (filter.import_job_id is None or o.import_job_id == filter.import_job_id)
            and (filter.include_deleted or o.deleted_at is None)
        ]
        return sorted(found, key=lambda o: o.sequence_number)

    # ─── Templates ───

    async def list_templates(self):
        await asyncio.sleep(0)
        return sorted(self.templates.values(), key=lambda t: (not t.is_default, t.name))

    async def get_template(self, template_id):
        await asyncio.sleep(0)
        return self.templates.get(template_id)

    async def get_template_by_name(self, name):
        await asyncio.sleep(0)
        for template in self.templates.values():
            if template.name.lower() == name.strip().lower():
                return template
        return None

    async def create_template(self, template):
        await asyncio.sleep(0)
        if template.created_at is None:
            template.created_at = FIXED_NOW
        self.templates[template.id] = template
        return template

    async def delete_template(self, template_id):
        await asyncio.sleep(0)
        return self.templates.pop(template_id, None) is not None


class FakeFileStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    def upload(self, object_name, data, content_type):
        self.objects[object_name] = data
        return object_name

    def download(self, object_name):
        return self.objects[object_name]


class FakeAuditTrail:
    def __init__(self) -> None:
        self.events: list[dict] = []

    async def record(self, action, entity_type, entity_id=None, actor_id=None, after=None, notes=None):
        await asyncio.sleep(0)
        self.events.append(
            {"action": action, "entity_type": entity_type, "entity_id": entity_id,
             "actor_id": actor_id, "after": after, "notes": notes}
        )

    @property
    def actions(self) -> list[str]:
        return [e["action"] for e in self.events]


def make_settings(**overrides) -> Settings:
    values = {"IMPORT_BATCH_SIZE": 100, "APP_ENV": "test", "RATE_LIMIT_ENABLED": False}
    values.update(overrides)
    return Settings(**values)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def store() -> FakeImportStore:
    return FakeImportStore()


@pytest.fixture
def files() -> FakeFileStorage:
    return FakeFileStorage()


@pytest.fixture
def audit_trail() -> FakeAuditTrail:
    return FakeAuditTrail()


@pytest.fixture
def audit_id(store) -> uuid.UUID:
    audit_id = uuid.uuid4()
    store.audits.add(audit_id)
    return audit_id


@pytest.fixture
def make_service(store, files, audit_trail):
    def _make(**setting_overrides) -> ImportJobService:
        return ImportJobService(
            store=store,
            files=files,
            audit_trail=audit_trail,
            settings=make_settings(**setting_overrides),
            clock=lambda: FIXED_NOW,
        )
    return _make


@pytest.fixture
def service(make_service) -> ImportJobService:
    return make_service()
