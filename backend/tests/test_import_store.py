"""SqlImportStore against a throwaway SQLite database (aiosqlite)."""
import json
import uuid
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.core.errors import StorageWriteError
from app.core.seed import seed_mapping_templates
from app.db.base import Base, soft_deletable
from app.models.audit import Audit, Entity
from app.models.audit_log import AuditLog
from app.models.import_job import ImportJob, ImportMappingTemplate, ImportStatus
from app.models.observation import Observation
from app.models.user import User
from app.repositories.import_store import ObservationFilter, SqlImportStore
from app.services.audit_log import SqlAuditTrail
from app.services.column_mapper import ColumnMapping, apply_and_validate
from app.services.row_validator import ValidatedRow

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'imports.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session
    await engine.dispose()


@pytest_asyncio.fixture
async def audit_id(session):
    audit = Audit(id=uuid.uuid4(), title="ISO 27001 surveillance 2026")
    session.add(audit)
    await session.commit()
    return audit.id


@pytest_asyncio.fixture
async def store(session):
    return SqlImportStore(session)


async def _job(store, audit_id, checksum="a" * 64, status=ImportStatus.UPLOADED.value):
    return await store.create_job(
        ImportJob(
            id=uuid.uuid4(),
            audit_id=audit_id,
            original_filename="findings.csv",
            file_extension="csv",
            file_path="imports/x/y.csv",
            file_checksum=checksum,
            status=status,
        )
    )


def _row(row_number, title, ref=None, comments=()):
    values = {
        "title": title,
        "description": "Imported from spreadsheet",
        "risk_rating": "HIGH",
        "status": "OPEN",
        "recurrence_count": 0,
        "open_date": date(2026, 3, 1),
        "target_date": date(2026, 4, 1),
    }
    if ref is not None:
        values["external_reference"] = ref
    return ValidatedRow(row_number, values, review_comments=list(comments))


# ─── Lookups ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_audit_exists(store, audit_id):
    assert await store.audit_exists(audit_id)
    assert not await store.audit_exists(uuid.uuid4())


@pytest.mark.asyncio
async def test_find_entity_by_code_name_or_id(session, store):
    finance = Entity(id=uuid.uuid4(), code="FIN", name="Finance")
    retired = Entity(id=uuid.uuid4(), code="OLD", name="Old Division", is_active=False)
    session.add_all([finance, retired])
    await session.commit()

    assert await store.find_entity("fin") == finance.id
    assert await store.find_entity(" FINANCE ") == finance.id
    assert await store.find_entity(str(finance.id)) == finance.id
    assert await store.find_entity("Old Division") is None
    assert await store.find_entity("Legal") is None


@pytest.mark.asyncio
async def test_find_user_by_email_or_name(session, store):
    user = User(id=uuid.uuid4(), email="jane.doe@example.com", name="Jane Doe", role="AUDITEE")
    session.add(user)
    await session.commit()

    assert await store.find_user_by_text("Jane Doe") == user.id
    assert await store.find_user_by_text("JANE.DOE@example.com") == user.id
    assert await store.find_user_by_text("John") is None


# ─── Jobs ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_transition_is_compare_and_swap(store, audit_id):
    job = await _job(store, audit_id)

    assert await store.transition(job.id, ["UPLOADED", "VALIDATED"], "EXECUTING", processed_rows=0)
    assert not await store.transition(job.id, ["UPLOADED", "VALIDATED"], "EXECUTING")
    assert (await store.get_job(job.id)).status == "EXECUTING"


@pytest.mark.asyncio
async def test_progress_and_errors_persisted(store, audit_id):
    job = await _job(store, audit_id)
    errors = [{"row": 2, "column": "Risk", "field": "riskRating", "value": "X", "message": "bad"}]

    await store.update_progress(job.id, processed=3, successful=2, failed=1, errors=errors)

    loaded = await store.get_job(job.id)
    assert (loaded.processed_rows, loaded.successful_rows, loaded.failed_rows) == (3, 2, 1)
    assert loaded.errors == errors


@pytest.mark.asyncio
async def test_find_completed_job_by_checksum(store, audit_id):
    await _job(store, audit_id, checksum="b" * 64)
    assert await store.find_completed_job_by_checksum(audit_id, "b" * 64) is None

    done = await _job(store, audit_id, checksum="c" * 64, status=ImportStatus.COMPLETED.value)
    found = await store.find_completed_job_by_checksum(audit_id, "c" * 64)
    assert found.id == done.id
    assert await store.find_completed_job_by_checksum(uuid.uuid4(), "c" * 64) is None


# ─── Forward path ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_batch_creates_observations_and_manifest(store, audit_id):
    job = await _job(store, audit_id)
    rows = [_row(1, "First", comments=[("Q1 2026", "Still open")]), _row(3, "Second")]

    ids = await store.create_observations(job.id, audit_id, None, rows, start_position=0)

    observations = await store.list_observations(ObservationFilter(import_job_id=job.id))
    assert [o.id for o in observations] == ids
    assert [o.sequence_number for o in observations] == [1, 2]
    assert [o.import_row_number for o in observations] == [1, 3]
    assert [(c.period, c.comment) for c in observations[0].review_cycles] == [("Q1 2026", "Still open")]

    manifest = await store.list_manifest(job.id)
    assert [(r.position, r.target_id, r.row_number) for r in manifest] == [(0, ids[0], 1), (1, ids[1], 3)]
    assert await store.count_manifest(job.id) == 2


@pytest.mark.asyncio
async def test_sequence_numbers_continue_per_audit(store, audit_id):
    job = await _job(store, audit_id)
    await store.create_observations(job.id, audit_id, None, [_row(1, "A")], 0)
    second = await store.create_observation(job.id, audit_id, None, _row(2, "B"), 1)

    assert (await store.get_observation(second)).sequence_number == 2


@pytest.mark.asyncio
async def test_duplicate_reference_fails_whole_batch(store, audit_id):
    job = await _job(store, audit_id)
    rows = [_row(1, "A", ref="NC-1"), _row(2, "B", ref="NC-1")]

    with pytest.raises(StorageWriteError):
        await store.create_observations(job.id, audit_id, None, rows, 0)

    assert await store.list_observations(ObservationFilter(audit_id=audit_id)) == []
    assert await store.count_manifest(job.id) == 0
    # The session is usable again after the failed commit.
    await store.create_observation(job.id, audit_id, None, rows[0], 0)


@pytest.mark.asyncio
async def test_reference_free_again_after_soft_delete(store, audit_id):
    job = await _job(store, audit_id)
    first = await store.create_observation(job.id, audit_id, None, _row(1, "A", ref="NC-7"), 0)

    assert await store.soft_delete(Observation, first, NOW)
    await store.create_observation(job.id, audit_id, None, _row(2, "A again", ref="NC-7"), 1)


# ─── Reversal and read path ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_soft_delete_hides_record(store, audit_id):
    job = await _job(store, audit_id)
    record_id = await store.create_observation(job.id, audit_id, None, _row(1, "A"), 0)

    assert await store.soft_delete(Observation, record_id, NOW)
    assert not await store.soft_delete(Observation, record_id, NOW)

    assert await store.get_observation(record_id) is None
    assert (await store.get_observation(record_id, include_deleted=True)).deleted_at is not None
    assert await store.list_observations(ObservationFilter(audit_id=audit_id)) == []
    assert len(await store.list_observations(ObservationFilter(audit_id=audit_id, include_deleted=True))) == 1


@pytest.mark.asyncio
async def test_soft_delete_requires_capability(store):
    with pytest.raises(TypeError):
        await store.soft_delete(ImportMappingTemplate, uuid.uuid4(), NOW)


@pytest.mark.asyncio
async def test_hard_delete(store, audit_id):
    job = await _job(store, audit_id)
    record_id = await store.create_observation(job.id, audit_id, None, _row(1, "A"), 0)

    assert await store.hard_delete(Observation, record_id)
    assert not await store.hard_delete(Observation, record_id)
    assert await store.get_observation(record_id, include_deleted=True) is None


def test_observation_filter_needs_scope():
    with pytest.raises(ValueError):
        ObservationFilter()


# ─── Templates and audit trail ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_template_crud(store):
    mappings = [{"source_column": "Heading", "target_field": "title", "required": True}]
    plain = await store.create_template(ImportMappingTemplate(id=uuid.uuid4(), name="Legacy", mappings=mappings))
    default = await store.create_template(
        ImportMappingTemplate(id=uuid.uuid4(), name="Workbook", mappings=mappings, is_default=True)
    )

    assert [t.id for t in await store.list_templates()] == [default.id, plain.id]
    assert (await store.get_template_by_name("legacy")).id == plain.id
    assert (await store.get_template(plain.id)).mappings == mappings
    assert await store.delete_template(plain.id)
    assert not await store.delete_template(plain.id)
    assert await store.get_template(plain.id) is None


@pytest.mark.asyncio
async def test_audit_trail_record(session):
    trail = SqlAuditTrail(session)
    job_id = uuid.uuid4()

    await trail.record("import.rolled_back", "import_job", job_id, after={"reversed": 2}, notes="wrong audit")

    entry = (await session.execute(select(AuditLog))).scalar_one()
    assert entry.action == "import.rolled_back"
    assert entry.entity_id == job_id
    assert json.loads(entry.after_state) == {"reversed": 2}
    assert entry.notes == "wrong audit"


@pytest.mark.asyncio
async def test_seeded_templates_are_valid_and_idempotent(session, store):
    await seed_mapping_templates(session)
    await seed_mapping_templates(session)

    templates = await store.list_templates()
    assert len(templates) == 1
    assert templates[0].is_default
    apply_and_validate(ColumnMapping.from_list(templates[0].mappings))


# ─── Service over the SQL store ───────────────────────────────────────────────

FINDINGS_CSV = (
    b"Title,Risk,Status\n"
    b"Missing access review,High,Open\n"
    b"Stale firewall rules,INVALID,Open\n"
    b"Unencrypted backups,Low,Closed\n"
)


def test_soft_delete_capability_per_model():
    assert soft_deletable(Observation)
    assert not soft_deletable(ImportJob)
    assert not soft_deletable(ImportMappingTemplate)


@pytest.mark.asyncio
async def test_import_and_rollback_keeps_soft_deleted_rows(service, store, audit_id):
    job = await service.upload(FINDINGS_CSV, "findings.csv", audit_id, None)
    report = await service.validate(job.id)
    assert (report.valid_count, report.invalid_count) == (2, 1)

    result = await service.execute(job.id)
    assert (result.status, result.successful_rows, result.failed_rows) == ("COMPLETED", 2, 1)
    created = await store.list_observations(ObservationFilter(audit_id=audit_id))
    assert [o.title for o in created] == ["Missing access review", "Unencrypted backups"]

    assert await service.rollback(job.id, "Imported into the wrong audit", None) == 2

    assert await store.list_observations(ObservationFilter(audit_id=audit_id)) == []
    retained = await store.list_observations(ObservationFilter(audit_id=audit_id, include_deleted=True))
    assert {o.id for o in retained} == {o.id for o in created}
    assert all(o.deleted_at is not None for o in retained)

    snapshot = await service.get_status(job.id)
    assert (snapshot.status, snapshot.rolled_back_count) == ("ROLLED_BACK", 2)
