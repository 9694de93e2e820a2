"""Import job lifecycle: upload, validate, execute, status, rollback.

State machine::

    UPLOADED -> VALIDATED -> EXECUTING -> COMPLETED -> ROLLED_BACK
         \\________________/          \\-> FAILED

The persisted status is the concurrency guard. Every transition is a
compare-and-swap in the store, so two callers racing on one job cannot both
win. Decoding and mapping happen before a job is claimed; a file or mapping
problem therefore leaves the job untouched.
"""
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from app.core.config import Settings
from app.core.errors import (
    AuditNotFound,
    DuplicateImport,
    EmptyFile,
    FileTooLarge,
    JobAlreadyCompleted,
    JobAlreadyExecuting,
    JobAlreadyRolledBack,
    JobNotCompleted,
    JobNotFound,
    JobStateConflict,
    NotFound,
    NothingToRollback,
    TooManyRows,
    UnsupportedFormat,
)
from app.db.base import utcnow
from app.models.import_job import EXECUTABLE_STATUSES, ImportJob, ImportStatus
from app.repositories.import_store import ImportStore
from app.services.audit_log import AuditTrail
from app.services.column_mapper import ColumnMapping, apply_and_validate, auto_detect, resolve
from app.services.error_report import XLSX_CONTENT_TYPE, build_error_report, error_report_path
from app.services.import_executor import ImportExecutor
from app.services.import_rollback import RollbackManager
from app.services.mapping_templates import MappingTemplateService
from app.services.row_validator import RowError, RowOutcome, RowValidator, ValidationContext
from app.services.storage import FileStorage
from app.services.tabular import Grid, decode, normalize_extension

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "csv": "text/csv",
    "xlsx": XLSX_CONTENT_TYPE,
    "xls": "application/vnd.ms-excel",
}


@dataclass
class MappingOverride:
    mappings: ColumnMapping | None = None
    template_id: uuid.UUID | None = None
    replace_auto: bool = False

    @property
    def is_empty(self) -> bool:
        return self.mappings is None and self.template_id is None and not self.replace_auto


@dataclass
class ValidationReport:
    job_id: uuid.UUID
    valid_count: int
    invalid_count: int
    sample_errors: list[RowError]
    resolved_mapping: ColumnMapping


@dataclass
class ImportResult:
    job_id: uuid.UUID
    status: str
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    errors: list[RowError] = field(default_factory=list)
    error_report_available: bool = False


@dataclass
class ColumnPreview:
    headers: list[str]
    auto_mapping: ColumnMapping
    sample_rows: list[list[str]]


class ImportJobService:
    def __init__(
        self,
        store: ImportStore,
        files: FileStorage,
        audit_trail: AuditTrail,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    ) -> None:
        self.store = store
        self.files = files
        self.audit_trail = audit_trail
        self.settings = settings
        self.clock = clock
        self.id_factory = id_factory
        self.templates = MappingTemplateService(store, id_factory)
        self.validator = RowValidator()

    # ─── Helpers ───

    def _check_file(self, data: bytes, filename: str) -> str:
        ext = normalize_extension(filename)
        allowed = self.settings.import_allowed_extensions
        if ext not in allowed:
            raise UnsupportedFormat(
                f"File type .{ext} is not supported. Allowed types: {', '.join(sorted(allowed))}"
            )
        if len(data) > self.settings.import_max_file_size_bytes:
            raise FileTooLarge(
                f"File exceeds the {self.settings.IMPORT_MAX_FILE_SIZE_MB} MB limit.",
                max_size_mb=self.settings.IMPORT_MAX_FILE_SIZE_MB,
            )
        return ext

    def _decode(self, data: bytes, ext: str) -> Grid:
        return decode(data, ext, self.settings.import_allowed_extensions)

    def _load(self, job: ImportJob) -> Grid:
        # Re-read on every call: validate and execute are independent invocations.
        return self._decode(self.files.download(job.file_path), job.file_extension)

    async def _get(self, job_id: uuid.UUID) -> ImportJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    @staticmethod
    def _guard_executable(job: ImportJob) -> None:
        if job.status in EXECUTABLE_STATUSES:
            return
        if job.status == ImportStatus.EXECUTING.value:
            raise JobAlreadyExecuting(job.id)
        if job.status == ImportStatus.ROLLED_BACK.value:
            raise JobAlreadyRolledBack(job.id)
        raise JobAlreadyCompleted(job.id, job.status)

    async def _raise_lost_race(self, job_id: uuid.UUID) -> None:
        """A status swap failed: report whatever state the winner left behind."""
        job = await self._get(job_id)
        self._guard_executable(job)
        raise JobStateConflict(f"Import job {job_id} changed state concurrently.", status=job.status)

    async def _resolve_mapping(
        self, job: ImportJob, grid: Grid, override: MappingOverride | None
    ) -> ColumnMapping:
        """Override (template and/or explicit entries) if given, else the mapping
        saved by the last validate, else auto-detection."""
        if override is not None and not override.is_empty:
            template = None
            if override.template_id is not None:
                template = await self.templates.mapping_for(override.template_id)
            return resolve(
                grid.headers,
                template=template,
                overrides=override.mappings,
                replace_auto=override.replace_auto,
            )
        if job.column_mapping:
            return apply_and_validate(ColumnMapping.from_list(job.column_mapping), headers=grid.headers)
        return resolve(grid.headers)

    def _context(self, job: ImportJob) -> ValidationContext:
        return ValidationContext(audit_id=job.audit_id, today=self.clock().date(), lookup=self.store)

    # ─── Upload ───

    async def upload(
        self,
        data: bytes,
        filename: str,
        audit_id: uuid.UUID,
        uploader_id: uuid.UUID | None,
    ) -> ImportJob:
        """Store the file and create an UPLOADED job with a row count estimate."""
        ext = self._check_file(data, filename)

        if not await self.store.audit_exists(audit_id):
            raise AuditNotFound(audit_id)

        checksum = hashlib.sha256(data).hexdigest()
        existing = await self.store.find_completed_job_by_checksum(audit_id, checksum)
        if existing is not None:
            raise DuplicateImport(existing.id)

        grid = self._decode(data, ext)
        total_rows = len(grid.data_rows)
        if total_rows == 0:
            raise EmptyFile("File has a header row but no data rows.")
        if total_rows > self.settings.IMPORT_MAX_ROWS:
            raise TooManyRows(
                f"File has {total_rows} data rows; the limit is {self.settings.IMPORT_MAX_ROWS}.",
                max_rows=self.settings.IMPORT_MAX_ROWS,
            )

        job_id = self.id_factory()
        object_name = f"imports/{audit_id}/{job_id}.{ext}"
        self.files.upload(object_name, data, CONTENT_TYPES.get(ext, "application/octet-stream"))

        now = self.clock()
        job = await self.store.create_job(
            ImportJob(
                id=job_id,
                audit_id=audit_id,
                uploaded_by=uploader_id,
                original_filename=filename,
                file_extension=ext,
                file_path=object_name,
                file_checksum=checksum,
                file_size=len(data),
                status=ImportStatus.UPLOADED.value,
                total_rows=total_rows,
                processed_rows=0,
                successful_rows=0,
                failed_rows=0,
                errors=[],
                created_at=now,
                updated_at=now,
            )
        )
        await self.audit_trail.record(
            "import.uploaded", "import_job", job_id, uploader_id,
            after={"filename": filename, "audit_id": audit_id, "total_rows": total_rows},
        )
        logger.info("Import job %s created: %s (%d rows) for audit %s", job_id, filename, total_rows, audit_id)
        return job

    def detect_columns(self, data: bytes, filename: str) -> ColumnPreview:
        """Headers, auto-detected mapping and the first few raw rows. No job is created."""
        ext = self._check_file(data, filename)
        grid = self._decode(data, ext)
        return ColumnPreview(
            headers=grid.headers,
            auto_mapping=auto_detect(grid.headers),
            sample_rows=grid.data_rows[: self.settings.IMPORT_PREVIEW_ROWS],
        )

    # ─── Validate ───

    async def validate(
        self,
        job_id: uuid.UUID,
        override: MappingOverride | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> ValidationReport:
        """Dry run. Counts would-be accepted and rejected rows; creates nothing.

        May be repeated with different mappings while the job is UPLOADED or
        VALIDATED; the last resolved mapping is kept for execute.
        """
        job = await self._get(job_id)
        self._guard_executable(job)

        grid = self._load(job)
        mapping = await self._resolve_mapping(job, grid, override)
        items = await self.validator.validate(grid, mapping, self._context(job))

        rejected = [item for item in items if isinstance(item, RowOutcome)]
        errors = [e for outcome in rejected for e in outcome.errors]

        swapped = await self.store.transition(
            job_id,
            EXECUTABLE_STATUSES,
            ImportStatus.VALIDATED.value,
            column_mapping=mapping.to_list(),
            validated_at=self.clock(),
        )
        if not swapped:
            await self._raise_lost_race(job_id)

        report = ValidationReport(
            job_id=job_id,
            valid_count=len(items) - len(rejected),
            invalid_count=len(rejected),
            sample_errors=errors[: self.settings.IMPORT_SAMPLE_ERROR_LIMIT],
            resolved_mapping=mapping,
        )
        await self.audit_trail.record(
            "import.validated", "import_job", job_id, actor_id,
            after={"valid": report.valid_count, "invalid": report.invalid_count},
        )
        logger.info(
            "Import job %s validated: %d valid, %d invalid",
            job_id, report.valid_count, report.invalid_count,
        )
        return report

    # ─── Execute ───

    async def execute(
        self,
        job_id: uuid.UUID,
        override: MappingOverride | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> ImportResult:
        """Create records for every valid row. Allowed from UPLOADED or VALIDATED.

        Raises:
            JobAlreadyExecuting: another execute holds the job.
            JobAlreadyCompleted / JobAlreadyRolledBack: the job is terminal.
            MappingError: the final mapping is unusable (job stays as it was).

        Storage failures never raise; they show up as failed rows.
        """
        job = await self._get(job_id)
        self._guard_executable(job)

        grid = self._load(job)
        mapping = await self._resolve_mapping(job, grid, override)
        total_rows = len(grid.data_rows)

        claimed = await self.store.transition(
            job_id,
            EXECUTABLE_STATUSES,
            ImportStatus.EXECUTING.value,
            column_mapping=mapping.to_list(),
            executed_at=self.clock(),
            total_rows=total_rows,
            processed_rows=0,
            successful_rows=0,
            failed_rows=0,
            errors=[],
        )
        if not claimed:
            await self._raise_lost_race(job_id)
        logger.info("Import job %s executing: %d rows", job_id, total_rows)

        created_by = actor_id or job.uploaded_by
        try:
            items = await self.validator.validate(grid, mapping, self._context(job))
            executor = ImportExecutor(self.store, self.settings.IMPORT_BATCH_SIZE)
            result = await executor.run(job_id, job.audit_id, created_by, items)
        except Exception:
            logger.error("Import job %s aborted", job_id, exc_info=True)
            await self.store.transition(
                job_id, [ImportStatus.EXECUTING.value], ImportStatus.FAILED.value, completed_at=self.clock()
            )
            raise

        errors = result.errors
        report_path = self._store_error_report(job, errors) if errors else None
        status = ImportStatus.COMPLETED if result.successful > 0 else ImportStatus.FAILED

        await self.store.transition(
            job_id,
            [ImportStatus.EXECUTING.value],
            status.value,
            completed_at=self.clock(),
            error_file_path=report_path,
        )
        await self.audit_trail.record(
            "import.executed", "import_job", job_id, created_by,
            after={
                "status": status.value,
                "successful": result.successful,
                "failed": result.failed,
            },
        )
        logger.info(
            "Import job %s %s: %d created, %d failed of %d",
            job_id, status.value, result.successful, result.failed, total_rows,
        )
        return ImportResult(
            job_id=job_id,
            status=status.value,
            total_rows=total_rows,
            processed_rows=result.processed,
            successful_rows=result.successful,
            failed_rows=result.failed,
            errors=errors[: self.settings.IMPORT_RESPONSE_ERROR_LIMIT],
            error_report_available=report_path is not None,
        )

    def _store_error_report(self, job: ImportJob, errors: list[RowError]) -> str | None:
        path = error_report_path(job.audit_id, job.id)
        try:
            self.files.upload(path, build_error_report(errors), XLSX_CONTENT_TYPE)
        except Exception as exc:
            logger.warning("Error report for job %s could not be stored: %s", job.id, exc)
            return None
        return path

    # ─── Status / reports ───

    async def get_status(self, job_id: uuid.UUID) -> ImportJob:
        return await self._get(job_id)

    async def error_report(self, job_id: uuid.UUID) -> tuple[str, bytes]:
        """(download filename, XLSX bytes) of the job's error report."""
        job = await self._get(job_id)
        if not job.error_file_path:
            raise NotFound(f"Import job {job_id} has no error report.")
        stem = job.original_filename.rsplit(".", 1)[0]
        return f"{stem}_errors.xlsx", self.files.download(job.error_file_path)

    # ─── Rollback ───

    async def rollback(self, job_id: uuid.UUID, reason: str, actor_id: uuid.UUID | None) -> int:
        """Reverse every record the job created. Allowed only from COMPLETED.

        Returns the number of records actually reversed, which may be lower
        than ``successful_rows`` if some were already deleted elsewhere.
        """
        job = await self._get(job_id)
        if job.status == ImportStatus.ROLLED_BACK.value:
            raise JobAlreadyRolledBack(job_id)
        if job.status != ImportStatus.COMPLETED.value:
            raise JobNotCompleted(job_id, job.status)
        if await self.store.count_manifest(job_id) == 0:
            raise NothingToRollback(job_id)

        now = self.clock()
        claimed = await self.store.transition(
            job_id,
            [ImportStatus.COMPLETED.value],
            ImportStatus.ROLLED_BACK.value,
            rolled_back_at=now,
            rolled_back_by=actor_id,
            rollback_reason=reason.strip(),
        )
        if not claimed:
            current = await self._get(job_id)
            if current.status == ImportStatus.ROLLED_BACK.value:
                raise JobAlreadyRolledBack(job_id)
            raise JobNotCompleted(job_id, current.status)

        try:
            count = await RollbackManager(self.store).rollback(job_id, now)
        except Exception:
            # Reopen the job so the remaining records can be reversed by a retry.
            # Records already reversed are skipped then.
            logger.error("Rollback of import job %s interrupted", job_id, exc_info=True)
            await self.store.transition(
                job_id,
                [ImportStatus.ROLLED_BACK.value],
                ImportStatus.COMPLETED.value,
                rolled_back_at=None,
                rolled_back_by=None,
                rollback_reason=None,
            )
            raise
        await self.store.update_job(job_id, rolled_back_count=count)
        await self.audit_trail.record(
            "import.rolled_back", "import_job", job_id, actor_id,
            after={"reversed": count, "successful_rows": job.successful_rows},
            notes=reason.strip(),
        )
        return count
