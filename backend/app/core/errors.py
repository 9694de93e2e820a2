"""Import pipeline exception taxonomy.

Every exception here aborts the call that raised it. Row-level problems are
never raised; they travel as ``RowError`` records inside row outcomes.
"""
import uuid
from typing import Any


class ImportPipelineError(Exception):
    """Base class. ``status_code`` and ``code`` drive the HTTP error mapping."""

    status_code: int = 400
    code: str = "IMPORT_ERROR"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


# ─── Decoder ───

class UnsupportedFormat(ImportPipelineError):
    code = "UNSUPPORTED_FORMAT"


class EmptyFile(ImportPipelineError):
    code = "EMPTY_FILE"


class FileTooLarge(ImportPipelineError):
    code = "FILE_TOO_LARGE"


class TooManyRows(ImportPipelineError):
    code = "TOO_MANY_ROWS"


# ─── Mapper ───

class MappingError(ImportPipelineError):
    status_code = 422
    code = "INVALID_MAPPING"


class MissingRequiredField(MappingError):
    code = "MISSING_REQUIRED_FIELD"

    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(
            f"No source column mapped for required field(s): {', '.join(self.fields)}",
            missing_fields=self.fields,
        )


class UnknownTargetField(MappingError):
    code = "UNKNOWN_TARGET_FIELD"

    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(
            f"Unknown target field(s): {', '.join(self.fields)}",
            unknown_fields=self.fields,
        )


class DuplicateTargetField(MappingError):
    code = "DUPLICATE_TARGET_FIELD"

    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(
            f"Target field(s) mapped more than once: {', '.join(self.fields)}",
            duplicate_fields=self.fields,
        )


# ─── Lookups ───

class NotFound(ImportPipelineError):
    status_code = 404
    code = "NOT_FOUND"


class JobNotFound(NotFound):
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__(f"Import job {job_id} not found.")


class AuditNotFound(NotFound):
    code = "AUDIT_NOT_FOUND"

    def __init__(self, audit_id: uuid.UUID) -> None:
        super().__init__(f"Audit {audit_id} not found.")


class TemplateNotFound(NotFound):
    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: uuid.UUID) -> None:
        super().__init__(f"Mapping template {template_id} not found.")


# ─── Job state ───

class JobStateConflict(ImportPipelineError):
    status_code = 409
    code = "JOB_STATE_CONFLICT"

    def __init__(self, message: str, status: str | None = None) -> None:
        super().__init__(message, status=status)
        self.status = status


class JobAlreadyExecuting(JobStateConflict):
    code = "JOB_ALREADY_EXECUTING"

    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__(f"Import job {job_id} is already executing.", status="EXECUTING")


class JobAlreadyCompleted(JobStateConflict):
    code = "JOB_ALREADY_COMPLETED"

    def __init__(self, job_id: uuid.UUID, status: str) -> None:
        super().__init__(f"Import job {job_id} has already run (status {status}).", status=status)


class JobAlreadyRolledBack(JobStateConflict):
    code = "JOB_ALREADY_ROLLED_BACK"

    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__(f"Import job {job_id} has already been rolled back.", status="ROLLED_BACK")


class JobNotCompleted(JobStateConflict):
    code = "JOB_NOT_COMPLETED"

    def __init__(self, job_id: uuid.UUID, status: str) -> None:
        super().__init__(
            f"Only completed imports can be rolled back; job {job_id} is {status}.",
            status=status,
        )


class NothingToRollback(JobStateConflict):
    code = "NOTHING_TO_ROLLBACK"

    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__(f"Import job {job_id} created no records.", status="COMPLETED")


class DuplicateImport(ImportPipelineError):
    status_code = 409
    code = "DUPLICATE_IMPORT"

    def __init__(self, existing_job_id: uuid.UUID) -> None:
        super().__init__(
            "This file has already been imported for this audit.",
            existing_job_id=str(existing_job_id),
        )


class DuplicateTemplateName(ImportPipelineError):
    status_code = 409
    code = "DUPLICATE_TEMPLATE_NAME"

    def __init__(self, name: str) -> None:
        super().__init__(f"A mapping template named '{name}' already exists.")


# ─── Storage ───

class StorageWriteError(ImportPipelineError):
    """A write to the persistent store failed. Downgraded to a row rejection
    by the executor; never surfaces from ``execute``. Propagates from
    ``rollback`` after the job has been reopened for a retry."""

    status_code = 500
    code = "STORAGE_WRITE_ERROR"
