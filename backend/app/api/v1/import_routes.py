"""Bulk observation import endpoints (SYSTEM_ADMIN, AUDIT_ADMIN)."""
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Body, Depends, File, Form, Request, Response, UploadFile, status

from app.core.config import settings
from app.core.deps import get_import_service, require_role
from app.core.limiter import limiter
from app.models.user import IMPORT_ROLES, User
from app.schemas.imports import (
    DetectColumnsResponse,
    ExecuteResponse,
    JobStatusResponse,
    MappingOverrideIn,
    RollbackRequest,
    RollbackResponse,
    RowErrorOut,
    TemplateCreate,
    TemplateOut,
    UploadResponse,
    ValidationResponse,
    to_entries,
    to_mapping,
)
from app.services.error_report import XLSX_CONTENT_TYPE
from app.services.import_jobs import ImportJobService, MappingOverride

logger = logging.getLogger(__name__)

router = APIRouter()

ImportService = Annotated[ImportJobService, Depends(get_import_service)]
ImportUser = Annotated[User, Depends(require_role(*IMPORT_ROLES))]


def _override(body: MappingOverrideIn | None) -> MappingOverride | None:
    if body is None:
        return None
    return MappingOverride(
        mappings=to_mapping(body.mappings) if body.mappings is not None else None,
        template_id=body.template_id,
        replace_auto=body.replace_auto_mapping,
    )


# ─── Upload / detect ───

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an observation spreadsheet (xlsx, xls, csv)",
)
@limiter.limit(settings.IMPORT_UPLOAD_RATE_LIMIT)
async def upload_import(
    request: Request,
    file: Annotated[UploadFile, File(description="Spreadsheet or CSV with a header row")],
    audit_id: Annotated[uuid.UUID, Form(alias="auditId")],
    service: ImportService,
    current_user: ImportUser,
):
    content = await file.read()
    job = await service.upload(content, file.filename or "import.csv", audit_id, current_user.id)
    return UploadResponse(
        job_id=job.id,
        status=job.status,
        total_rows_estimate=job.total_rows,
        original_filename=job.original_filename,
    )


@router.post(
    "/detect-columns",
    response_model=DetectColumnsResponse,
    summary="Preview headers, auto-detected mapping and sample rows",
)
async def detect_columns(
    file: Annotated[UploadFile, File()],
    service: ImportService,
    current_user: ImportUser,
):
    content = await file.read()
    preview = service.detect_columns(content, file.filename or "import.csv")
    return DetectColumnsResponse(
        headers=preview.headers,
        auto_mapping=to_entries(preview.auto_mapping),
        sample_rows=preview.sample_rows,
    )


# ─── Templates ───

@router.get("/templates", response_model=list[TemplateOut], summary="List mapping templates")
async def list_templates(service: ImportService, current_user: ImportUser):
    return await service.templates.list_templates()


@router.post(
    "/templates",
    response_model=TemplateOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a mapping template",
)
async def create_template(body: TemplateCreate, service: ImportService, current_user: ImportUser):
    return await service.templates.create(
        name=body.name,
        mappings=to_mapping(body.mappings),
        description=body.description,
        is_default=body.is_default,
        created_by=current_user.id,
    )


@router.get("/templates/{template_id}", response_model=TemplateOut, summary="Get a mapping template")
async def get_template(template_id: uuid.UUID, service: ImportService, current_user: ImportUser):
    return await service.templates.get(template_id)


@router.delete(
    "/templates/{template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a mapping template",
)
async def delete_template(template_id: uuid.UUID, service: ImportService, current_user: ImportUser):
    await service.templates.delete(template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ─── Job lifecycle ───

@router.post("/{job_id}/validate", response_model=ValidationResponse, summary="Dry-run validation")
async def validate_import(
    job_id: uuid.UUID,
    service: ImportService,
    current_user: ImportUser,
    body: Annotated[MappingOverrideIn | None, Body()] = None,
):
    report = await service.validate(job_id, _override(body), current_user.id)
    return ValidationResponse(
        job_id=report.job_id,
        valid_count=report.valid_count,
        invalid_count=report.invalid_count,
        sample_errors=[RowErrorOut.from_error(e) for e in report.sample_errors],
        resolved_mapping=to_entries(report.resolved_mapping),
    )


@router.post("/{job_id}/execute", response_model=ExecuteResponse, summary="Create observations from the file")
async def execute_import(
    job_id: uuid.UUID,
    service: ImportService,
    current_user: ImportUser,
    body: Annotated[MappingOverrideIn | None, Body()] = None,
):
    result = await service.execute(job_id, _override(body), current_user.id)
    return ExecuteResponse(
        job_id=result.job_id,
        status=result.status,
        total_rows=result.total_rows,
        processed_rows=result.processed_rows,
        successful_rows=result.successful_rows,
        failed_rows=result.failed_rows,
        errors=[RowErrorOut.from_error(e) for e in result.errors],
        error_report_available=result.error_report_available,
    )


@router.get("/{job_id}/status", response_model=JobStatusResponse, summary="Import job snapshot")
async def import_status(job_id: uuid.UUID, service: ImportService, current_user: ImportUser):
    job = await service.get_status(job_id)
    return JobStatusResponse.model_validate(job).model_copy(
        update={"error_report_available": job.error_file_path is not None}
    )


@router.get("/{job_id}/error-report", summary="Download the XLSX error report")
async def download_error_report(job_id: uuid.UUID, service: ImportService, current_user: ImportUser):
    filename, content = await service.error_report(job_id)
    return Response(
        content=content,
        media_type=XLSX_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{job_id}/rollback", response_model=RollbackResponse, summary="Reverse a completed import")
async def rollback_import(
    job_id: uuid.UUID,
    body: RollbackRequest,
    service: ImportService,
    current_user: ImportUser,
):
    count = await service.rollback(job_id, body.reason, current_user.id)
    logger.info("Import job %s rolled back by %s: %d records", job_id, current_user.email, count)
    return RollbackResponse(job_id=job_id, status="ROLLED_BACK", rolled_back_count=count)
