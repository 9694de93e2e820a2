"""Pydantic schemas for the observation import API. JSON keys are camelCase."""
import uuid
from datetime import datetime
from typing import Annotated

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints, computed_field
from pydantic.alias_generators import to_camel

from app.services.column_mapper import ColumnMapping, MappingEntry
from app.services.row_validator import RowError


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ─── Mapping ───

class ColumnMappingEntry(CamelModel):
    source_column: str = Field(min_length=1)
    target_field: str = Field(min_length=1)
    required: bool = False


def to_entries(mapping: ColumnMapping) -> list[ColumnMappingEntry]:
    return [ColumnMappingEntry(**vars(e)) for e in mapping]


def to_mapping(entries: list[ColumnMappingEntry]) -> ColumnMapping:
    return ColumnMapping(MappingEntry(e.source_column, e.target_field, e.required) for e in entries)


class MappingOverrideIn(CamelModel):
    mappings: list[ColumnMappingEntry] | None = None
    template_id: uuid.UUID | None = None
    replace_auto_mapping: bool = False


class RowErrorOut(CamelModel):
    row: int
    column: str | None = None
    field: str | None = None
    value: str | None = None
    message: str

    @classmethod
    def from_error(cls, error: RowError) -> "RowErrorOut":
        return cls(**error.to_dict())


# ─── Upload / detect ───

class UploadResponse(CamelModel):
    job_id: uuid.UUID
    status: str
    total_rows_estimate: int
    original_filename: str


class DetectColumnsResponse(CamelModel):
    headers: list[str]
    auto_mapping: list[ColumnMappingEntry]
    sample_rows: list[list[str]]


# ─── Validate / execute ───

class ValidationResponse(CamelModel):
    job_id: uuid.UUID
    valid_count: int
    invalid_count: int
    sample_errors: list[RowErrorOut]
    resolved_mapping: list[ColumnMappingEntry]


class ExecuteResponse(CamelModel):
    job_id: uuid.UUID
    status: str
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    errors: list[RowErrorOut]
    error_report_available: bool = False


class JobStatusResponse(CamelModel):
    id: uuid.UUID = Field(serialization_alias="jobId", validation_alias=AliasChoices("id", "jobId"))
    audit_id: uuid.UUID
    status: str
    original_filename: str
    file_extension: str
    column_mapping: list[ColumnMappingEntry] | None = None
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    errors: list[RowErrorOut] = []
    error_report_available: bool = False
    created_at: datetime
    validated_at: datetime | None = None
    executed_at: datetime | None = None
    completed_at: datetime | None = None
    rolled_back_at: datetime | None = None
    rolled_back_by: uuid.UUID | None = None
    rollback_reason: str | None = None
    rolled_back_count: int | None = None

    @computed_field
    @property
    def progress(self) -> int:
        """Processed share of the file as a whole percentage, for polling."""
        if self.total_rows <= 0:
            return 0
        return round(self.processed_rows * 100 / self.total_rows)


# ─── Rollback ───

class RollbackRequest(CamelModel):
    reason: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)]


class RollbackResponse(CamelModel):
    job_id: uuid.UUID
    status: str
    rolled_back_count: int


# ─── Templates ───

class TemplateCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    mappings: list[ColumnMappingEntry] = Field(min_length=1)
    is_default: bool = False


class TemplateOut(CamelModel):
    id: uuid.UUID
    name: str
    description: str | None
    mappings: list[ColumnMappingEntry]
    is_default: bool
    created_by: uuid.UUID | None
    created_at: datetime
