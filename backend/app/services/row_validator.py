"""Row validator: project, coerce and check each data row independently.

A bad row never aborts the run. Each row comes back either as a
``ValidatedRow`` ready for creation or as a ``RowOutcome`` marked REJECTED
with its field-level errors. Nothing here writes to the store.
"""
import enum
import logging
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Protocol

from app.services.column_mapper import ColumnMapping, normalize_header
from app.services.import_schema import (
    DEFAULT_DESCRIPTION,
    DEFAULT_RISK_RATING,
    DEFAULT_STATUS,
    OBSERVATION_SCHEMA,
    SLA_DAYS,
    FieldKind,
    TargetField,
    TargetSchema,
    is_review_comment_field,
    review_period,
)
from app.services.tabular import Grid

logger = logging.getLogger(__name__)

# Target field -> Observation attribute. ``entity`` resolves to ``entity_id`` separately.
OBSERVATION_COLUMNS = {
    "externalReference": "external_reference",
    "title": "title",
    "description": "description",
    "auditSource": "audit_source",
    "controlDomainArea": "control_domain_area",
    "controlClauseRef": "control_clause_ref",
    "controlRequirement": "control_requirement",
    "findingClassification": "finding_classification",
    "riskRating": "risk_rating",
    "rootCause": "root_cause",
    "impact": "impact",
    "recommendation": "recommendation",
    "responsibleParty": "responsible_party_text",
    "correctiveAction": "corrective_action_plan",
    "openDate": "open_date",
    "targetDate": "target_date",
    "status": "status",
    "recurrenceCount": "recurrence_count",
}

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S")
_SERIAL_RE = re.compile(r"^\d{1,6}(\.\d+)?$")
_SERIAL_EPOCH = date(1899, 12, 30)
_SERIAL_MAX = 100_000


class Outcome(str, enum.Enum):
    CREATED = "CREATED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class RowError:
    row: int
    column: str | None
    field: str | None
    value: str | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RowError":
        return cls(
            row=int(data["row"]),
            column=data.get("column"),
            field=data.get("field"),
            value=data.get("value"),
            message=str(data["message"]),
        )


@dataclass
class RowOutcome:
    row_number: int
    outcome: Outcome
    record_id: uuid.UUID | None = None
    errors: list[RowError] = field(default_factory=list)


@dataclass
class ValidatedRow:
    row_number: int
    values: dict[str, Any]  # Observation attribute -> coerced value
    entity_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None
    review_comments: list[tuple[str, str]] = field(default_factory=list)  # (period, comment)


class ReferenceLookup(Protocol):
    async def audit_exists(self, audit_id: uuid.UUID) -> bool: ...

    async def find_entity(self, reference: str) -> uuid.UUID | None: ...

    async def find_user_by_text(self, text: str) -> uuid.UUID | None: ...


@dataclass
class ValidationContext:
    """Per-run lookup state. Reference lookups are cached for the run."""

    audit_id: uuid.UUID
    today: date
    lookup: ReferenceLookup
    _audit_exists: bool | None = field(default=None, init=False)
    _entities: dict[str, uuid.UUID | None] = field(default_factory=dict, init=False)
    _owners: dict[str, uuid.UUID | None] = field(default_factory=dict, init=False)

    async def audit_exists(self) -> bool:
        if self._audit_exists is None:
            self._audit_exists = await self.lookup.audit_exists(self.audit_id)
        return self._audit_exists

    async def entity_id(self, reference: str) -> uuid.UUID | None:
        key = reference.strip().lower()
        if key not in self._entities:
            self._entities[key] = await self.lookup.find_entity(reference.strip())
        return self._entities[key]

    async def owner_id(self, text: str) -> uuid.UUID | None:
        key = text.strip().lower()
        if key not in self._owners:
            self._owners[key] = await self.lookup.find_user_by_text(text.strip())
        return self._owners[key]


# ─── Coercion ───

def parse_date(raw: str) -> date:
    value = raw.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    if _SERIAL_RE.match(value):
        serial = float(value)
        if 0 < serial < _SERIAL_MAX:
            return _SERIAL_EPOCH + timedelta(days=int(serial))
    raise ValueError(f"'{raw}' is not a recognised date; use YYYY-MM-DD or DD/MM/YYYY")


def parse_enum(target: TargetField, raw: str) -> str:
    key = " ".join(raw.strip().lower().split())
    canonical = {v.lower(): v for v in target.choices.values()}
    if key in target.choices:
        return target.choices[key]
    if key in canonical:
        return canonical[key]
    raise ValueError(f"'{raw}' is not a valid {target.name}; allowed values: {', '.join(target.allowed_values)}")


def parse_count(raw: str) -> int:
    value = raw.strip()
    try:
        number = int(value)
    except ValueError:
        try:
            as_float = float(value)
        except ValueError:
            raise ValueError(f"'{raw}' is not a whole number") from None
        if not as_float.is_integer():
            raise ValueError(f"'{raw}' is not a whole number") from None
        number = int(as_float)
    if number < 0:
        raise ValueError(f"'{raw}' must not be negative")
    return number


def parse_string(target: TargetField, raw: str) -> str:
    value = raw.strip()
    if target.max_length is not None and len(value) > target.max_length:
        raise ValueError(f"{target.name} must be at most {target.max_length} characters (got {len(value)})")
    return value


def coerce(target: TargetField, raw: str) -> Any:
    """Coerce a non-empty cell to the field's kind. Raises ValueError with a user-facing message."""
    if target.kind == FieldKind.ENUM:
        return parse_enum(target, raw)
    if target.kind == FieldKind.DATE:
        return parse_date(raw)
    if target.kind == FieldKind.COUNT:
        return parse_count(raw)
    return parse_string(target, raw)


# ─── Validator ───

class RowValidator:
    def __init__(self, schema: TargetSchema = OBSERVATION_SCHEMA) -> None:
        self.schema = schema

    async def validate(
        self,
        grid: Grid,
        mapping: ColumnMapping,
        context: ValidationContext,
    ) -> list[RowOutcome | ValidatedRow]:
        """Validate every data row, in file order."""
        columns = self._column_positions(grid.headers, mapping)
        audit_ok = await context.audit_exists()

        results: list[RowOutcome | ValidatedRow] = []
        for row_number, cells in grid.numbered_rows():
            results.append(await self._validate_row(row_number, cells, columns, context, audit_ok))

        rejected = sum(1 for r in results if isinstance(r, RowOutcome))
        logger.info(
            "Validated %d rows for audit %s: %d valid, %d rejected",
            len(results), context.audit_id, len(results) - rejected, rejected,
        )
        return results

    @staticmethod
    def _column_positions(headers: list[str], mapping: ColumnMapping) -> list[tuple[str, str, int | None, bool]]:
        """(target field, source header, cell index, required) for every mapping entry."""
        index = {normalize_header(h): i for i, h in enumerate(headers)}
        return [
            (e.target_field, e.source_column, index.get(normalize_header(e.source_column)), e.required)
            for e in mapping
        ]

    async def _validate_row(
        self,
        row_number: int,
        cells: list[str],
        columns: list[tuple[str, str, int | None, bool]],
        context: ValidationContext,
        audit_ok: bool,
    ) -> RowOutcome | ValidatedRow:
        errors: list[RowError] = []
        values: dict[str, Any] = {}
        entity_id: uuid.UUID | None = None
        review_comments: list[tuple[str, str]] = []

        if not audit_ok:
            errors.append(RowError(row_number, None, "auditId", str(context.audit_id), "Audit not found"))

        for target_name, column, position, required in columns:
            raw = cells[position] if position is not None and position < len(cells) else ""
            if not raw.strip():
                if required:
                    errors.append(RowError(row_number, column, target_name, raw, f"{target_name} is required"))
                continue

            if is_review_comment_field(target_name):
                review_comments.append((review_period(target_name), raw.strip()))
                continue

            target = self.schema.get(target_name)
            if target is None:
                continue

            if target.kind == FieldKind.REFERENCE:
                entity_id = await context.entity_id(raw)
                if entity_id is None:
                    errors.append(RowError(row_number, column, target_name, raw, f"Entity '{raw.strip()}' not found"))
                continue

            try:
                values[OBSERVATION_COLUMNS[target_name]] = coerce(target, raw)
            except ValueError as exc:
                errors.append(RowError(row_number, column, target_name, raw, str(exc)))

        if errors:
            return RowOutcome(row_number=row_number, outcome=Outcome.REJECTED, errors=errors)

        self._apply_defaults(values, context.today)

        owner_id = None
        if values.get("responsible_party_text"):
            owner_id = await context.owner_id(values["responsible_party_text"])

        return ValidatedRow(
            row_number=row_number,
            values=values,
            entity_id=entity_id,
            owner_id=owner_id,
            review_comments=review_comments,
        )

    @staticmethod
    def _apply_defaults(values: dict[str, Any], today: date) -> None:
        values.setdefault("description", DEFAULT_DESCRIPTION)
        values.setdefault("risk_rating", DEFAULT_RISK_RATING)
        values.setdefault("status", DEFAULT_STATUS)
        values.setdefault("recurrence_count", 0)
        values.setdefault("open_date", today)
        if "target_date" not in values:
            values["target_date"] = values["open_date"] + timedelta(days=SLA_DAYS[values["risk_rating"]])
