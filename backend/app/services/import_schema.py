"""Target field catalogue for observation imports.

Each field declares its kind (drives coercion in the row validator), whether
a source column must be mapped to it, and the header aliases used by column
auto-detection. Alias order matters only within a field; field order decides
which field wins when a header matches several.
"""
import enum
import re
from dataclasses import dataclass, field


class FieldKind(str, enum.Enum):
    STRING = "string"
    ENUM = "enum"
    DATE = "date"
    REFERENCE = "reference"
    COUNT = "count"


@dataclass(frozen=True)
class TargetField:
    name: str
    kind: FieldKind
    aliases: tuple[str, ...] = ()
    required: bool = False
    # Case-insensitive synonym -> canonical value, ENUM fields only.
    choices: dict[str, str] = field(default_factory=dict)
    max_length: int | None = None

    @property
    def allowed_values(self) -> list[str]:
        return sorted(set(self.choices.values()))


RISK_RATINGS = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "INFORMATIONAL")

RISK_NORMALIZATIONS = {
    "critical": "CRITICAL",
    "very high": "CRITICAL",
    "high": "HIGH",
    "significant": "HIGH",
    "major": "HIGH",
    "medium": "MEDIUM",
    "moderate": "MEDIUM",
    "low": "LOW",
    "minor": "LOW",
    "informational": "INFORMATIONAL",
    "info": "INFORMATIONAL",
    "observation": "INFORMATIONAL",
    "opportunity": "INFORMATIONAL",
}

OBSERVATION_STATUSES = (
    "OPEN", "IN_PROGRESS", "EVIDENCE_SUBMITTED", "UNDER_REVIEW", "CLOSED", "REJECTED", "OVERDUE",
)

STATUS_NORMALIZATIONS = {
    "open": "OPEN",
    "pending": "OPEN",
    "in progress": "IN_PROGRESS",
    "in-progress": "IN_PROGRESS",
    "in_progress": "IN_PROGRESS",
    "evidence submitted": "EVIDENCE_SUBMITTED",
    "evidence_submitted": "EVIDENCE_SUBMITTED",
    "under review": "UNDER_REVIEW",
    "under_review": "UNDER_REVIEW",
    "review": "UNDER_REVIEW",
    "closed": "CLOSED",
    "complete": "CLOSED",
    "completed": "CLOSED",
    "rejected": "REJECTED",
    "overdue": "OVERDUE",
}

# Days from open date to default target date, by risk rating.
SLA_DAYS = {
    "CRITICAL": 14,
    "HIGH": 30,
    "MEDIUM": 60,
    "LOW": 90,
    "INFORMATIONAL": 180,
}

DEFAULT_RISK_RATING = "MEDIUM"
DEFAULT_STATUS = "OPEN"
DEFAULT_DESCRIPTION = "Imported from spreadsheet"

REVIEW_COMMENT_PREFIX = "reviewComment_"
_REVIEW_FIELD_RE = re.compile(r"^reviewComment_Q([1-4])_(\d{4})$")
_REVIEW_HEADER_RE = re.compile(r"(?:review|update|comments?).*?q([1-4])[\s-]?(\d{4})", re.IGNORECASE)


class TargetSchema:
    """Ordered set of target fields plus dynamic review-comment fields."""

    def __init__(self, fields: list[TargetField]) -> None:
        self.fields = list(fields)
        self._by_name = {f.name: f for f in self.fields}

    def get(self, name: str) -> TargetField | None:
        return self._by_name.get(name)

    def is_known(self, name: str) -> bool:
        return name in self._by_name or is_review_comment_field(name)

    @property
    def required_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.required]


def is_review_comment_field(name: str) -> bool:
    return bool(_REVIEW_FIELD_RE.match(name))


def review_period(name: str) -> str | None:
    """'reviewComment_Q1_2024' -> 'Q1 2024'."""
    match = _REVIEW_FIELD_RE.match(name)
    if match is None:
        return None
    return f"Q{match.group(1)} {match.group(2)}"


def review_field_for_header(header: str) -> str | None:
    """'Review Q1 2024' -> 'reviewComment_Q1_2024'; None for other headers."""
    match = _REVIEW_HEADER_RE.search(header)
    if match is None:
        return None
    return f"{REVIEW_COMMENT_PREFIX}Q{match.group(1)}_{match.group(2)}"


OBSERVATION_SCHEMA = TargetSchema([
    TargetField(
        "externalReference", FieldKind.STRING, max_length=100,
        aliases=("nc ref", "nc reference", "non-conformance ref", "finding ref", "observation ref",
                 "reference", "ref no", "ref #", "finding id"),
    ),
    TargetField(
        "title", FieldKind.STRING, required=True, max_length=500,
        aliases=("observation title", "finding title", "title", "finding name", "observation name",
                 "issue title", "nc title"),
    ),
    TargetField(
        "description", FieldKind.STRING,
        aliases=("observation description", "finding description", "description", "details",
                 "issue description", "nc description", "finding detail", "observation", "finding"),
    ),
    TargetField(
        "entity", FieldKind.REFERENCE,
        aliases=("audited entity", "entity", "business unit", "department", "organization", "org",
                 "division", "location"),
    ),
    TargetField(
        "auditSource", FieldKind.STRING, max_length=255,
        aliases=("audit source", "source", "audit name", "audit type", "audit"),
    ),
    TargetField(
        "controlDomainArea", FieldKind.STRING, max_length=255,
        aliases=("control domain", "control area", "iso domain", "domain", "area", "process", "function"),
    ),
    TargetField(
        "controlClauseRef", FieldKind.STRING, max_length=100,
        aliases=("control clause", "iso clause", "clause ref", "clause reference", "control reference",
                 "requirement ref", "iso reference", "clause"),
    ),
    TargetField(
        "controlRequirement", FieldKind.STRING,
        aliases=("control requirement", "standard requirement", "control description", "requirement",
                 "policy", "regulation"),
    ),
    TargetField(
        "findingClassification", FieldKind.STRING, max_length=100,
        aliases=("finding classification", "finding type", "observation type", "nc type",
                 "classification", "category", "type"),
    ),
    TargetField(
        "riskRating", FieldKind.ENUM, choices=RISK_NORMALIZATIONS,
        aliases=("risk rating", "risk level", "impact level", "risk", "severity", "priority", "criticality"),
    ),
    TargetField(
        "rootCause", FieldKind.STRING,
        aliases=("root cause", "cause", "reason", "why"),
    ),
    TargetField(
        "impact", FieldKind.STRING,
        aliases=("business impact", "impact", "effect", "consequence"),
    ),
    TargetField(
        "recommendation", FieldKind.STRING,
        aliases=("auditor recommendation", "recommendation", "suggested action", "action recommended"),
    ),
    TargetField(
        "responsibleParty", FieldKind.STRING, max_length=255,
        aliases=("responsible party", "responsible person", "action owner", "assigned to", "responsible",
                 "owner", "assignee", "accountability"),
    ),
    TargetField(
        "correctiveAction", FieldKind.STRING,
        aliases=("corrective action plan", "corrective action", "management action", "management response",
                 "action plan", "remediation", "response", "cap"),
    ),
    TargetField(
        "openDate", FieldKind.DATE,
        aliases=("open date", "date opened", "raised date", "finding date", "observation date", "nc date",
                 "identified date", "issue date"),
    ),
    TargetField(
        "targetDate", FieldKind.DATE,
        aliases=("target date", "due date", "deadline", "expected closure", "closure date", "target closure",
                 "planned date"),
    ),
    TargetField(
        "status", FieldKind.ENUM, choices=STATUS_NORMALIZATIONS,
        aliases=("observation status", "finding status", "current status", "status", "state"),
    ),
    TargetField(
        "recurrenceCount", FieldKind.COUNT,
        aliases=("recurrence count", "repeat count", "recurrences", "occurrences", "times raised", "repeat"),
    ),
])
