"""Column mapper: header auto-detection and mapping validation.

Both operations are pure. Auto-detection never looks at row data, and
validation only checks the mapping against the target schema (and, when
given, the file's headers).
"""
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Iterable

from app.core.errors import DuplicateTargetField, MissingRequiredField, UnknownTargetField
from app.services.import_schema import (
    OBSERVATION_SCHEMA,
    TargetField,
    TargetSchema,
    review_field_for_header,
)

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"[\s_]+")


@dataclass(frozen=True)
class MappingEntry:
    source_column: str
    target_field: str
    required: bool = False


class ColumnMapping:
    """Ordered mapping entries; each target field appears at most once once validated."""

    def __init__(self, entries: Iterable[MappingEntry] = ()) -> None:
        self.entries = list(entries)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ColumnMapping) and self.entries == other.entries

    def __repr__(self) -> str:
        return f"ColumnMapping({self.entries!r})"

    def target_for(self, source_column: str) -> str | None:
        key = normalize_header(source_column)
        for entry in self.entries:
            if normalize_header(entry.source_column) == key:
                return entry.target_field
        return None

    def source_for(self, target_field: str) -> str | None:
        for entry in self.entries:
            if entry.target_field == target_field:
                return entry.source_column
        return None

    def to_list(self) -> list[dict[str, Any]]:
        return [asdict(e) for e in self.entries]

    @classmethod
    def from_list(cls, items: Iterable[dict[str, Any]]) -> "ColumnMapping":
        return cls(
            MappingEntry(
                source_column=str(item["source_column"]),
                target_field=str(item["target_field"]),
                required=bool(item.get("required", False)),
            )
            for item in items
        )


def normalize_header(header: str) -> str:
    return _WS_RE.sub(" ", str(header or "")).strip().lower()


# ─── Auto-detect ───

def auto_detect(headers: list[str], schema: TargetSchema = OBSERVATION_SCHEMA) -> ColumnMapping:
    """Best-guess mapping from headers to target fields.

    A header equal to an alias beats one merely containing an alias; among
    containing matches the longest alias wins, then catalogue order. A header
    whose best field was already claimed by an earlier header stays unmapped,
    as do headers matching nothing.
    """
    entries: list[MappingEntry] = []
    taken: set[str] = set()

    for header in headers:
        normalized = normalize_header(header)
        if not normalized:
            continue

        review_field = review_field_for_header(normalized)
        if review_field is not None:
            if review_field not in taken:
                entries.append(MappingEntry(str(header).strip(), review_field, False))
                taken.add(review_field)
            continue

        candidates = _ranked_candidates(normalized, schema)
        if not candidates or candidates[0].name in taken:
            continue
        best = candidates[0]
        entries.append(MappingEntry(str(header).strip(), best.name, best.required))
        taken.add(best.name)

    return ColumnMapping(entries)


def _ranked_candidates(normalized: str, schema: TargetSchema) -> list[TargetField]:
    scored: list[tuple[int, int, int, TargetField]] = []
    for order, target in enumerate(schema.fields):
        best: tuple[int, int] | None = None
        for alias in target.aliases:
            if normalized == alias:
                score = (2, len(alias))
            elif _contains_word(normalized, alias):
                score = (1, len(alias))
            else:
                continue
            if best is None or score > best:
                best = score
        if best is not None:
            scored.append((-best[0], -best[1], order, target))
    scored.sort(key=lambda item: item[:3])
    return [item[3] for item in scored]


def _contains_word(text: str, alias: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(alias)}(?![a-z0-9])", text) is not None


# ─── Layering and validation ───

def layer(base: ColumnMapping, overlay: ColumnMapping) -> ColumnMapping:
    """Put ``overlay`` on top of ``base``; an overlay entry displaces any base
    entry using the same target field or the same source column."""
    targets = {e.target_field for e in overlay}
    sources = {normalize_header(e.source_column) for e in overlay}
    kept = [
        e for e in base
        if e.target_field not in targets and normalize_header(e.source_column) not in sources
    ]
    return ColumnMapping(kept + list(overlay))


def check_entries(mapping: ColumnMapping, schema: TargetSchema = OBSERVATION_SCHEMA) -> None:
    """Reject unknown and repeated target fields."""
    unknown = [e.target_field for e in mapping if not schema.is_known(e.target_field)]
    if unknown:
        raise UnknownTargetField(unknown)

    seen: set[str] = set()
    duplicates: list[str] = []
    for entry in mapping:
        if entry.target_field in seen and entry.target_field not in duplicates:
            duplicates.append(entry.target_field)
        seen.add(entry.target_field)
    if duplicates:
        raise DuplicateTargetField(duplicates)


def apply_and_validate(
    mapping: ColumnMapping,
    schema: TargetSchema = OBSERVATION_SCHEMA,
    headers: list[str] | None = None,
) -> ColumnMapping:
    """Validate a mapping and return it with schema-required flags applied.

    When ``headers`` is given, entries naming a column the file does not have
    are dropped and count as unassigned.

    Raises:
        UnknownTargetField / DuplicateTargetField: malformed entries.
        MissingRequiredField: lists every required field with no source column.
    """
    check_entries(mapping, schema)

    entries = list(mapping)
    if headers is not None:
        available = {normalize_header(h) for h in headers}
        dropped = [e for e in entries if normalize_header(e.source_column) not in available]
        if dropped:
            logger.info(
                "Ignoring mapping entries for absent columns: %s",
                ", ".join(e.source_column for e in dropped),
            )
        entries = [e for e in entries if normalize_header(e.source_column) in available]

    assigned = {e.target_field for e in entries}
    missing = [name for name in schema.required_fields if name not in assigned]
    if missing:
        raise MissingRequiredField(missing)

    resolved = []
    for entry in entries:
        target = schema.get(entry.target_field)
        required = entry.required or bool(target and target.required)
        resolved.append(MappingEntry(entry.source_column, entry.target_field, required))
    return ColumnMapping(resolved)


def resolve(
    headers: list[str],
    *,
    template: ColumnMapping | None = None,
    overrides: ColumnMapping | None = None,
    replace_auto: bool = False,
    schema: TargetSchema = OBSERVATION_SCHEMA,
) -> ColumnMapping:
    """Auto-detect (unless replaced), layer template then overrides, validate."""
    mapping = ColumnMapping() if replace_auto else auto_detect(headers, schema)
    if template is not None:
        mapping = layer(mapping, template)
    if overrides is not None:
        mapping = layer(mapping, overrides)
    return apply_and_validate(mapping, schema, headers)
