"""Tests for header auto-detection and mapping validation."""
import pytest

from app.core.errors import DuplicateTargetField, MissingRequiredField, UnknownTargetField
from app.services.column_mapper import (
    ColumnMapping,
    MappingEntry,
    apply_and_validate,
    auto_detect,
    layer,
    resolve,
)
from app.services.import_schema import FieldKind, TargetField, TargetSchema


def _targets(mapping: ColumnMapping) -> dict[str, str]:
    return {e.source_column: e.target_field for e in mapping}


# ─── auto_detect ──────────────────────────────────────────────────────────────

def test_basic_headers():
    mapping = auto_detect(["Title", "Risk", "Status"])
    assert _targets(mapping) == {"Title": "title", "Risk": "riskRating", "Status": "status"}
    assert [e.required for e in mapping] == [True, False, False]


def test_is_deterministic():
    headers = ["NC Ref", "Finding Title", "Details", "Business Unit", "Severity", "Due Date", "Owner", "Foo"]
    first = auto_detect(headers)
    assert all(auto_detect(list(headers)) == first for _ in range(5))


def test_exact_alias_beats_containment():
    mapping = auto_detect(["Finding Description", "Finding Title"])
    assert _targets(mapping) == {"Finding Description": "description", "Finding Title": "title"}


def test_longest_contained_alias_wins():
    # contains both "risk" (riskRating) and "root cause" (rootCause)
    mapping = auto_detect(["Root Cause of Risk"])
    assert _targets(mapping) == {"Root Cause of Risk": "rootCause"}


def test_alias_must_match_whole_words():
    # "cap" is an alias of correctiveAction; "capacity" must not match it
    assert _targets(auto_detect(["Capacity"])) == {}


def test_underscores_and_case_are_ignored():
    mapping = auto_detect(["RISK_RATING", "target_date"])
    assert _targets(mapping) == {"RISK_RATING": "riskRating", "target_date": "targetDate"}


def test_field_claimed_once():
    mapping = auto_detect(["Title", "Observation Title"])
    assert _targets(mapping) == {"Title": "title"}


def test_unmatched_headers_left_out():
    mapping = auto_detect(["Title", "Internal Notes #2", ""])
    assert _targets(mapping) == {"Title": "title"}


def test_review_quarter_columns():
    mapping = auto_detect(["Title", "Review Q1 2024", "Comments Q3-2023", "Update q4 2025"])
    assert _targets(mapping) == {
        "Title": "title",
        "Review Q1 2024": "reviewComment_Q1_2024",
        "Comments Q3-2023": "reviewComment_Q3_2023",
        "Update q4 2025": "reviewComment_Q4_2025",
    }


# ─── apply_and_validate ───────────────────────────────────────────────────────

SCHEMA = TargetSchema([
    TargetField("a", FieldKind.STRING, required=True),
    TargetField("b", FieldKind.STRING, required=True),
    TargetField("c", FieldKind.STRING),
])


@pytest.mark.parametrize(
    "assigned, missing",
    [
        ([], ["a", "b"]),
        (["a"], ["b"]),
        (["b", "c"], ["a"]),
        (["c"], ["a", "b"]),
    ],
)
def test_missing_required_lists_exactly_the_gaps(assigned, missing):
    mapping = ColumnMapping(MappingEntry(f"col_{t}", t) for t in assigned)
    with pytest.raises(MissingRequiredField) as exc_info:
        apply_and_validate(mapping, SCHEMA)
    assert exc_info.value.fields == missing
    assert exc_info.value.to_dict()["missing_fields"] == missing


def test_complete_mapping_passes_and_marks_required():
    mapping = ColumnMapping([MappingEntry("x", "a"), MappingEntry("y", "b"), MappingEntry("z", "c")])
    resolved = apply_and_validate(mapping, SCHEMA)
    assert [(e.target_field, e.required) for e in resolved] == [("a", True), ("b", True), ("c", False)]


def test_entry_for_absent_column_counts_as_unassigned():
    mapping = ColumnMapping([MappingEntry("Title", "title"), MappingEntry("Gone", "riskRating")])
    with pytest.raises(MissingRequiredField) as exc_info:
        apply_and_validate(mapping, headers=["Heading", "Gone"])
    assert exc_info.value.fields == ["title"]


def test_unknown_target_field():
    mapping = ColumnMapping([MappingEntry("Title", "title"), MappingEntry("Colour", "colour")])
    with pytest.raises(UnknownTargetField) as exc_info:
        apply_and_validate(mapping)
    assert exc_info.value.fields == ["colour"]


def test_duplicate_target_field():
    mapping = ColumnMapping([MappingEntry("Title", "title"), MappingEntry("Name", "title")])
    with pytest.raises(DuplicateTargetField):
        apply_and_validate(mapping)


def test_review_fields_are_known():
    mapping = ColumnMapping([MappingEntry("Title", "title"), MappingEntry("Q2", "reviewComment_Q2_2024")])
    assert len(apply_and_validate(mapping)) == 2


# ─── layering ─────────────────────────────────────────────────────────────────

def test_override_replaces_auto_entry_for_same_field_and_column():
    auto = auto_detect(["Title", "Risk", "Heading"])
    merged = layer(auto, ColumnMapping([MappingEntry("Heading", "title"), MappingEntry("Title", "description")]))
    assert _targets(merged) == {"Risk": "riskRating", "Heading": "title", "Title": "description"}


def test_resolve_with_replace_auto_uses_only_overrides():
    headers = ["Title", "Risk"]
    resolved = resolve(headers, overrides=ColumnMapping([MappingEntry("Title", "title")]), replace_auto=True)
    assert _targets(resolved) == {"Title": "title"}


def test_resolve_layers_template_then_overrides():
    headers = ["Heading", "Severity", "Desc"]
    template = ColumnMapping([MappingEntry("Heading", "title"), MappingEntry("Desc", "description")])
    overrides = ColumnMapping([MappingEntry("Desc", "rootCause")])
    resolved = resolve(headers, template=template, overrides=overrides)
    assert _targets(resolved) == {"Severity": "riskRating", "Heading": "title", "Desc": "rootCause"}


def test_mapping_serialises_round_trip():
    mapping = ColumnMapping([MappingEntry("Title", "title", True)])
    assert ColumnMapping.from_list(mapping.to_list()) == mapping
