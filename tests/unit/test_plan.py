"""Tests for the plan differ and the textual plan format."""

import pytest

from blueprints.core import ir
from blueprints.core.errors import GrammarError, PlanError
from blueprints.core.plan import (
    AddOp,
    RemoveOp,
    _place_item,
    apply_plan,
    extract_plan_block,
    format_op,
    parse_plan,
)

NEW_CLAUSE_PLAN = """\
# log events
ADD requirements R-NEW - The system shall log name events.
ADD spec S-NEW | R:R-003 | DO:Write an audit entry | TITLE:Log every stored name event
"""

TEST_AND_IMPL_PLAN = """\
ADD test-vectors TV-NEW | R:R-001 | S:S-001 | L:U | GIVEN:x | WHEN:y | THEN:z
ADD delivery-plan - [ ] DP-NEW Write unit test; Refs: S-001, TV-001
ADD delivery-plan - [ ] DP-NEW Implement storage; Refs: S-001
"""


# =============================================================================
# Textual plans
# =============================================================================


class TestParsePlan:
    def test_verbs(self) -> None:
        ops = parse_plan(
            "ADD spec COVERAGE | R:R-003 | REASON:ops-only\n"
            "REPLACE R-001 R-001 - The system shall keep names.\n"
            "REMOVE DP-099\n"
        )
        assert [type(op).__name__ for op in ops] == ["AddOp", "ReplaceOp", "RemoveOp"]

    def test_comments_and_blank_lines_skipped(self) -> None:
        assert parse_plan("# nothing to do\n\n") == []

    def test_add_lines_are_normalized(self) -> None:
        ops = parse_plan("ADD spec COVERAGE |R:R-003|  REASON:ops-only")
        assert format_op(ops[0]) == "ADD spec COVERAGE | R:R-003 | REASON:ops-only"

    def test_unknown_verb(self) -> None:
        with pytest.raises(PlanError):
            parse_plan("MOVE R-001 R-002")

    def test_unknown_artifact(self) -> None:
        with pytest.raises(PlanError):
            parse_plan("ADD glossary R-NEW - Something.")

    def test_grammar_error_is_located(self) -> None:
        with pytest.raises(GrammarError) as exc_info:
            parse_plan("# first\nADD requirements R-NEW - missing punctuation")
        assert exc_info.value.context.line == 2


class TestExtractPlanBlock:
    def test_block_between_markers(self) -> None:
        output = "thinking...\n---PLAN START---\nREMOVE DP-099\n---PLAN END---\ndone\n"
        assert extract_plan_block(output) == "REMOVE DP-099"

    def test_missing_end_marker(self) -> None:
        assert extract_plan_block("---PLAN START---\nREMOVE DP-099\n") is None

    def test_no_block(self) -> None:
        assert extract_plan_block("__BLUEPRINTS_COMPLETED__") is None


# =============================================================================
# Applying plans
# =============================================================================


class TestApplyPlan:
    def test_placeholders_are_allocated(self, sample_document: ir.DocumentModel) -> None:
        result = apply_plan(sample_document, parse_plan(NEW_CLAUSE_PLAN))
        assert [str(rid) for rid in result.added] == ["R-003", "S-003"]
        assert [str(c.id) for c in result.document.clauses] == ["S-001", "S-002", "S-003"]
        assert result.touched == {ir.Artifact.REQUIREMENTS, ir.Artifact.SPEC}

    def test_reapplying_is_a_no_op(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan(NEW_CLAUSE_PLAN)
        first = apply_plan(sample_document, ops)
        second = apply_plan(first.document, ops)
        assert not second.changed
        assert len(second.skipped) == 2
        assert second.document == first.document

    def test_tasks_open_milestone_and_sections(self, sample_document: ir.DocumentModel) -> None:
        result = apply_plan(sample_document, parse_plan(TEST_AND_IMPL_PLAN))
        assert result.document.file(ir.Artifact.DELIVERY_PLAN).render() == (
            "# Delivery Plan\n"
            "\n"
            "## S-001 - Store submitted user names durably\n"
            "\n"
            "### Test Tasks\n"
            "- [ ] DP-001 Write unit test; Refs: S-001, TV-001\n"
            "\n"
            "### Implementation Tasks\n"
            "- [ ] DP-002 Implement storage; Refs: S-001\n"
        )

    def test_coverage_overlap_rejected(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan("ADD spec COVERAGE | R:R-001 | REASON:policy-only")
        with pytest.raises(PlanError) as exc_info:
            apply_plan(sample_document, ops)
        assert "referenced by a spec clause and a coverage exemption" in str(exc_info.value)

    def test_remove_missing_record_is_a_no_op(self, sample_document: ir.DocumentModel) -> None:
        result = apply_plan(sample_document, [RemoveOp(ir.RecordId.parse("DP-099"))])
        assert not result.changed
        assert result.document == sample_document

    def test_merge_of_different_requirement_sets_rejected(
        self, sample_document: ir.DocumentModel
    ) -> None:
        ops = parse_plan(
            "ADD test-vectors TV-NEW | R:R-001 | S:S-001,S-002 | L:U | GIVEN:x | WHEN:y | THEN:z"
        )
        with pytest.raises(PlanError):
            apply_plan(sample_document, ops)

    def test_unknown_reference_rejected(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan(
            "ADD spec S-NEW | R:R-042 | DO:Anything | TITLE:Refer to a missing requirement"
        )
        with pytest.raises(PlanError):
            apply_plan(sample_document, ops)

    def test_rejection_applies_nothing(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan(
            "ADD requirements R-NEW - The system shall log name events.\n"
            "ADD spec COVERAGE | R:R-001 | REASON:policy-only\n"
        )
        with pytest.raises(PlanError):
            apply_plan(sample_document, ops)
        assert len(sample_document.requirements) == 2

    def test_issued_id_cannot_be_reused(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan("ADD requirements R-002 - The system shall log name events.")
        with pytest.raises(PlanError):
            apply_plan(sample_document, ops)

    def test_removed_ids_are_not_reissued(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan(
            "REMOVE S-002\n"
            "ADD spec S-NEW | R:R-002 | DO:Refuse blank names | TITLE:Reject names that are empty\n"
        )
        result = apply_plan(sample_document, ops)
        assert [str(c.id) for c in result.document.clauses] == ["S-001", "S-003"]

    def test_sub_clause_allocation(self, sample_document: ir.DocumentModel) -> None:
        clause = ir.SpecClause(
            id=ir.RecordId.placeholder(ir.IdKind.CLAUSE),
            requirements=(ir.RecordId.parse("R-001"),),
            statement="Trim surrounding whitespace",
            title="Trim whitespace from stored names",
        )
        result = apply_plan(
            sample_document, [AddOp(clause, parent=ir.RecordId.parse("S-001"))]
        )
        assert [str(c.id) for c in result.document.clauses] == ["S-001", "S-001.1", "S-002"]

    def test_replace_clause_title_updates_milestone(
        self, covered_document: ir.DocumentModel
    ) -> None:
        ops = parse_plan(
            "REPLACE S-001 S-001 | R:R-001 | DO:Persist each submitted user name "
            "| TITLE:Store submitted user names safely"
        )
        result = apply_plan(covered_document, ops)
        milestone = result.document.milestone(ir.RecordId.parse("S-001"))
        assert milestone is not None
        assert milestone.title == "Store submitted user names safely"
        assert ir.Artifact.DELIVERY_PLAN in result.touched

    def test_replace_unchanged_is_skipped(self, covered_document: ir.DocumentModel) -> None:
        ops = parse_plan("REPLACE R-001 R-001 - The system shall store user names.")
        result = apply_plan(covered_document, ops)
        assert not result.changed

    def test_replace_missing_record(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan("REPLACE R-009 R-009 - The system shall log.")
        with pytest.raises(PlanError):
            apply_plan(sample_document, ops)

    def test_replace_of_id_added_in_same_plan_rejected(
        self, sample_document: ir.DocumentModel
    ) -> None:
        ops = parse_plan(
            NEW_CLAUSE_PLAN + "REPLACE R-003 R-003 - The system shall log every name event.\n"
        )
        with pytest.raises(PlanError) as exc_info:
            apply_plan(sample_document, ops)
        assert "'R-003' is added by this plan" in str(exc_info.value)

    def test_remove_of_id_added_in_same_plan_rejected(
        self, sample_document: ir.DocumentModel
    ) -> None:
        ops = parse_plan(
            "ADD requirements R-NEW - The system shall log name events.\nREMOVE R-003\n"
        )
        with pytest.raises(PlanError):
            apply_plan(sample_document, ops)

    def test_add_then_edit_is_stable_across_runs(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan(
            NEW_CLAUSE_PLAN + "REPLACE R-003 R-003 - The system shall log every name event.\n"
        )
        for _ in range(2):
            with pytest.raises(PlanError):
                apply_plan(sample_document, ops)
        assert [str(r.id) for r in sample_document.requirements] == ["R-001", "R-002"]

    def test_lifecycle_entries_append(self, sample_document: ir.DocumentModel) -> None:
        ops = parse_plan("ADD lifecycle R-002 | STATUS:deprecated | REASON:superseded")
        result = apply_plan(sample_document, ops)
        assert [str(r.target) for r in result.document.lifecycle] == ["R-002"]

    def test_item_without_milestone_rejected(self) -> None:
        item = ir.DeliveryItem(
            id=ir.RecordId.parse("DP-001"),
            text="Implement storage",
            refs=(ir.RecordId.parse("S-001"),),
        )
        with pytest.raises(PlanError) as exc_info:
            _place_item([], item)
        assert "no milestone for 'S-001'" in str(exc_info.value)
