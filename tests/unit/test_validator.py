"""Tests for the referential integrity checker."""

from blueprints.core import ir
from blueprints.core.lint import lint_document
from blueprints.core.parser import parse_texts
from blueprints.core.validator import (
    ViolationClass,
    blocking,
    check_append_only,
    check_integrity,
    check_issued_ids,
)


def codes(document: ir.DocumentModel) -> list[str]:
    return [v.code for v in check_integrity(document)]


def with_text(texts: dict[ir.Artifact, str], artifact: ir.Artifact, text: str) -> ir.DocumentModel:
    return parse_texts({**texts, artifact: text})


# =============================================================================
# Clean documents
# =============================================================================


class TestCleanDocuments:
    def test_sample_has_only_warnings(self, sample_document: ir.DocumentModel) -> None:
        violations = check_integrity(sample_document)
        assert blocking(violations) == []
        assert {v.code for v in violations} == {"missing-vector", "missing-milestone"}

    def test_covered_document(self, covered_document: ir.DocumentModel) -> None:
        violations = check_integrity(covered_document)
        assert blocking(violations) == []
        # S-002 still has neither a vector nor a milestone
        assert sorted(str(v.ids[0]) for v in violations) == ["S-002", "S-002"]


# =============================================================================
# (a) References
# =============================================================================


class TestReferences:
    def test_clause_references_unknown_requirement(self, sample_texts) -> None:
        spec = sample_texts[ir.Artifact.SPEC] + (
            "S-003 | R:R-009 | DO:Do more | TITLE:Handle the unknown requirement case\n"
        )
        violations = check_integrity(with_text(sample_texts, ir.Artifact.SPEC, spec))
        unknown = [v for v in violations if v.code == "unknown-ref"]
        assert len(unknown) == 1
        assert unknown[0].message == "Spec clause 'S-003' references unknown requirement 'R-009'"
        assert unknown[0].blocking

    def test_vector_references_unknown_clause(self, sample_texts) -> None:
        vectors = "TV-001 | R:R-001 | S:S-007 | L:U | GIVEN:x | WHEN:y | THEN:z\n"
        document = with_text(sample_texts, ir.Artifact.TEST_VECTORS, vectors)
        assert "unknown-ref" in codes(document)

    def test_item_references_unknown_contract(self, covered_texts) -> None:
        plan = covered_texts[ir.Artifact.DELIVERY_PLAN].replace(
            "Refs: S-001\n", "Refs: S-001, C-004\n"
        )
        document = with_text(covered_texts, ir.Artifact.DELIVERY_PLAN, plan)
        messages = [v.message for v in check_integrity(document)]
        assert "Delivery item 'DP-002' references unknown contract 'C-004'" in messages

    def test_duplicate_ids(self, sample_texts) -> None:
        reqs = sample_texts[ir.Artifact.REQUIREMENTS] + "R-002 - The system shall log.\n"
        document = with_text(sample_texts, ir.Artifact.REQUIREMENTS, reqs)
        assert "duplicate-id" in codes(document)

    def test_ids_out_of_order(self, sample_texts) -> None:
        reqs = (
            "R-002 - The system shall reject empty names.\n"
            "R-001 - The system shall store user names.\n"
        )
        document = with_text(sample_texts, ir.Artifact.REQUIREMENTS, reqs)
        assert "id-order" in codes(document)

    def test_removed_lifecycle_target_need_not_exist(self, sample_texts) -> None:
        ledger = "# Lifecycle\nR-007 | STATUS:removed | REASON:dropped\n"
        document = with_text(sample_texts, ir.Artifact.LIFECYCLE, ledger)
        assert blocking(check_integrity(document)) == []

    def test_deprecated_lifecycle_target_must_exist(self, sample_texts) -> None:
        ledger = "# Lifecycle\nR-007 | STATUS:deprecated | REASON:dropped\n"
        document = with_text(sample_texts, ir.Artifact.LIFECYCLE, ledger)
        assert "unknown-ref" in codes(document)

    def test_replacement_must_exist(self, sample_texts) -> None:
        ledger = "# Lifecycle\nR-001 | STATUS:deprecated | REASON:merged | REPLACE_BY:R-008\n"
        document = with_text(sample_texts, ir.Artifact.LIFECYCLE, ledger)
        assert "unknown-ref" in codes(document)


class TestMilestones:
    def test_title_must_match_clause(self, covered_texts) -> None:
        plan = covered_texts[ir.Artifact.DELIVERY_PLAN].replace(
            "Store submitted user names durably", "Store names"
        )
        document = with_text(covered_texts, ir.Artifact.DELIVERY_PLAN, plan)
        assert "milestone-title" in codes(document)

    def test_item_under_foreign_milestone(self, covered_texts) -> None:
        plan = covered_texts[ir.Artifact.DELIVERY_PLAN].replace(
            "DP-002 Implement name storage; Refs: S-001",
            "DP-002 Implement name storage; Refs: S-002",
        )
        document = with_text(covered_texts, ir.Artifact.DELIVERY_PLAN, plan)
        assert "foreign-milestone" in codes(document)

    def test_duplicate_milestone(self, covered_texts) -> None:
        plan = covered_texts[ir.Artifact.DELIVERY_PLAN] + (
            "\n## S-001 - Store submitted user names durably\n"
        )
        document = with_text(covered_texts, ir.Artifact.DELIVERY_PLAN, plan)
        assert "duplicate-milestone" in codes(document)


# =============================================================================
# (b) Coverage and (c) merge rules
# =============================================================================


class TestCoverage:
    def test_gap(self, sample_texts) -> None:
        reqs = sample_texts[ir.Artifact.REQUIREMENTS] + "R-003 - The system shall log.\n"
        violations = check_integrity(with_text(sample_texts, ir.Artifact.REQUIREMENTS, reqs))
        gaps = [v for v in violations if v.code == "coverage-gap"]
        assert [str(v.ids[0]) for v in gaps] == ["R-003"]
        assert gaps[0].category == ViolationClass.COVERAGE

    def test_exemption_closes_gap(self, sample_texts) -> None:
        reqs = sample_texts[ir.Artifact.REQUIREMENTS] + "R-003 - The system shall log.\n"
        spec = sample_texts[ir.Artifact.SPEC] + "COVERAGE | R:R-003 | REASON:ops-only\n"
        document = parse_texts(
            {**sample_texts, ir.Artifact.REQUIREMENTS: reqs, ir.Artifact.SPEC: spec}
        )
        assert blocking(check_integrity(document)) == []

    def test_overlap(self, sample_texts) -> None:
        spec = sample_texts[ir.Artifact.SPEC] + "COVERAGE | R:R-001 | REASON:policy-only\n"
        document = with_text(sample_texts, ir.Artifact.SPEC, spec)
        messages = [v.message for v in blocking(check_integrity(document))]
        assert messages == [
            "Requirement 'R-001' is referenced by a spec clause and a coverage exemption"
        ]


class TestVectorRules:
    def test_subset_rule(self, sample_texts) -> None:
        vectors = "TV-001 | R:R-001,R-002 | S:S-001 | L:U | GIVEN:x | WHEN:y | THEN:z\n"
        document = with_text(sample_texts, ir.Artifact.TEST_VECTORS, vectors)
        assert "subset-rule" in codes(document)

    def test_merge_rule(self, sample_texts) -> None:
        vectors = "TV-001 | R:R-001 | S:S-001,S-002 | L:U | GIVEN:x | WHEN:y | THEN:z\n"
        document = with_text(sample_texts, ir.Artifact.TEST_VECTORS, vectors)
        assert "merge-rule" in codes(document)

    def test_merge_of_identical_requirement_sets_is_valid(self, sample_texts) -> None:
        spec = sample_texts[ir.Artifact.SPEC] + (
            "S-003 | R:R-001 | DO:Trim stored names | TITLE:Trim whitespace from stored names\n"
        )
        vectors = "TV-001 | R:R-001 | S:S-001,S-003 | L:U | GIVEN:x | WHEN:y | THEN:z\n"
        document = parse_texts(
            {**sample_texts, ir.Artifact.SPEC: spec, ir.Artifact.TEST_VECTORS: vectors}
        )
        assert blocking(check_integrity(document)) == []


# =============================================================================
# (d)/(e) warnings, lint, append-only
# =============================================================================


class TestWarnings:
    def test_orphan_vector(self, sample_texts) -> None:
        vectors = "TV-001 | R:R-001 | S:S-001 | L:U | GIVEN:x | WHEN:y | THEN:z\n"
        violations = check_integrity(with_text(sample_texts, ir.Artifact.TEST_VECTORS, vectors))
        orphans = [v for v in violations if v.code == "orphan-vector"]
        assert len(orphans) == 1
        assert not orphans[0].blocking


class TestLint:
    def test_errors_and_warnings_split(self, sample_texts) -> None:
        spec = sample_texts[ir.Artifact.SPEC] + "COVERAGE | R:R-001 | REASON:policy-only\n"
        errors, warnings = lint_document(with_text(sample_texts, ir.Artifact.SPEC, spec))
        assert len(errors) == 1
        assert warnings

    def test_empty_document_warns(self) -> None:
        errors, warnings = lint_document(ir.DocumentModel.empty())
        assert errors == []
        assert "No requirements defined; nothing to trace." in warnings


class TestAppendOnly:
    LEDGER = "R-001 | STATUS:active | REASON:baseline\n"

    def test_append_is_allowed(self, sample_texts) -> None:
        before = with_text(sample_texts, ir.Artifact.LIFECYCLE, self.LEDGER)
        after = with_text(
            sample_texts,
            ir.Artifact.LIFECYCLE,
            self.LEDGER + "R-002 | STATUS:active | REASON:baseline\n",
        )
        assert check_append_only(before, after) == []

    def test_rewrite_is_rejected(self, sample_texts) -> None:
        before = with_text(sample_texts, ir.Artifact.LIFECYCLE, self.LEDGER)
        after = with_text(
            sample_texts, ir.Artifact.LIFECYCLE, "R-001 | STATUS:deprecated | REASON:baseline\n"
        )
        violations = check_append_only(before, after)
        assert [v.code for v in violations] == ["lifecycle-rewrite"]
        assert violations[0].blocking


class TestIssuedIds:
    def test_new_ids_above_high_water_mark(self, sample_texts) -> None:
        before = parse_texts(sample_texts)
        after = with_text(
            sample_texts,
            ir.Artifact.REQUIREMENTS,
            sample_texts[ir.Artifact.REQUIREMENTS] + "R-003 - The system shall log names.\n",
        )
        assert check_issued_ids(before, after) == []

    def test_reissued_id_is_rejected(self, sample_texts) -> None:
        before = with_text(
            sample_texts,
            ir.Artifact.REQUIREMENTS,
            sample_texts[ir.Artifact.REQUIREMENTS].replace("R-002", "R-004"),
        )
        after = parse_texts(sample_texts)

        violations = check_issued_ids(before, after)

        assert [(v.code, str(v.ids[0])) for v in violations] == [("id-reissued", "R-002")]
        assert violations[0].category == ViolationClass.MONOTONIC
        assert violations[0].blocking

    def test_retired_ids_count_as_issued(self, sample_texts) -> None:
        ledger = "R-005 | STATUS:removed | REASON:dropped\n"
        before = with_text(sample_texts, ir.Artifact.LIFECYCLE, ledger)
        after = with_text(
            {**sample_texts, ir.Artifact.LIFECYCLE: ledger},
            ir.Artifact.REQUIREMENTS,
            sample_texts[ir.Artifact.REQUIREMENTS] + "R-003 - The system shall log names.\n",
        )
        assert [str(v.ids[0]) for v in check_issued_ids(before, after)] == ["R-003"]
