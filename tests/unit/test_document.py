"""Tests for document loading, the document model and atomic writes."""

from pathlib import Path

import pytest

from blueprints.core import ir
from blueprints.core.errors import GrammarError, RejectReason
from blueprints.core.parser import _check_plan_structure, load_document, parse_text, write_document

PLAN_WITH_NOTES = """\
# Delivery Plan

## S-001 - Store submitted user names durably

### Test Tasks
- [x] DP-001 Write unit test for name storage; Refs: S-001, TV-001

### Implementation Tasks
- [ ] DP-002 Implement name storage; Refs: S-001

### Notes
  keep the storage layer thin
"""


class TestRoundTrip:
    def test_unedited_files_render_byte_identical(self, covered_texts) -> None:
        for artifact, text in covered_texts.items():
            assert parse_text(artifact, text).render() == text

    def test_missing_trailing_newline_is_kept(self) -> None:
        text = "# Requirements\n\nR-001 - The system shall store user names."
        assert parse_text(ir.Artifact.REQUIREMENTS, text).render() == text

    def test_notes_and_sections_survive(self) -> None:
        parsed = parse_text(ir.Artifact.DELIVERY_PLAN, PLAN_WITH_NOTES)
        assert parsed.render() == PLAN_WITH_NOTES

    def test_empty_text(self) -> None:
        parsed = parse_text(ir.Artifact.CONTRACTS, "")
        assert parsed.is_empty()
        assert parsed.render() == ""


class TestParseErrors:
    def test_crlf_line_endings_rejected(self) -> None:
        text = "# Requirements\r\nR-001 - The system shall store user names.\r\n"
        with pytest.raises(GrammarError) as exc_info:
            parse_text(ir.Artifact.REQUIREMENTS, text)
        assert exc_info.value.reason == RejectReason.NON_ASCII

    def test_error_is_located(self) -> None:
        text = "# Requirements\n\nR-001 - no terminal punctuation\n"
        with pytest.raises(GrammarError) as exc_info:
            parse_text(ir.Artifact.REQUIREMENTS, text, Path("01-requirements.md"))
        context = exc_info.value.context
        assert context is not None
        assert context.line == 3
        assert "01-requirements.md:3:1" in str(exc_info.value)

    def test_task_outside_section(self) -> None:
        text = (
            "## S-001 - Store submitted user names durably\n"
            "- [ ] DP-002 Implement name storage; Refs: S-001\n"
        )
        with pytest.raises(GrammarError) as exc_info:
            parse_text(ir.Artifact.DELIVERY_PLAN, text)
        assert exc_info.value.context.line == 2

    def test_test_task_needs_a_vector(self) -> None:
        text = (
            "## S-001 - Store submitted user names durably\n"
            "### Test Tasks\n"
            "- [ ] DP-002 Implement name storage; Refs: S-001\n"
        )
        with pytest.raises(GrammarError) as exc_info:
            parse_text(ir.Artifact.DELIVERY_PLAN, text)
        assert exc_info.value.reason == RejectReason.BAD_VALUE

    def test_sections_out_of_order(self) -> None:
        text = (
            "## S-001 - Store submitted user names durably\n"
            "### Implementation Tasks\n"
            "### Test Tasks\n"
        )
        with pytest.raises(GrammarError) as exc_info:
            parse_text(ir.Artifact.DELIVERY_PLAN, text)
        assert exc_info.value.reason == RejectReason.FIELD_ORDER

    def test_free_text_outside_notes(self) -> None:
        text = "## S-001 - Store submitted user names durably\nsome stray text\n"
        with pytest.raises(GrammarError):
            parse_text(ir.Artifact.DELIVERY_PLAN, text)

    def test_section_line_without_section(self) -> None:
        lines = [ir.Line(kind=ir.LineKind.SECTION, text="### Extras")]
        with pytest.raises(GrammarError) as exc_info:
            _check_plan_structure(lines, None)
        assert exc_info.value.reason == RejectReason.UNRECOGNIZED


class TestDocumentModel:
    def test_typed_views(self, covered_document: ir.DocumentModel) -> None:
        assert [str(r.id) for r in covered_document.requirements] == ["R-001", "R-002"]
        assert [str(c.id) for c in covered_document.clauses] == ["S-001", "S-002"]
        assert len(covered_document.test_vectors) == 1
        assert len(covered_document.delivery_items) == 2

    def test_milestones_group_items(self, covered_document: ir.DocumentModel) -> None:
        milestones = covered_document.milestones()
        assert len(milestones) == 1
        milestone = milestones[0]
        assert str(milestone.clause) == "S-001"
        assert [str(i.id) for i in milestone.test_items] == ["DP-001"]
        assert [str(i.id) for i in milestone.impl_items] == ["DP-002"]

    def test_find(self, covered_document: ir.DocumentModel) -> None:
        clause = covered_document.find(ir.RecordId.parse("S-002"))
        assert isinstance(clause, ir.SpecClause)
        assert covered_document.find(ir.RecordId.parse("S-009")) is None

    def test_notes_collected(self) -> None:
        document = ir.DocumentModel.empty().replace_file(
            parse_text(ir.Artifact.DELIVERY_PLAN, PLAN_WITH_NOTES)
        )
        assert document.milestones()[0].notes == ["  keep the storage layer thin"]


class TestLoadAndWrite:
    def test_load_directory(self, covered_dir: Path) -> None:
        document = load_document(covered_dir)
        assert len(document.clauses) == 2
        assert document.file(ir.Artifact.SPEC).path == covered_dir / "02-spec.md"

    def test_missing_files_load_empty(self, tmp_path: Path) -> None:
        document = load_document(tmp_path)
        assert document.requirements == []
        assert document.file(ir.Artifact.LIFECYCLE).is_empty()

    def test_unchanged_document_writes_nothing(self, covered_dir: Path) -> None:
        document = load_document(covered_dir)
        assert write_document(covered_dir, document) == []

    def test_write_changed_file(self, blueprints_dir: Path) -> None:
        document = load_document(blueprints_dir)
        vectors = parse_text(
            ir.Artifact.TEST_VECTORS,
            "# Test Vectors\n\nTV-001 | R:R-001 | S:S-001 | L:U | GIVEN:x | WHEN:y | THEN:z\n",
        )
        written = write_document(blueprints_dir, document.replace_file(vectors))
        assert written == [blueprints_dir / "04-test-vectors.md"]
        assert "TV-001" in (blueprints_dir / "04-test-vectors.md").read_text()
        assert not list(blueprints_dir.glob(".*.tmp"))

    def test_empty_artifacts_are_not_created(self, tmp_path: Path) -> None:
        assert write_document(tmp_path, ir.DocumentModel.empty()) == []
        assert list(tmp_path.iterdir()) == []
