"""
Document model for a blueprints directory.

An ``ArtifactFile`` keeps every line of its source in order, typed either
as a structural line (blank, heading, section heading, note) kept
verbatim, or as a parsed record. Rendering an unedited file reproduces
the source byte for byte.

A ``DocumentModel`` bundles the six artifact files and offers typed views
over them (requirements, clauses, milestones, ...).
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .ids import IdKind, RecordId
from .records import (
    KIND_ARTIFACT,
    Artifact,
    ContractItem,
    CoverageExemption,
    DeliveryItem,
    LifecycleRecord,
    MilestoneHeading,
    Record,
    Requirement,
    SpecClause,
    TaskSection,
    TestVector,
    record_id,
)


class LineKind(StrEnum):
    BLANK = "blank"
    HEADING = "heading"
    SECTION = "section"
    NOTE = "note"
    RECORD = "record"


class Line(BaseModel):
    """
    One line of an artifact file.

    Attributes:
        kind: Structural kind of the line
        text: Verbatim text for structural lines, empty for records
        section: Section for ``SECTION`` lines
        record: Parsed record for ``RECORD`` lines
    """

    kind: LineKind
    text: str = ""
    section: TaskSection | None = None
    record: Record | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def of(cls, record: Any) -> "Line":
        return cls(kind=LineKind.RECORD, record=record)


class ArtifactFile(BaseModel):
    """Ordered lines of one blueprint file."""

    artifact: Artifact
    path: Path | None = None
    lines: list[Line] = Field(default_factory=list)
    trailing_newline: bool = True

    model_config = ConfigDict(frozen=True)

    def records(self) -> list[Any]:
        return [line.record for line in self.lines if line.kind == LineKind.RECORD]

    def is_empty(self) -> bool:
        return not self.records()

    def render(self) -> str:
        # Imported here: grammar depends on ir, not the other way round
        from ..grammar import render_line

        if not self.lines:
            return ""
        body = "\n".join(render_line(line) for line in self.lines)
        return body + "\n" if self.trailing_newline else body

    def with_lines(self, lines: list[Line]) -> "ArtifactFile":
        return self.model_copy(update={"lines": lines})


class Milestone(BaseModel):
    """
    Derived view of one milestone in the delivery plan.

    Attributes:
        clause: Spec clause id the milestone belongs to
        title: Title copied from the clause
        test_items: Items under "Test Tasks", in file order
        impl_items: Items under "Implementation Tasks", in file order
        notes: Free-text note lines
    """

    clause: RecordId
    title: str
    test_items: list[DeliveryItem] = Field(default_factory=list)
    impl_items: list[DeliveryItem] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    @property
    def items(self) -> list[DeliveryItem]:
        return self.test_items + self.impl_items


class DocumentModel(BaseModel):
    """All six blueprint artifacts, parsed."""

    files: dict[Artifact, ArtifactFile]

    model_config = ConfigDict(frozen=True)

    @classmethod
    def empty(cls) -> "DocumentModel":
        return cls(files={a: ArtifactFile(artifact=a) for a in Artifact})

    def file(self, artifact: Artifact) -> ArtifactFile:
        return self.files.get(artifact) or ArtifactFile(artifact=artifact)

    def replace_file(self, updated: ArtifactFile) -> "DocumentModel":
        files = dict(self.files)
        files[updated.artifact] = updated
        return DocumentModel(files=files)

    # -- typed views ---------------------------------------------------------

    @property
    def requirements(self) -> list[Requirement]:
        return [r for r in self.file(Artifact.REQUIREMENTS).records() if isinstance(r, Requirement)]

    @property
    def clauses(self) -> list[SpecClause]:
        return [r for r in self.file(Artifact.SPEC).records() if isinstance(r, SpecClause)]

    @property
    def coverage(self) -> list[CoverageExemption]:
        return [r for r in self.file(Artifact.SPEC).records() if isinstance(r, CoverageExemption)]

    @property
    def contracts(self) -> list[ContractItem]:
        return [r for r in self.file(Artifact.CONTRACTS).records() if isinstance(r, ContractItem)]

    @property
    def test_vectors(self) -> list[TestVector]:
        return [r for r in self.file(Artifact.TEST_VECTORS).records() if isinstance(r, TestVector)]

    @property
    def delivery_items(self) -> list[DeliveryItem]:
        return [
            r for r in self.file(Artifact.DELIVERY_PLAN).records() if isinstance(r, DeliveryItem)
        ]

    @property
    def lifecycle(self) -> list[LifecycleRecord]:
        return [r for r in self.file(Artifact.LIFECYCLE).records() if isinstance(r, LifecycleRecord)]

    def milestones(self) -> list[Milestone]:
        """Group delivery items under their milestone and section."""
        milestones: list[Milestone] = []
        current: Milestone | None = None
        section: TaskSection | None = None
        for line in self.file(Artifact.DELIVERY_PLAN).lines:
            if line.kind == LineKind.RECORD and isinstance(line.record, MilestoneHeading):
                current = Milestone(clause=line.record.clause, title=line.record.title)
                milestones.append(current)
                section = None
            elif line.kind == LineKind.SECTION:
                section = line.section
            elif current is None:
                continue
            elif line.kind == LineKind.RECORD and isinstance(line.record, DeliveryItem):
                if section == TaskSection.TEST:
                    current.test_items.append(line.record)
                else:
                    current.impl_items.append(line.record)
            elif line.kind == LineKind.NOTE:
                current.notes.append(line.text)
        return milestones

    def milestone(self, clause: RecordId) -> Milestone | None:
        for milestone in self.milestones():
            if milestone.clause == clause:
                return milestone
        return None

    # -- id lookups ----------------------------------------------------------

    def records_of(self, kind: IdKind) -> list[Any]:
        artifact = KIND_ARTIFACT[kind]
        return [
            r
            for r in self.file(artifact).records()
            if (rid := record_id(r)) is not None and rid.kind == kind
        ]

    def ids(self, kind: IdKind) -> list[RecordId]:
        """Ids of the given kind, in file order."""
        return [r.id for r in self.records_of(kind)]

    def find(self, target: RecordId) -> Any | None:
        for record in self.records_of(target.kind):
            if record.id == target:
                return record
        return None

    def iter_records(self) -> Iterator[tuple[Artifact, Any]]:
        for artifact in Artifact:
            for record in self.file(artifact).records():
                yield artifact, record
