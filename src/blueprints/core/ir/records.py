"""
Record types for the six blueprint artifacts.

Each record is one line of text. Models are frozen so records can be
compared, hashed and de-duplicated by value.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from .ids import IdKind, RecordId


class Artifact(StrEnum):
    """The six blueprint documents, in file order."""

    REQUIREMENTS = "requirements"
    SPEC = "spec"
    CONTRACTS = "contracts"
    TEST_VECTORS = "test-vectors"
    DELIVERY_PLAN = "delivery-plan"
    LIFECYCLE = "lifecycle"

    @property
    def filename(self) -> str:
        return ARTIFACT_FILES[self]


ARTIFACT_FILES: dict[Artifact, str] = {
    Artifact.REQUIREMENTS: "01-requirements.md",
    Artifact.SPEC: "02-spec.md",
    Artifact.CONTRACTS: "03-contracts.md",
    Artifact.TEST_VECTORS: "04-test-vectors.md",
    Artifact.DELIVERY_PLAN: "05-delivery-plan.md",
    Artifact.LIFECYCLE: "06-lifecycle.md",
}

# Which artifact owns the records of each id kind
KIND_ARTIFACT: dict[IdKind, Artifact] = {
    IdKind.REQUIREMENT: Artifact.REQUIREMENTS,
    IdKind.CLAUSE: Artifact.SPEC,
    IdKind.CONTRACT: Artifact.CONTRACTS,
    IdKind.TEST_VECTOR: Artifact.TEST_VECTORS,
    IdKind.DELIVERY: Artifact.DELIVERY_PLAN,
}


class ClauseField(StrEnum):
    """Optional spec clause fields, declared in canonical order."""

    IF = "IF"
    ER = "ER"
    LM = "LM"
    OB = "OB"


class VectorField(StrEnum):
    """Optional test vector fields, declared in canonical order."""

    ERR = "ERR"
    DET = "DET"
    OB = "OB"


class TestLevel(StrEnum):
    """Test-level tags, declared in canonical order."""

    UNIT = "U"
    INTEGRATION = "I"
    PROPERTY = "P"


class ContractKind(StrEnum):
    TYPE = "TYPE"
    API = "API"
    INTEGRATION = "INTEGRATION"


class LifecycleStatus(StrEnum):
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    REMOVED = "removed"


class TaskSection(StrEnum):
    """Fixed section headings under a milestone."""

    TEST = "Test Tasks"
    IMPLEMENTATION = "Implementation Tasks"
    NOTES = "Notes"


PLACEHOLDER_PREFIX = "PLACEHOLDER:"


class Requirement(BaseModel):
    """
    A human-authored requirement: ``R-001 - The system does X.``

    Immutable source of intent; never derived.
    """

    record_type: Literal["requirement"] = "requirement"
    id: RecordId
    text: str

    model_config = ConfigDict(frozen=True)


class SpecClause(BaseModel):
    """
    A spec clause realizing one or more requirements.

    Attributes:
        id: ``S-nnn`` or ``S-nnn.m``
        requirements: Referenced requirement ids, ordered, duplicate-free
        statement: The imperative DO text
        title: Short stable title (4-7 words), copied into the milestone
        options: Optional fields as (field, text) pairs in canonical order
    """

    record_type: Literal["clause"] = "clause"
    id: RecordId
    requirements: tuple[RecordId, ...]
    statement: str
    title: str
    options: tuple[tuple[ClauseField, str], ...] = ()

    model_config = ConfigDict(frozen=True)

    def option(self, field: ClauseField) -> str | None:
        for key, value in self.options:
            if key == field:
                return value
        return None


class CoverageExemption(BaseModel):
    """Requirements intentionally not realized by any spec clause."""

    record_type: Literal["coverage"] = "coverage"
    requirements: tuple[RecordId, ...]
    reason: str

    model_config = ConfigDict(frozen=True)


class ContractItem(BaseModel):
    """An opaque contract entry keyed by ``C-nnn``; the body is not checked."""

    record_type: Literal["contract"] = "contract"
    id: RecordId
    kind: ContractKind
    body: str

    model_config = ConfigDict(frozen=True)


class TestVector(BaseModel):
    """
    A canonical test case.

    Requirement and clause lists are strictly ascending; levels are
    non-empty and in U, I, P order.
    """

    record_type: Literal["test_vector"] = "test_vector"
    id: RecordId
    requirements: tuple[RecordId, ...]
    clauses: tuple[RecordId, ...]
    levels: tuple[TestLevel, ...]
    given: str
    when: str
    then: str
    options: tuple[tuple[VectorField, str], ...] = ()

    model_config = ConfigDict(frozen=True)


class DeliveryItem(BaseModel):
    """
    A checklist task in the delivery plan.

    Refs list S ids first, then C ids, then TV ids. A test task carries
    exactly one TV id, an implementation task none, so the kind of an
    item follows from its refs.
    """

    record_type: Literal["delivery"] = "delivery"
    id: RecordId
    checked: bool = False
    text: str
    refs: tuple[RecordId, ...]

    model_config = ConfigDict(frozen=True)

    @property
    def clause_refs(self) -> tuple[RecordId, ...]:
        return tuple(r for r in self.refs if r.kind == IdKind.CLAUSE)

    @property
    def contract_refs(self) -> tuple[RecordId, ...]:
        return tuple(r for r in self.refs if r.kind == IdKind.CONTRACT)

    @property
    def vector_refs(self) -> tuple[RecordId, ...]:
        return tuple(r for r in self.refs if r.kind == IdKind.TEST_VECTOR)

    @property
    def section(self) -> TaskSection:
        return TaskSection.TEST if self.vector_refs else TaskSection.IMPLEMENTATION

    @property
    def is_placeholder(self) -> bool:
        return self.text.startswith(PLACEHOLDER_PREFIX)


class MilestoneHeading(BaseModel):
    """``## S-001 - <title>``: opens the milestone for one clause."""

    record_type: Literal["milestone"] = "milestone"
    clause: RecordId
    title: str

    model_config = ConfigDict(frozen=True)


class LifecycleRecord(BaseModel):
    """An append-only status marker over any artifact id."""

    record_type: Literal["lifecycle"] = "lifecycle"
    target: RecordId
    status: LifecycleStatus
    reason: str
    effective: str | None = None
    replace_by: RecordId | None = None

    model_config = ConfigDict(frozen=True)


Record = Annotated[
    Requirement
    | SpecClause
    | CoverageExemption
    | ContractItem
    | TestVector
    | DeliveryItem
    | MilestoneHeading
    | LifecycleRecord,
    Field(discriminator="record_type"),
]

# Records carrying their own id (lifecycle records point at other ids)
IdRecord = Requirement | SpecClause | ContractItem | TestVector | DeliveryItem


def record_id(record: object) -> RecordId | None:
    """Own id of a record, or None for coverage/milestone/lifecycle lines."""
    if isinstance(record, (Requirement, SpecClause, ContractItem, TestVector, DeliveryItem)):
        return record.id
    return None


def same_content(a: object, b: object) -> bool:
    """True when two records are equal apart from their own id."""
    if type(a) is not type(b):
        return False
    if record_id(a) is None:
        return a == b
    return a.model_dump(exclude={"id"}) == b.model_dump(exclude={"id"})  # type: ignore[attr-defined]
