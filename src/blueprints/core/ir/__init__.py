"""
Blueprint Intermediate Representation (IR) types.

Record, id and document types for the six blueprint artifacts. All types
are re-exported from this package.
"""

from .document import (
    ArtifactFile,
    DocumentModel,
    Line,
    LineKind,
    Milestone,
)
from .ids import (
    IdKind,
    RecordId,
    format_id_list,
)
from .records import (
    ARTIFACT_FILES,
    KIND_ARTIFACT,
    PLACEHOLDER_PREFIX,
    Artifact,
    ClauseField,
    ContractItem,
    ContractKind,
    CoverageExemption,
    DeliveryItem,
    IdRecord,
    LifecycleRecord,
    LifecycleStatus,
    MilestoneHeading,
    Record,
    Requirement,
    SpecClause,
    TaskSection,
    TestLevel,
    TestVector,
    VectorField,
    record_id,
    same_content,
)
from .traceability import (
    CoverageStatus,
    TraceabilityRow,
)

__all__ = [
    # Ids
    "IdKind",
    "RecordId",
    "format_id_list",
    # Records
    "ARTIFACT_FILES",
    "KIND_ARTIFACT",
    "PLACEHOLDER_PREFIX",
    "Artifact",
    "ClauseField",
    "ContractItem",
    "ContractKind",
    "CoverageExemption",
    "DeliveryItem",
    "IdRecord",
    "LifecycleRecord",
    "LifecycleStatus",
    "MilestoneHeading",
    "Record",
    "Requirement",
    "SpecClause",
    "TaskSection",
    "TestLevel",
    "TestVector",
    "VectorField",
    "record_id",
    "same_content",
    # Document
    "ArtifactFile",
    "DocumentModel",
    "Line",
    "LineKind",
    "Milestone",
    # Traceability
    "CoverageStatus",
    "TraceabilityRow",
]
