"""Traceability row types (derived each pass, never stored)."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from .ids import RecordId


class CoverageStatus(StrEnum):
    COVERED = "Covered"
    MISSING = "Missing"


class TraceabilityRow(BaseModel):
    """
    Coverage summary for one spec clause.

    Attributes:
        clause: Spec clause id
        title: Clause title
        tv_count: Distinct test vectors referencing the clause
        test_tasks: Test items in the clause's milestone
        impl_tasks: Implementation items in the milestone (placeholders excluded)
        integration: Integration tag or integration-flavored item present
        property: Property tag or property-flavored item present
        status: Covered or Missing
    """

    clause: RecordId
    title: str
    tv_count: int
    test_tasks: int
    impl_tasks: int
    integration: bool
    property: bool
    status: CoverageStatus

    model_config = ConfigDict(frozen=True)
