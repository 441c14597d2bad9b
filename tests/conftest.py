"""Shared pytest fixtures for blueprints tests."""

from pathlib import Path

import pytest

from blueprints.core import ir
from blueprints.core.parser import parse_texts

REQUIREMENTS = """\
# Requirements

R-001 - The system shall store user names.
R-002 - The system shall reject empty names.
"""

SPEC = """\
# Spec

S-001 | R:R-001 | DO:Persist each submitted user name | TITLE:Store submitted user names durably
S-002 | R:R-002 | DO:Refuse names that are empty | TITLE:Reject names that are empty
"""

CONTRACTS = "# Contracts\n"
TEST_VECTORS = "# Test Vectors\n"
DELIVERY_PLAN = "# Delivery Plan\n"
LIFECYCLE = "# Lifecycle\n"

COVERED_TEST_VECTORS = """\
# Test Vectors

TV-001 | R:R-001 | S:S-001 | L:U | GIVEN:x | WHEN:y | THEN:z
"""

COVERED_DELIVERY_PLAN = """\
# Delivery Plan

## S-001 - Store submitted user names durably

### Test Tasks
- [ ] DP-001 Write unit test for name storage; Refs: S-001, TV-001

### Implementation Tasks
- [ ] DP-002 Implement name storage; Refs: S-001
"""


def write_blueprints(directory: Path, texts: dict[ir.Artifact, str]) -> Path:
    """Write artifact texts into a blueprints directory."""
    directory.mkdir(parents=True, exist_ok=True)
    for artifact, text in texts.items():
        (directory / artifact.filename).write_text(text, encoding="ascii", newline="")
    return directory


@pytest.fixture
def sample_texts() -> dict[ir.Artifact, str]:
    """Two requirements, two clauses, nothing tested or planned yet."""
    return {
        ir.Artifact.REQUIREMENTS: REQUIREMENTS,
        ir.Artifact.SPEC: SPEC,
        ir.Artifact.CONTRACTS: CONTRACTS,
        ir.Artifact.TEST_VECTORS: TEST_VECTORS,
        ir.Artifact.DELIVERY_PLAN: DELIVERY_PLAN,
        ir.Artifact.LIFECYCLE: LIFECYCLE,
    }


@pytest.fixture
def covered_texts(sample_texts: dict[ir.Artifact, str]) -> dict[ir.Artifact, str]:
    """S-001 has a test vector, a test task and an implementation task."""
    return {
        **sample_texts,
        ir.Artifact.TEST_VECTORS: COVERED_TEST_VECTORS,
        ir.Artifact.DELIVERY_PLAN: COVERED_DELIVERY_PLAN,
    }


@pytest.fixture
def sample_document(sample_texts: dict[ir.Artifact, str]) -> ir.DocumentModel:
    return parse_texts(sample_texts)


@pytest.fixture
def covered_document(covered_texts: dict[ir.Artifact, str]) -> ir.DocumentModel:
    return parse_texts(covered_texts)


@pytest.fixture
def blueprints_dir(tmp_path: Path, sample_texts: dict[ir.Artifact, str]) -> Path:
    """A blueprints directory on disk holding the sample texts."""
    return write_blueprints(tmp_path / "blueprints", sample_texts)


@pytest.fixture
def covered_dir(tmp_path: Path, covered_texts: dict[ir.Artifact, str]) -> Path:
    return write_blueprints(tmp_path / "blueprints", covered_texts)
