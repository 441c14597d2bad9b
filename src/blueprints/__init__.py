"""
Blueprints - traceability and synchronization for line-oriented design documents.

Keeps requirements, spec clauses, contracts, test vectors, a delivery
plan and a lifecycle ledger mutually consistent under repeated, partial,
agent-driven edits.
"""

from __future__ import annotations

from ._version import get_version

# Re-export commonly used types for convenience
from .core import ir
from .core.errors import (
    BlueprintsError,
    GrammarError,
    IntegrityError,
    PlanError,
    PreconditionError,
)

__version__ = get_version()

__all__ = [
    "__version__",
    "ir",
    "BlueprintsError",
    "GrammarError",
    "IntegrityError",
    "PlanError",
    "PreconditionError",
]
