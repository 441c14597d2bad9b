"""Core blueprint engine: grammar, document model, integrity checks, id allocation, plans, traceability, iteration control."""

from . import ir
from .allocator import IdAllocator, IdPolicy
from .controller import IterationController, LoopConfig, LoopOutcome, LoopState
from .errors import (
    BlueprintsError,
    ErrorContext,
    GrammarError,
    IntegrityError,
    ManifestError,
    PlanError,
    PolicyError,
    PreconditionError,
    ProtocolError,
)
from .init import InitError, init_blueprints
from .lint import lint_document
from .parser import load_document, parse_text, write_document
from .plan import AddOp, RemoveOp, ReplaceOp, apply_plan, parse_plan
from .sync import SyncResult, sync_signal, synchronize
from .traceability import derive_traceability
from .validator import Violation, check_integrity

__all__ = [
    "ir",
    "BlueprintsError",
    "ErrorContext",
    "GrammarError",
    "IntegrityError",
    "ManifestError",
    "PlanError",
    "PolicyError",
    "PreconditionError",
    "ProtocolError",
    "InitError",
    "init_blueprints",
    "IdAllocator",
    "IdPolicy",
    "IterationController",
    "LoopConfig",
    "LoopOutcome",
    "LoopState",
    "lint_document",
    "load_document",
    "parse_text",
    "write_document",
    "AddOp",
    "ReplaceOp",
    "RemoveOp",
    "apply_plan",
    "parse_plan",
    "SyncResult",
    "synchronize",
    "sync_signal",
    "derive_traceability",
    "Violation",
    "check_integrity",
]
