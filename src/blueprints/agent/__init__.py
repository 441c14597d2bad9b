"""
Adapters for the collaborators outside the engine: external review/build
passes and host verification commands.
"""

from .passes import CommandPass, PassResult, PassRole, ValidatedPass, merge_signals
from .verify import CommandVerifier, UncheckedItemsGate, VerificationResult

__all__ = [
    "CommandPass",
    "PassResult",
    "PassRole",
    "ValidatedPass",
    "merge_signals",
    "CommandVerifier",
    "UncheckedItemsGate",
    "VerificationResult",
]
