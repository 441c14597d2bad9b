"""
External pass adapters.

A pass is any callable taking the current defect list and returning a
protocol ``Signal``. ``CommandPass`` runs a configured command; the
``ValidatedPass`` wrapper re-checks the blueprints after every pass so a
pass can never sign off on a document the engine considers broken.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from blueprints.core import ir
from blueprints.core.allocator import IdAllocator
from blueprints.core.errors import BlueprintsError, GrammarError
from blueprints.core.parser import load_document
from blueprints.core.plan import extract_plan_block, parse_plan
from blueprints.core.protocol import (
    Complete,
    Continue,
    Defect,
    Error,
    Signal,
    format_defects,
    parse_signal,
    renumber_defects,
)
from blueprints.core.sync import sync_signal, synchronize

logger = logging.getLogger(__name__)

ENV_ROLE = "BLUEPRINTS_ROLE"
ENV_DIR = "BLUEPRINTS_DIR"
ENV_FEEDBACK = "BLUEPRINTS_FEEDBACK"


class PassRole(StrEnum):
    REVIEWER = "reviewer"
    BUILDER = "builder"


@dataclass
class PassResult:
    """Raw result of one external pass."""

    stdout: str
    stderr: str
    returncode: int
    signal: Signal


class CommandPass:
    """
    Run an external command as one review or build pass.

    The command receives the defect list on stdin and in
    ``BLUEPRINTS_FEEDBACK``, its role in ``BLUEPRINTS_ROLE`` and the
    blueprints directory in ``BLUEPRINTS_DIR``. Its stdout is parsed for
    the control token. A failing or missing command maps to ``Error``.
    """

    def __init__(
        self,
        argv: list[str],
        role: PassRole,
        blueprints_dir: Path,
        cwd: Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ):
        if not argv:
            raise BlueprintsError(f"No {role} command configured")
        self.argv = list(argv)
        self.role = role
        self.blueprints_dir = blueprints_dir
        self.cwd = cwd
        self.timeout = timeout
        self.env = dict(env) if env is not None else None

    def _environment(self, feedback: str) -> dict[str, str]:
        env = dict(os.environ if self.env is None else self.env)
        env[ENV_ROLE] = str(self.role)
        env[ENV_DIR] = str(self.blueprints_dir)
        env[ENV_FEEDBACK] = feedback
        return env

    def run(self, defects: tuple[Defect, ...]) -> PassResult:
        feedback = format_defects(defects)
        logger.debug("Running %s pass: %s", self.role, " ".join(self.argv))
        try:
            completed = subprocess.run(
                self.argv,
                input=feedback,
                capture_output=True,
                text=True,
                cwd=self.cwd,
                env=self._environment(feedback),
                timeout=self.timeout,
            )
        except FileNotFoundError:
            reason = f"{self.role} command not found: {self.argv[0]}"
            return PassResult("", "", -1, Error(reason=reason))
        except subprocess.TimeoutExpired:
            reason = f"{self.role} pass timed out after {self.timeout}s"
            return PassResult("", "", -1, Error(reason=reason))

        if completed.returncode != 0:
            signal: Signal = Error(
                reason=f"{self.role} command failed (exit {completed.returncode})"
            )
        else:
            signal = parse_signal(completed.stdout)
        return PassResult(completed.stdout, completed.stderr, completed.returncode, signal)

    def __call__(self, defects: tuple[Defect, ...]) -> Signal:
        return self.run(defects).signal


class ValidatedPass:
    """
    Wrap a ``CommandPass`` with an engine synchronization pass.

    After the command runs, any ``---PLAN START---`` block in its output
    is applied, the directory is re-parsed and checked, and engine
    findings are merged into the pass's own verdict: the engine can turn
    a Complete into a Continue, never the other way round.

    The document is read before the command runs; a pass that rewrites
    the lifecycle ledger or renumbers issued ids gets a blocking defect.
    """

    def __init__(self, inner: CommandPass, allocator: IdAllocator | None = None):
        self.inner = inner
        self.allocator = allocator

    def _snapshot(self) -> ir.DocumentModel | None:
        try:
            return load_document(self.inner.blueprints_dir)
        except GrammarError as e:
            logger.debug("No baseline before %s pass: %s", self.inner.role, e)
            return None

    def __call__(self, defects: tuple[Defect, ...]) -> Signal:
        baseline = self._snapshot()
        result = self.inner.run(defects)
        if isinstance(result.signal, Error):
            return result.signal

        block = extract_plan_block(result.stdout)
        try:
            ops = []
            if block is not None:
                if not block.strip():
                    return Error(
                        reason=f"{self.inner.role} emitted an empty plan block"
                    )
                ops = parse_plan(block)
            engine = sync_signal(
                synchronize(
                    self.inner.blueprints_dir,
                    ops,
                    allocator=self.allocator,
                    baseline=baseline,
                )
            )
        except BlueprintsError as e:
            engine = sync_signal(e)

        return merge_signals(result.signal, engine)


def merge_signals(own: Signal, engine: Signal) -> Signal:
    """Combine a pass's verdict with the engine's. Errors win, then defects."""
    if isinstance(own, Error):
        return own
    if isinstance(engine, Error):
        return engine
    if isinstance(engine, Complete):
        return own
    own_defects = own.defects if isinstance(own, Continue) else ()
    return Continue(defects=renumber_defects([*engine.defects, *own_defects]))
