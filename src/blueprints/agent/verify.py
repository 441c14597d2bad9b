"""
Completion gates consulted before a sign-off is accepted.

Each gate is a callable returning outstanding work as a list of defect
texts; an empty list lets the sign-off through.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from blueprints.core.errors import GrammarError
from blueprints.core.parser import load_document
from blueprints.core.sync import unchecked_items

logger = logging.getLogger(__name__)

NO_COMMANDS_SUMMARY = "none (no verification commands configured)"


@dataclass
class VerificationResult:
    """
    Outcome of host verification.

    Attributes:
        passed: True when every command exited 0
        summary: One-line summary, e.g. ``lint=pass test=fail``
        defects: One entry per failed command, with its output
    """

    passed: bool
    summary: str
    defects: list[str] = field(default_factory=list)


class CommandVerifier:
    """
    Run host verification commands (build, lint, test) in order.

    Args:
        commands: Label -> command line, run without a shell
        cwd: Working directory for the commands
        timeout: Seconds per command
    """

    def __init__(
        self,
        commands: dict[str, str],
        cwd: Path | None = None,
        timeout: float | None = None,
    ):
        self.commands = dict(commands)
        self.cwd = cwd
        self.timeout = timeout

    def _run_one(self, command: str) -> tuple[int, str]:
        try:
            completed = subprocess.run(
                shlex.split(command),
                capture_output=True,
                text=True,
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return 127, f"command not found: {command}"
        except subprocess.TimeoutExpired:
            return -1, f"timed out after {self.timeout}s"
        output = "\n".join(part for part in (completed.stdout, completed.stderr) if part)
        return completed.returncode, output.strip()

    def run(self) -> VerificationResult:
        if not self.commands:
            return VerificationResult(passed=True, summary=NO_COMMANDS_SUMMARY)

        parts: list[str] = []
        defects: list[str] = []
        for label, command in self.commands.items():
            code, output = self._run_one(command)
            if code == 0:
                parts.append(f"{label}=pass")
                continue
            parts.append(f"{label}=fail")
            defect = f"CI:{label} failed (exit {code})."
            if output:
                defect += f"\n{output}"
            defects.append(defect)

        summary = " ".join(parts)
        logger.info("Host verification: %s", summary)
        return VerificationResult(passed=not defects, summary=summary, defects=defects)

    def __call__(self) -> list[str]:
        return self.run().defects


class UncheckedItemsGate:
    """Withhold sign-off while any delivery item is unchecked."""

    def __init__(self, blueprints_dir: Path):
        self.blueprints_dir = blueprints_dir

    def __call__(self) -> list[str]:
        try:
            document = load_document(self.blueprints_dir)
        except GrammarError as e:
            return [str(e)]
        return unchecked_items(document)
