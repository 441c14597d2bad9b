"""
The three-token protocol spoken at every pass boundary.

A pass ends with exactly one of:

- ``__BLUEPRINTS_COMPLETED__``: nothing left to do
- ``__BLUEPRINTS_CONTINUE__`` followed by a numbered defect list
- ``__BLUEPRINTS_ERROR__``: a hard precondition failure

Signals are a closed set of frozen dataclasses so callers can match on
them exhaustively instead of comparing strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

COMPLETED_TOKEN = "__BLUEPRINTS_COMPLETED__"
CONTINUE_TOKEN = "__BLUEPRINTS_CONTINUE__"
ERROR_TOKEN = "__BLUEPRINTS_ERROR__"

_NUMBERED = re.compile(r"^\s*(\d+)[.)]\s+(.*)$")


class DefectFlag(StrEnum):
    NONE = ""
    OVERRIDE = "OVERRIDE"
    BLOCKER = "BLOCKER"


@dataclass(frozen=True)
class Defect:
    """
    One numbered item of a continuation.

    Attributes:
        number: Position in the list (1-based)
        text: Defect description, possibly multi-line
        flag: ``OVERRIDE`` marks a judgment override, ``BLOCKER`` a hard blocker
    """

    number: int
    text: str
    flag: DefectFlag = DefectFlag.NONE

    def render(self) -> str:
        prefix = f"[{self.flag}] " if self.flag else ""
        return f"{self.number}) {prefix}{self.text}"


@dataclass(frozen=True)
class Complete:
    pass


@dataclass(frozen=True)
class Continue:
    defects: tuple[Defect, ...] = ()


@dataclass(frozen=True)
class Error:
    reason: str


Signal = Complete | Continue | Error


def _split_flag(text: str) -> tuple[DefectFlag, str]:
    for flag in (DefectFlag.OVERRIDE, DefectFlag.BLOCKER):
        marker = f"[{flag}]"
        if text.startswith(marker):
            return flag, text[len(marker) :].lstrip()
    return DefectFlag.NONE, text


def parse_defects(payload: str) -> tuple[Defect, ...]:
    """
    Parse a numbered defect list (``1) ...`` or ``1. ...``).

    Unnumbered lines continue the previous item; any preamble before the
    first numbered line is dropped. A payload with no numbered line at
    all becomes a single defect.
    """
    payload = payload.strip()
    if not payload:
        return ()

    lines = payload.splitlines()
    if not any(_NUMBERED.match(line) for line in lines):
        flag, text = _split_flag(payload)
        return (Defect(number=1, text=text, flag=flag),)

    items: list[list[str]] = []
    for line in lines:
        match = _NUMBERED.match(line)
        if match:
            items.append([match.group(2).strip()])
        elif items:
            items[-1].append(line.rstrip())

    defects = []
    for number, chunk in enumerate(items, start=1):
        flag, text = _split_flag("\n".join(chunk).strip())
        defects.append(Defect(number=number, text=text, flag=flag))
    return tuple(defects)


def make_defects(texts: list[str], flag: DefectFlag = DefectFlag.NONE) -> tuple[Defect, ...]:
    return tuple(
        Defect(number=number, text=text, flag=flag) for number, text in enumerate(texts, start=1)
    )


def renumber_defects(defects: list[Defect]) -> tuple[Defect, ...]:
    return tuple(
        Defect(number=number, text=d.text, flag=d.flag) for number, d in enumerate(defects, start=1)
    )


def format_defects(defects: tuple[Defect, ...] | list[Defect]) -> str:
    return "\n".join(defect.render() for defect in defects)


def extract_continue_payload(output: str) -> str | None:
    """Text after the first line holding only the continue token, or None."""
    lines = [raw.rstrip("\r") for raw in output.splitlines()]
    for index, line in enumerate(lines):
        if line.strip() == CONTINUE_TOKEN:
            return "\n".join(lines[index + 1 :]).strip()
    return None


def parse_signal(output: str) -> Signal:
    """
    Read the control token from an external pass's output.

    The output is complete (or an error) when it consists of the token
    alone or ends with it on its last line. A continuation may appear
    anywhere; its defects follow the token line. Output carrying no
    token parses as an error.
    """
    trimmed = output.strip()
    last_line = trimmed.splitlines()[-1].strip() if trimmed else ""

    if ERROR_TOKEN in (trimmed, last_line):
        return Error(reason=f"external pass reported {ERROR_TOKEN}")
    if COMPLETED_TOKEN in (trimmed, last_line):
        return Complete()

    payload = extract_continue_payload(output)
    if payload is None:
        return Error(reason="external pass emitted no control token")
    return Continue(defects=parse_defects(payload))


def render_signal(signal: Signal) -> str:
    """Render a signal the way an external pass would emit it."""
    if isinstance(signal, Complete):
        return COMPLETED_TOKEN
    if isinstance(signal, Continue):
        body = format_defects(signal.defects)
        return f"{CONTINUE_TOKEN}\n{body}" if body else CONTINUE_TOKEN
    return ERROR_TOKEN
