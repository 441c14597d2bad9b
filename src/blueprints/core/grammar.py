"""
Record grammar for blueprint lines.

Every artifact line is classified on its own: blank, heading, section
heading, note, or one typed record. A line that fits nothing is rejected
with a ``GrammarError`` naming the reason. Nothing is normalized during
parsing; whitespace mistakes are rejections. ``normalize_spacing`` exists
for freshly appended plan lines only.

Grammars (fields separated by `` | ``)::

    R-001 - The system shall do X.
    S-001 | R:R-001,R-002 | DO:<text> | TITLE:<4-7 words>[ | IF:..][ | ER:..][ | LM:..][ | OB:..]
    COVERAGE | R:R-003 | REASON:<text>
    C-001 | KIND:<TYPE|API|INTEGRATION> | BODY:<opaque text>
    TV-001 | R:.. | S:.. | L:U,I,P | GIVEN:.. | WHEN:.. | THEN:..[ | ERR:..][ | DET:..][ | OB:..]
    - [ ] DP-001 <text>; Refs: S-001, TV-001
    R-001 | STATUS:<active|deprecated|removed> | REASON:..[ | EFFECTIVE:..][ | REPLACE_BY:<id>]
"""

from __future__ import annotations

import re
from typing import Any

from .errors import GrammarError, RejectReason
from .ir import (
    Artifact,
    ClauseField,
    ContractItem,
    ContractKind,
    CoverageExemption,
    DeliveryItem,
    IdKind,
    LifecycleRecord,
    LifecycleStatus,
    Line,
    LineKind,
    MilestoneHeading,
    RecordId,
    Requirement,
    SpecClause,
    TaskSection,
    TestLevel,
    TestVector,
    VectorField,
    format_id_list,
)

SEPARATOR = " | "
REFS_MARKER = "; Refs: "
COVERAGE_TAG = "COVERAGE"

TITLE_MIN_WORDS = 4
TITLE_MAX_WORDS = 7

_FIELD = re.compile(r"^([A-Z_]+):(.*)$")
_REQUIREMENT = re.compile(r"^(\S+) - (.*)$")
_DELIVERY = re.compile(r"^- \[([ x])\] (\S+) (.*?); Refs: (.*)$")
_MILESTONE = re.compile(r"^## (\S+) - (.*)$")
_HEADING = re.compile(r"^#{1,6} \S")

_SECTION_HEADINGS = {f"### {section.value}": section for section in TaskSection}
_REF_RANK = {IdKind.CLAUSE: 0, IdKind.CONTRACT: 1, IdKind.TEST_VECTOR: 2}
_LEVEL_ORDER = list(TestLevel)


# =============================================================================
# Character-level checks
# =============================================================================


def _reject(reason: RejectReason, detail: str, line: str) -> GrammarError:
    return GrammarError(reason, detail, line)


def _check_characters(line: str, *, allow_leading_space: bool = False) -> None:
    for ch in line:
        if ch == "\t":
            raise _reject(RejectReason.TAB, "tabs are not allowed", line)
        if not 32 <= ord(ch) < 127:
            raise _reject(RejectReason.NON_ASCII, f"character {ch!r} is not printable ASCII", line)
    if line != line.rstrip(" "):
        raise _reject(RejectReason.SPACING, "trailing space", line)
    if not allow_leading_space and line != line.lstrip(" "):
        raise _reject(RejectReason.SPACING, "leading space", line)


def _check_text(value: str, name: str, line: str) -> str:
    """Validate a free-text field value."""
    if not value:
        raise _reject(RejectReason.MISSING_FIELD, f"{name} is empty", line)
    if value != value.strip(" ") or "  " in value:
        raise _reject(RejectReason.SPACING, f"{name} has stray spaces", line)
    if "|" in value:
        raise _reject(RejectReason.FORBIDDEN_SEPARATOR, f"{name} contains '|'", line)
    return value


# =============================================================================
# Id helpers
# =============================================================================


def _parse_id(
    token: str,
    line: str,
    kinds: tuple[IdKind, ...] | None = None,
    allow_placeholder: bool = False,
) -> RecordId:
    try:
        rid = RecordId.parse(token, allow_placeholder=allow_placeholder)
    except ValueError as e:
        raise _reject(RejectReason.MALFORMED_ID, str(e), line) from e
    if kinds and rid.kind not in kinds:
        expected = "/".join(k.value for k in kinds)
        raise _reject(RejectReason.MALFORMED_ID, f"expected a {expected} id, got '{token}'", line)
    return rid


def _parse_id_list(
    value: str,
    kind: IdKind,
    name: str,
    line: str,
    ascending: bool = False,
) -> tuple[RecordId, ...]:
    if not value:
        raise _reject(RejectReason.MISSING_FIELD, f"{name} list is empty", line)
    ids = tuple(_parse_id(token, line, (kind,)) for token in value.split(","))
    if len(set(ids)) != len(ids):
        raise _reject(RejectReason.BAD_VALUE, f"{name} list repeats an id", line)
    if ascending and list(ids) != sorted(ids):
        raise _reject(RejectReason.BAD_VALUE, f"{name} list must be sorted ascending", line)
    return ids


# =============================================================================
# Keyed fields
# =============================================================================


def _split_keyed(fields: list[str], line: str) -> list[tuple[str, str]]:
    pairs = []
    for field in fields:
        match = _FIELD.match(field)
        if not match:
            raise _reject(RejectReason.UNRECOGNIZED, f"expected KEY:value, got '{field}'", line)
        pairs.append((match.group(1), match.group(2)))
    return pairs


def _parse_keyed(
    fields: list[str],
    mandatory: list[str],
    optional: list[str],
    line: str,
) -> tuple[dict[str, str], list[tuple[str, str]]]:
    """
    Match KEY:value fields against a fixed order.

    Mandatory keys come first in the given order; optional keys follow in
    canonical order, each at most once.

    Returns:
        Tuple of (mandatory values by key, optional (key, value) pairs)
    """
    pairs = _split_keyed(fields, line)
    keys = [key for key, _ in pairs]
    values: dict[str, str] = {}

    for index, key in enumerate(mandatory):
        if index >= len(pairs) or pairs[index][0] != key:
            if key in keys:
                raise _reject(RejectReason.FIELD_ORDER, f"{key} is out of order", line)
            raise _reject(RejectReason.MISSING_FIELD, f"{key} is missing", line)
        values[key] = pairs[index][1]

    extras: list[tuple[str, str]] = []
    last_rank = -1
    for key, value in pairs[len(mandatory) :]:
        if key not in optional:
            if key in mandatory:
                raise _reject(RejectReason.FIELD_ORDER, f"{key} appears twice", line)
            raise _reject(RejectReason.UNKNOWN_FIELD, f"unknown field {key}", line)
        rank = optional.index(key)
        if rank <= last_rank:
            raise _reject(
                RejectReason.FIELD_ORDER,
                f"{key} must follow canonical order {', '.join(optional)}",
                line,
            )
        last_rank = rank
        extras.append((key, _check_text(value, key, line)))
    return values, extras


# =============================================================================
# Per-type parsers
# =============================================================================


def parse_requirement(line: str, allow_placeholder: bool = False) -> Requirement:
    match = _REQUIREMENT.match(line)
    if not match:
        raise _reject(RejectReason.UNRECOGNIZED, "expected 'R-nnn - <sentence>'", line)
    rid = _parse_id(match.group(1), line, (IdKind.REQUIREMENT,), allow_placeholder)
    text = _check_text(match.group(2), "requirement text", line)
    if text[-1] not in ".!?":
        raise _reject(RejectReason.BAD_VALUE, "requirement must end with . ! or ?", line)
    return Requirement(id=rid, text=text)


def parse_clause(line: str, allow_placeholder: bool = False) -> SpecClause:
    fields = line.split(SEPARATOR)
    rid = _parse_id(fields[0], line, (IdKind.CLAUSE,), allow_placeholder)
    values, extras = _parse_keyed(
        fields[1:], ["R", "DO", "TITLE"], [f.value for f in ClauseField], line
    )
    requirements = _parse_id_list(values["R"], IdKind.REQUIREMENT, "R", line)
    title = _check_text(values["TITLE"], "TITLE", line)
    words = title.split(" ")
    if not TITLE_MIN_WORDS <= len(words) <= TITLE_MAX_WORDS:
        raise _reject(
            RejectReason.BAD_VALUE,
            f"TITLE must have {TITLE_MIN_WORDS}-{TITLE_MAX_WORDS} words, got {len(words)}",
            line,
        )
    return SpecClause(
        id=rid,
        requirements=requirements,
        statement=_check_text(values["DO"], "DO", line),
        title=title,
        options=tuple((ClauseField(key), value) for key, value in extras),
    )


def parse_coverage(line: str) -> CoverageExemption:
    fields = line.split(SEPARATOR)
    if fields[0] != COVERAGE_TAG:
        raise _reject(RejectReason.UNRECOGNIZED, "expected 'COVERAGE | R:.. | REASON:..'", line)
    values, _ = _parse_keyed(fields[1:], ["R", "REASON"], [], line)
    return CoverageExemption(
        requirements=_parse_id_list(values["R"], IdKind.REQUIREMENT, "R", line),
        reason=_check_text(values["REASON"], "REASON", line),
    )


def parse_contract(line: str, allow_placeholder: bool = False) -> ContractItem:
    # The body is opaque and may itself contain the separator
    fields = line.split(SEPARATOR, 2)
    if len(fields) < 3:
        raise _reject(RejectReason.MISSING_FIELD, "expected 'C-nnn | KIND:.. | BODY:..'", line)
    rid = _parse_id(fields[0], line, (IdKind.CONTRACT,), allow_placeholder)
    values, _ = _parse_keyed(fields[1:2], ["KIND"], [], line)
    try:
        kind = ContractKind(values["KIND"])
    except ValueError as e:
        allowed = ", ".join(k.value for k in ContractKind)
        raise _reject(RejectReason.BAD_VALUE, f"KIND must be one of {allowed}", line) from e
    if not fields[2].startswith("BODY:"):
        raise _reject(RejectReason.MISSING_FIELD, "BODY is missing", line)
    body = fields[2][len("BODY:") :]
    if not body:
        raise _reject(RejectReason.MISSING_FIELD, "BODY is empty", line)
    return ContractItem(id=rid, kind=kind, body=body)


def _parse_levels(value: str, line: str) -> tuple[TestLevel, ...]:
    if not value:
        raise _reject(RejectReason.MISSING_FIELD, "L list is empty", line)
    try:
        levels = [TestLevel(token) for token in value.split(",")]
    except ValueError as e:
        raise _reject(RejectReason.BAD_VALUE, "L tags must be U, I or P", line) from e
    ranks = [_LEVEL_ORDER.index(level) for level in levels]
    if ranks != sorted(set(ranks)):
        raise _reject(RejectReason.BAD_VALUE, "L tags must be unique and in U,I,P order", line)
    return tuple(levels)


def parse_test_vector(line: str, allow_placeholder: bool = False) -> TestVector:
    fields = line.split(SEPARATOR)
    rid = _parse_id(fields[0], line, (IdKind.TEST_VECTOR,), allow_placeholder)
    values, extras = _parse_keyed(
        fields[1:],
        ["R", "S", "L", "GIVEN", "WHEN", "THEN"],
        [f.value for f in VectorField],
        line,
    )
    return TestVector(
        id=rid,
        requirements=_parse_id_list(values["R"], IdKind.REQUIREMENT, "R", line, ascending=True),
        clauses=_parse_id_list(values["S"], IdKind.CLAUSE, "S", line, ascending=True),
        levels=_parse_levels(values["L"], line),
        given=_check_text(values["GIVEN"], "GIVEN", line),
        when=_check_text(values["WHEN"], "WHEN", line),
        then=_check_text(values["THEN"], "THEN", line),
        options=tuple((VectorField(key), value) for key, value in extras),
    )


def parse_delivery_item(line: str, allow_placeholder: bool = False) -> DeliveryItem:
    match = _DELIVERY.match(line)
    if not match:
        raise _reject(
            RejectReason.UNRECOGNIZED, "expected '- [ ] DP-nnn <text>; Refs: <ids>'", line
        )
    checked, token, text, refs_text = match.groups()
    rid = _parse_id(token, line, (IdKind.DELIVERY,), allow_placeholder)
    text = _check_text(text, "task text", line)

    refs = tuple(
        _parse_id(ref, line, tuple(_REF_RANK)) for ref in refs_text.split(", ")
    )
    if len(set(refs)) != len(refs):
        raise _reject(RejectReason.BAD_VALUE, "Refs repeats an id", line)
    ranks = [_REF_RANK[ref.kind] for ref in refs]
    if ranks != sorted(ranks):
        raise _reject(RejectReason.FIELD_ORDER, "Refs must list S ids, then C ids, then TV ids", line)
    if IdKind.CLAUSE not in {ref.kind for ref in refs}:
        raise _reject(RejectReason.MISSING_FIELD, "Refs must include a spec clause id", line)
    if sum(1 for ref in refs if ref.kind == IdKind.TEST_VECTOR) > 1:
        raise _reject(RejectReason.BAD_VALUE, "a task references at most one test vector", line)
    return DeliveryItem(id=rid, checked=checked == "x", text=text, refs=refs)


def parse_milestone(line: str) -> MilestoneHeading:
    match = _MILESTONE.match(line)
    if not match:
        raise _reject(RejectReason.UNRECOGNIZED, "expected '## S-nnn - <title>'", line)
    clause = _parse_id(match.group(1), line, (IdKind.CLAUSE,))
    return MilestoneHeading(clause=clause, title=_check_text(match.group(2), "title", line))


def parse_lifecycle(line: str) -> LifecycleRecord:
    fields = line.split(SEPARATOR)
    target = _parse_id(fields[0], line)
    values, extras = _parse_keyed(
        fields[1:], ["STATUS", "REASON"], ["EFFECTIVE", "REPLACE_BY"], line
    )
    try:
        status = LifecycleStatus(values["STATUS"])
    except ValueError as e:
        allowed = ", ".join(s.value for s in LifecycleStatus)
        raise _reject(RejectReason.BAD_VALUE, f"STATUS must be one of {allowed}", line) from e
    options = dict(extras)
    replace_by = options.get("REPLACE_BY")
    return LifecycleRecord(
        target=target,
        status=status,
        reason=_check_text(values["REASON"], "REASON", line),
        effective=options.get("EFFECTIVE"),
        replace_by=_parse_id(replace_by, line) if replace_by else None,
    )


def parse_record(artifact: Artifact, line: str, allow_placeholder: bool = False) -> Any:
    """
    Parse one record line of the given artifact.

    Args:
        artifact: Artifact whose grammar applies
        line: Line text without its newline
        allow_placeholder: Accept ``<KIND>-NEW`` as the record's own id

    Returns:
        The typed record

    Raises:
        GrammarError: If the line is not a valid record
    """
    _check_characters(line)
    if artifact == Artifact.REQUIREMENTS:
        return parse_requirement(line, allow_placeholder)
    if artifact == Artifact.SPEC:
        if line.split(SEPARATOR, 1)[0] == COVERAGE_TAG:
            return parse_coverage(line)
        return parse_clause(line, allow_placeholder)
    if artifact == Artifact.CONTRACTS:
        return parse_contract(line, allow_placeholder)
    if artifact == Artifact.TEST_VECTORS:
        return parse_test_vector(line, allow_placeholder)
    if artifact == Artifact.DELIVERY_PLAN:
        if line.startswith("## "):
            return parse_milestone(line)
        return parse_delivery_item(line, allow_placeholder)
    return parse_lifecycle(line)


def classify_line(artifact: Artifact, text: str) -> Line:
    """
    Classify one line of an artifact file.

    Delivery-plan lines that are neither headings nor checklist items are
    classified as notes; whether a note is allowed where it stands is a
    file-level question (see ``parser.parse_text``).

    Raises:
        GrammarError: If the line is rejected
    """
    if text == "":
        return Line(kind=LineKind.BLANK)

    if artifact == Artifact.DELIVERY_PLAN:
        if text.startswith("### "):
            _check_characters(text)
            section = _SECTION_HEADINGS.get(text)
            if section is None:
                allowed = ", ".join(_SECTION_HEADINGS)
                raise _reject(RejectReason.UNRECOGNIZED, f"section must be one of {allowed}", text)
            return Line(kind=LineKind.SECTION, text=text, section=section)
        if text.startswith("## "):
            return Line.of(parse_record(artifact, text))
        if text.startswith("- ["):
            return Line.of(parse_record(artifact, text))
        if text.startswith("# "):
            _check_characters(text)
            return Line(kind=LineKind.HEADING, text=text)
        if text.startswith("#"):
            raise _reject(RejectReason.UNRECOGNIZED, "unexpected heading level", text)
        _check_characters(text, allow_leading_space=True)
        return Line(kind=LineKind.NOTE, text=text)

    if text.startswith("#"):
        _check_characters(text)
        if not _HEADING.match(text):
            raise _reject(RejectReason.UNRECOGNIZED, "malformed heading", text)
        return Line(kind=LineKind.HEADING, text=text)

    return Line.of(parse_record(artifact, text))


# =============================================================================
# Rendering
# =============================================================================


def render_record(record: Any) -> str:
    """Render a record in canonical form (the inverse of ``parse_record``)."""
    if isinstance(record, Requirement):
        return f"{record.id} - {record.text}"

    if isinstance(record, SpecClause):
        parts = [
            str(record.id),
            f"R:{format_id_list(record.requirements)}",
            f"DO:{record.statement}",
            f"TITLE:{record.title}",
        ]
        parts.extend(f"{key}:{value}" for key, value in record.options)
        return SEPARATOR.join(parts)

    if isinstance(record, CoverageExemption):
        return SEPARATOR.join(
            [COVERAGE_TAG, f"R:{format_id_list(record.requirements)}", f"REASON:{record.reason}"]
        )

    if isinstance(record, ContractItem):
        return SEPARATOR.join([str(record.id), f"KIND:{record.kind}", f"BODY:{record.body}"])

    if isinstance(record, TestVector):
        parts = [
            str(record.id),
            f"R:{format_id_list(record.requirements)}",
            f"S:{format_id_list(record.clauses)}",
            f"L:{','.join(level.value for level in record.levels)}",
            f"GIVEN:{record.given}",
            f"WHEN:{record.when}",
            f"THEN:{record.then}",
        ]
        parts.extend(f"{key}:{value}" for key, value in record.options)
        return SEPARATOR.join(parts)

    if isinstance(record, DeliveryItem):
        mark = "x" if record.checked else " "
        refs = format_id_list(record.refs, sep=", ")
        return f"- [{mark}] {record.id} {record.text}{REFS_MARKER}{refs}"

    if isinstance(record, MilestoneHeading):
        return f"## {record.clause} - {record.title}"

    if isinstance(record, LifecycleRecord):
        parts = [str(record.target), f"STATUS:{record.status}", f"REASON:{record.reason}"]
        if record.effective is not None:
            parts.append(f"EFFECTIVE:{record.effective}")
        if record.replace_by is not None:
            parts.append(f"REPLACE_BY:{record.replace_by}")
        return SEPARATOR.join(parts)

    raise TypeError(f"not a blueprint record: {type(record).__name__}")


def render_line(line: Line) -> str:
    if line.kind == LineKind.RECORD:
        return render_record(line.record)
    if line.kind == LineKind.SECTION and line.section is not None:
        return f"### {line.section.value}"
    return line.text


def section_line(section: TaskSection) -> Line:
    return Line(kind=LineKind.SECTION, text=f"### {section.value}", section=section)


# =============================================================================
# Normalization (appended lines only)
# =============================================================================


def normalize_spacing(text: str) -> str:
    """
    Fix minor spacing in a freshly appended line.

    Tabs become spaces, runs of spaces collapse, the ends are trimmed and
    field separators get exactly one space on each side. Never applied to
    lines already in a file.
    """
    text = text.replace("\t", " ")
    text = re.sub(r" {2,}", " ", text).strip(" ")
    text = re.sub(r" ?\| ?", SEPARATOR, text)
    return text
