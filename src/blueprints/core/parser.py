"""
Load and save blueprint directories.

Parsing is all-or-nothing per file: the first rejected line aborts the
whole file with a ``GrammarError`` located at file:line. Writing is
atomic across the document set: every changed file is first written to a
temporary sibling, and only once all of them exist are they moved into
place.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from . import ir
from .errors import GrammarError, RejectReason
from .grammar import classify_line, render_line

logger = logging.getLogger(__name__)

_SECTION_ORDER = list(ir.TaskSection)


def parse_text(artifact: ir.Artifact, text: str, path: Path | None = None) -> ir.ArtifactFile:
    """
    Parse the full text of one artifact file.

    Args:
        artifact: Which artifact the text belongs to
        text: File content
        path: Source path, used only for error locations

    Returns:
        ArtifactFile whose ``render()`` reproduces ``text`` exactly

    Raises:
        GrammarError: On the first rejected line
    """
    if text == "":
        return ir.ArtifactFile(artifact=artifact, path=path)

    trailing_newline = text.endswith("\n")
    raw_lines = text.split("\n")
    if trailing_newline:
        raw_lines.pop()

    lines: list[ir.Line] = []
    for number, raw in enumerate(raw_lines, start=1):
        try:
            lines.append(classify_line(artifact, raw))
        except GrammarError as e:
            raise e.at(path, number) from None

    if artifact == ir.Artifact.DELIVERY_PLAN:
        _check_plan_structure(lines, path)

    return ir.ArtifactFile(
        artifact=artifact, path=path, lines=lines, trailing_newline=trailing_newline
    )


def _check_plan_structure(lines: list[ir.Line], path: Path | None) -> None:
    """Check that plan lines sit where the milestone layout allows them."""
    in_milestone = False
    section: ir.TaskSection | None = None
    rank = -1

    for number, line in enumerate(lines, start=1):
        problem: tuple[RejectReason, str] | None = None

        if line.kind == ir.LineKind.RECORD and isinstance(line.record, ir.MilestoneHeading):
            in_milestone, section, rank = True, None, -1
        elif line.kind == ir.LineKind.SECTION:
            new_rank = _SECTION_ORDER.index(line.section) if line.section is not None else -1
            if line.section is None:
                problem = (RejectReason.UNRECOGNIZED, "unknown section heading")
            elif not in_milestone:
                problem = (RejectReason.UNRECOGNIZED, "section heading outside a milestone")
            elif new_rank <= rank:
                problem = (
                    RejectReason.FIELD_ORDER,
                    "sections appear at most once, in order Test Tasks, "
                    "Implementation Tasks, Notes",
                )
            section, rank = line.section, new_rank
        elif line.kind == ir.LineKind.RECORD and isinstance(line.record, ir.DeliveryItem):
            item = line.record
            if section not in (ir.TaskSection.TEST, ir.TaskSection.IMPLEMENTATION):
                problem = (RejectReason.UNRECOGNIZED, "task outside a task section")
            elif section == ir.TaskSection.TEST and len(item.vector_refs) != 1:
                problem = (RejectReason.BAD_VALUE, "a test task references exactly one test vector")
            elif section == ir.TaskSection.IMPLEMENTATION and item.vector_refs:
                problem = (RejectReason.BAD_VALUE, "an implementation task references no test vector")
        elif line.kind == ir.LineKind.NOTE and section != ir.TaskSection.NOTES:
            problem = (RejectReason.UNRECOGNIZED, "free text outside a Notes section")
        elif line.kind == ir.LineKind.HEADING and in_milestone:
            problem = (RejectReason.UNRECOGNIZED, "title heading after the first milestone")

        if problem:
            reason, detail = problem
            raise GrammarError(reason, detail, render_line(line)).at(path, number)


def parse_texts(texts: dict[ir.Artifact, str]) -> ir.DocumentModel:
    """Build a document from in-memory texts; missing artifacts are empty."""
    return ir.DocumentModel(
        files={a: parse_text(a, texts.get(a, "")) for a in ir.Artifact},
    )


def _read(path: Path) -> str:
    # Bytes decoded by hand so CRLF and invalid UTF-8 reach the grammar unchanged
    return path.read_bytes().decode("utf-8", errors="replace")


def load_document(directory: Path) -> ir.DocumentModel:
    """
    Parse every artifact file in a blueprints directory.

    Missing files load as empty artifacts.

    Raises:
        GrammarError: If any file has a rejected line
    """
    files: dict[ir.Artifact, ir.ArtifactFile] = {}
    for artifact in ir.Artifact:
        path = directory / artifact.filename
        if path.exists():
            logger.debug("Parsing %s", path)
            files[artifact] = parse_text(artifact, _read(path), path)
        else:
            files[artifact] = ir.ArtifactFile(artifact=artifact, path=path)
    return ir.DocumentModel(files=files)


def write_document(
    directory: Path,
    document: ir.DocumentModel,
    only: set[ir.Artifact] | None = None,
) -> list[Path]:
    """
    Write artifact files atomically.

    Files whose rendered content already matches disk are skipped, as are
    empty artifacts with no file on disk.

    Args:
        directory: Blueprints directory
        document: Document to serialize
        only: Restrict writing to these artifacts

    Returns:
        Paths that were rewritten
    """
    directory.mkdir(parents=True, exist_ok=True)
    pending: list[tuple[Path, Path]] = []
    try:
        for artifact in ir.Artifact:
            if only is not None and artifact not in only:
                continue
            target = directory / artifact.filename
            content = document.file(artifact).render()
            if target.exists():
                if _read(target) == content:
                    continue
            elif content == "":
                continue
            temp = target.with_name(f".{target.name}.tmp")
            temp.write_bytes(content.encode("ascii"))
            pending.append((temp, target))
    except BaseException:
        for temp, _ in pending:
            temp.unlink(missing_ok=True)
        raise

    for temp, target in pending:
        os.replace(temp, target)
        logger.info("Wrote %s", target)
    return [target for _, target in pending]
