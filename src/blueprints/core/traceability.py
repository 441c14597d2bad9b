"""
Per-clause traceability table.

Rows are derived from scratch on every call; nothing is cached or
patched incrementally.
"""

from __future__ import annotations

from . import ir

INTEGRATION_HINT = "integration"
PROPERTY_HINT = "property"


def _flavored(
    item: ir.DeliveryItem,
    hint: str,
    level: ir.TestLevel,
    vectors: dict[ir.RecordId, ir.TestVector],
) -> bool:
    if hint in item.text.lower():
        return True
    return any(ref in vectors and level in vectors[ref].levels for ref in item.vector_refs)


def derive_traceability(document: ir.DocumentModel) -> list[ir.TraceabilityRow]:
    """
    Compute one row per spec clause, in clause file order.

    A clause is Covered when at least one test vector references it, every
    such vector has a test task somewhere in the plan, and its milestone
    has at least one implementation task. Placeholder tasks never count
    as implementation tasks.
    """
    vectors = {vector.id: vector for vector in document.test_vectors}
    milestones = {m.clause: m for m in document.milestones()}
    planned = {
        ref for milestone in milestones.values() for item in milestone.test_items for ref in item.vector_refs
    }

    rows: list[ir.TraceabilityRow] = []
    for clause in document.clauses:
        referencing = [v for v in document.test_vectors if clause.id in v.clauses]
        milestone = milestones.get(clause.id)
        test_items = milestone.test_items if milestone else []
        impl_items = [i for i in milestone.impl_items if not i.is_placeholder] if milestone else []
        items = test_items + impl_items

        integration = any(ir.TestLevel.INTEGRATION in v.levels for v in referencing) or any(
            _flavored(i, INTEGRATION_HINT, ir.TestLevel.INTEGRATION, vectors) for i in items
        )
        prop = any(ir.TestLevel.PROPERTY in v.levels for v in referencing) or any(
            _flavored(i, PROPERTY_HINT, ir.TestLevel.PROPERTY, vectors) for i in items
        )

        tv_count = len({v.id for v in referencing})
        covered = (
            tv_count >= 1
            and all(v.id in planned for v in referencing)
            and len(impl_items) >= 1
        )
        rows.append(
            ir.TraceabilityRow(
                clause=clause.id,
                title=clause.title,
                tv_count=tv_count,
                test_tasks=len(test_items),
                impl_tasks=len(impl_items),
                integration=integration,
                property=prop,
                status=ir.CoverageStatus.COVERED if covered else ir.CoverageStatus.MISSING,
            )
        )
    return rows


def all_covered(rows: list[ir.TraceabilityRow]) -> bool:
    return all(row.status == ir.CoverageStatus.COVERED for row in rows)


def render_markdown(rows: list[ir.TraceabilityRow]) -> str:
    """Render rows as a markdown table."""

    def flag(value: bool) -> str:
        return "Yes" if value else "No"

    lines = [
        "| Spec | Title | TV Count | Test Tasks | Impl Tasks | Integration | Property | Status |",
        "|---|---|---|---|---|---|---|---|",
    ]
    for row in rows:
        lines.append(
            f"| {row.clause} | {row.title} | {row.tv_count} | {row.test_tasks} | "
            f"{row.impl_tasks} | {flag(row.integration)} | {flag(row.property)} | {row.status} |"
        )
    return "\n".join(lines) + "\n"
