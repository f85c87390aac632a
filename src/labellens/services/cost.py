"""Cost impact model.

Unit costs are always supplied by the caller; nothing here reads settings.
"""

from __future__ import annotations

from typing import Dict, Iterable

from labellens.models.domain import CostSummary
from labellens.services.aggregation import Count, Sum, aggregate


def cost_summary(
    total_count: int,
    total_error_count: int,
    annotation_unit_cost: float,
    rework_unit_cost: float,
) -> CostSummary:
    """
    Translate annotation and error counts into an economic summary.

    Every annotation costs ``annotation_unit_cost``; every erroneous one costs an
    extra ``rework_unit_cost`` to redo. Money is rounded to cents,
    cost_per_annotation to 4 digits. cost_per_annotation is None when there are
    no annotations, rework_pct_of_total is None when the total cost is zero.
    """
    if total_count < 0 or total_error_count < 0:
        raise ValueError("counts must be >= 0")
    if total_error_count > total_count:
        raise ValueError(f"total_error_count={total_error_count} exceeds total_count={total_count}")
    if annotation_unit_cost < 0 or rework_unit_cost < 0:
        raise ValueError("unit costs must be >= 0")

    annotation_cost = total_count * annotation_unit_cost
    rework_cost = total_error_count * rework_unit_cost
    total_cost = annotation_cost + rework_cost

    rework_pct = None if total_cost == 0 else round(rework_cost / total_cost * 100, 2)
    per_annotation = None if total_count == 0 else round(total_cost / total_count, 4)

    return CostSummary(
        total_count=total_count,
        total_error_count=total_error_count,
        annotation_cost=round(annotation_cost, 2),
        rework_cost=round(rework_cost, 2),
        total_cost=round(total_cost, 2),
        rework_pct_of_total=rework_pct,
        cost_per_annotation=per_annotation,
    )


def platform_cost_breakdown(
    records: Iterable,
    annotation_unit_cost: float,
    rework_unit_cost: float,
) -> Dict[str, CostSummary]:
    """One CostSummary per platform plus an "ALL" entry for the whole record set."""
    rows = aggregate(
        records,
        dimensions=["platform"],
        metrics=[Count(), Sum("is_error", name="errors")],
        order_by=["platform"],
    )
    out: Dict[str, CostSummary] = {}
    total = errors = 0
    for row in rows:
        out[row["platform"]] = cost_summary(row["count"], row["errors"], annotation_unit_cost, rework_unit_cost)
        total += row["count"]
        errors += row["errors"]
    out["ALL"] = cost_summary(total, errors, annotation_unit_cost, rework_unit_cost)
    return out
