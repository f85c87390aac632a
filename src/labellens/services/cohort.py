"""Cohort trend analysis.

Two-level aggregation: one metric value per entity per period first, then the
distribution of those per-entity values per (group, period). This is not the
same number as pooling all records per (group, period) whenever entities
contribute unequal record volumes, so both views are exposed.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Union

from labellens.errors import QueryError, QueryErrorKind
from labellens.models.domain import AggregateRow, CohortRow
from labellens.services.aggregation import (
    Avg,
    Count,
    Dimension,
    Max,
    Metric,
    Min,
    Query,
    run_query,
)

logger = logging.getLogger(__name__)

DimensionRef = Union[str, Dimension]


def _check_metric(metric: Any) -> Metric:
    if not isinstance(metric, Metric):
        raise QueryError(
            QueryErrorKind.UNKNOWN_METRIC,
            f"Cohort metric must be a record reducer (Count/Sum/Avg/Min/Max), got {metric!r}",
        )
    return metric


def _key_dimension(dim: Dimension, position: int) -> Dimension:
    return Dimension(name=dim.name, extract=lambda row: row.key[position], sort_key=dim.sort_key)


def cohort_trend(
    records: Iterable[Any],
    entity_dimension: DimensionRef,
    period_dimension: DimensionRef,
    metric: Metric,
    group_dimensions: Sequence[DimensionRef] = (),
    digits: Optional[int] = None,
) -> List[CohortRow]:
    """
    Average-of-entities trend per (group, period).

    Pass 1 aggregates per (groups, period, entity). Pass 2 aggregates those rows
    per (groups, period): entity_count counts every entity seen, while avg/min/max
    only see entities whose pass-1 value is defined.
    """
    metric = _check_metric(metric)
    first = Query(
        dimensions=[*group_dimensions, period_dimension, entity_dimension],
        metrics=[metric],
    ).compile()
    per_entity = run_query(records, first)

    value_key = metric.key
    n_outer = len(first.dimensions) - 1

    def value(row: AggregateRow) -> Any:
        return row.values[value_key]

    second = Query(
        dimensions=[_key_dimension(d, i) for i, d in enumerate(first.dimensions[:n_outer])],
        metrics=[
            Count(name="entity_count"),
            Avg(value, name="avg"),
            Min(value, name="min"),
            Max(value, name="max"),
        ],
        digits=digits,
    )
    rows = run_query(per_entity, second)
    logger.debug("Cohort trend: %d entity rows -> %d cohort rows", len(per_entity), len(rows))

    return [
        CohortRow(
            group=row.key[:-1],
            period=row.key[-1],
            entity_count=row.values["entity_count"],
            avg=row.values["avg"],
            min=row.values["min"],
            max=row.values["max"],
        )
        for row in rows
    ]


def pooled_trend(
    records: Iterable[Any],
    period_dimension: DimensionRef,
    metric: Metric,
    group_dimensions: Sequence[DimensionRef] = (),
    digits: Optional[int] = None,
) -> List[AggregateRow]:
    """All records of a (group, period) pooled into a single metric value."""
    metric = _check_metric(metric)
    query = Query(
        dimensions=[*group_dimensions, period_dimension],
        metrics=[Count(name="records"), metric] if metric.key != "records" else [metric],
        digits=digits,
    )
    return run_query(records, query)


def experience_cohort_report(records: Iterable[Any], digits: Optional[int] = 2) -> List[CohortRow]:
    """Per-annotator error rate (%) averaged within each tenure period."""
    return cohort_trend(
        records,
        entity_dimension="annotator_id",
        period_dimension="cohort_period",
        metric=Avg("is_error", name="error_rate_pct", scale=100),
        digits=digits,
    )
