"""Report assembler: the catalog of named summaries over a record store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from labellens.config.settings import settings
from labellens.errors import QueryError, QueryErrorKind
from labellens.models.domain import AggregateRow
from labellens.services.aggregation import (
    Avg,
    Count,
    CountDistinct,
    Dimension,
    MetricSpec,
    OrderKey,
    Query,
    RatioOfTotal,
    Sum,
    run_query,
)
from labellens.services.buckets import complexity_level, complexity_ordinal
from labellens.services.cohort import experience_cohort_report

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportSpec:
    name: str
    description: str
    dimensions: Sequence[Union[str, Dimension]]
    metrics: Sequence[MetricSpec]
    partition_for_ratio: Optional[Sequence[str]] = None
    order_by: Sequence[Union[str, OrderKey]] = ()
    where: Optional[Callable[[Any], bool]] = None

    def to_query(self, digits: Optional[int] = None) -> Query:
        return Query(
            dimensions=self.dimensions,
            metrics=self.metrics,
            partition_for_ratio=self.partition_for_ratio,
            order_by=self.order_by,
            where=self.where,
            digits=digits,
        )


@dataclass(frozen=True)
class ReportResult:
    name: str
    description: str
    rows: List[AggregateRow] = field(default_factory=list)


def _annotations() -> Count:
    return Count(name="annotations")


def _error_rate() -> Avg:
    return Avg("is_error", name="error_rate_pct", scale=100)


def _avg_quality() -> Avg:
    return Avg("quality_score", name="avg_quality")


def _avg_time() -> Avg:
    return Avg("time_spent_seconds", name="avg_time_seconds")


_CATALOG: List[ReportSpec] = [
    ReportSpec(
        name="platform_error_rates",
        description="Volume, error rate and quality per platform, worst error rate first.",
        dimensions=["platform"],
        metrics=[
            _annotations(),
            Sum("is_error", name="errors"),
            _error_rate(),
            _avg_quality(),
            CountDistinct("annotator_id", name="annotators"),
        ],
        order_by=["-error_rate_pct"],
    ),
    ReportSpec(
        name="error_share_by_platform",
        description="Share of all errors contributed by each platform.",
        dimensions=["platform"],
        metrics=[
            Sum("is_error", name="errors"),
            RatioOfTotal("errors", partition=(), name="pct_of_all_errors", scale=100),
        ],
        order_by=["-errors"],
    ),
    ReportSpec(
        name="error_type_distribution",
        description="Error types per platform with their share of that platform's errors.",
        dimensions=["platform", "error_type"],
        metrics=[
            Count(name="errors"),
            RatioOfTotal("errors", name="pct_of_platform_errors", scale=100),
            _avg_time(),
        ],
        partition_for_ratio=["platform"],
        order_by=["platform", "-errors"],
        where=lambda r: r.error_flag,
    ),
    ReportSpec(
        name="quality_distribution",
        description="Quality score ranges per platform as a share of the platform's annotations.",
        dimensions=["platform", "quality_range"],
        metrics=[
            _annotations(),
            RatioOfTotal("annotations", partition=["platform"], name="pct_of_platform", scale=100),
        ],
        order_by=["platform", "quality_range"],
    ),
    ReportSpec(
        name="quality_by_experience",
        description="Quality, error rate and speed by annotator experience level.",
        dimensions=["experience_level"],
        metrics=[_annotations(), _avg_quality(), _error_rate(), _avg_time()],
        order_by=["experience_level"],
    ),
    ReportSpec(
        name="confidence_calibration",
        description="Self-reported confidence level against observed quality and errors.",
        dimensions=["confidence_level"],
        metrics=[
            _annotations(),
            Avg("confidence_score", name="avg_confidence"),
            _avg_quality(),
            _error_rate(),
        ],
        order_by=["confidence_level"],
    ),
    ReportSpec(
        name="speed_vs_quality",
        description="Time-spent categories against quality and error rate.",
        dimensions=["speed_category"],
        metrics=[_annotations(), _avg_time(), _avg_quality(), _error_rate()],
        order_by=["speed_category"],
    ),
    ReportSpec(
        name="weekday_pattern",
        description="Volume share and error rate per weekday.",
        dimensions=["weekday"],
        metrics=[
            _annotations(),
            RatioOfTotal("annotations", partition=(), name="pct_of_volume", scale=100),
            _error_rate(),
            _avg_quality(),
        ],
        order_by=["weekday"],
    ),
    ReportSpec(
        name="time_of_day_pattern",
        description="Volume share and error rate per time of day.",
        dimensions=["time_of_day"],
        metrics=[
            _annotations(),
            RatioOfTotal("annotations", partition=(), name="pct_of_volume", scale=100),
            _error_rate(),
            _avg_time(),
        ],
        order_by=["time_of_day"],
    ),
    ReportSpec(
        name="monthly_trend",
        description="Month-over-month volume, error rate, quality and active annotators.",
        dimensions=["month"],
        metrics=[
            _annotations(),
            _error_rate(),
            _avg_quality(),
            CountDistinct("annotator_id", name="active_annotators"),
        ],
        order_by=["month"],
    ),
    ReportSpec(
        name="guideline_version_impact",
        description="Error rate and quality per guideline version.",
        dimensions=["guideline_version"],
        metrics=[_annotations(), _error_rate(), _avg_quality()],
        order_by=["guideline_version"],
    ),
    ReportSpec(
        name="imputed_guideline_comparison",
        description="Observed versus imputed guideline versions.",
        dimensions=["guideline_imputed"],
        metrics=[
            _annotations(),
            RatioOfTotal("annotations", partition=(), name="pct_of_volume", scale=100),
            _error_rate(),
        ],
        order_by=["guideline_imputed"],
    ),
    ReportSpec(
        name="training_impact",
        description="Error rate and quality with and without completed training.",
        dimensions=["training_completed"],
        metrics=[_annotations(), _error_rate(), _avg_quality(), _avg_time()],
        order_by=["training_completed"],
    ),
    ReportSpec(
        name="reviewer_coverage",
        description="Share of each platform's annotations that went through review.",
        dimensions=["platform", "is_reviewed"],
        metrics=[
            _annotations(),
            RatioOfTotal("annotations", partition=["platform"], name="pct_of_platform", scale=100),
            _error_rate(),
        ],
        order_by=["platform", "-is_reviewed"],
    ),
    ReportSpec(
        name="annotator_leaderboard",
        description="Annotators ranked by average quality, then by error rate.",
        dimensions=["annotator_id"],
        metrics=[_annotations(), _avg_quality(), _error_rate(), _avg_time()],
        order_by=["-avg_quality", "error_rate_pct"],
    ),
    ReportSpec(
        name="project_overview",
        description="Volume, error rate and quality per platform and project.",
        dimensions=["platform", "project"],
        metrics=[
            _annotations(),
            RatioOfTotal("annotations", partition=["platform"], name="pct_of_platform", scale=100),
            _error_rate(),
            _avg_quality(),
        ],
        order_by=["platform", "-annotations"],
    ),
]

REPORT_CATALOG: Dict[str, ReportSpec] = {spec.name: spec for spec in _CATALOG}


def task_complexity_report(records, digits: Optional[int] = None) -> List[AggregateRow]:
    """
    Classify task types by complexity.

    First pass: mean time and mean error rate per task type. Second pass groups
    those rows by (complexity_level, task_type), High first.
    """
    first = run_query(
        records,
        Query(
            dimensions=["task_type"],
            metrics=[_annotations(), _avg_time(), Avg("is_error", name="error_rate")],
        ),
    )

    def level(row: AggregateRow) -> str:
        return complexity_level(row["avg_time_seconds"], row["error_rate"])

    second = Query(
        dimensions=[
            Dimension("complexity_level", level, sort_key=complexity_ordinal),
            Dimension("task_type", lambda row: row["task_type"]),
        ],
        metrics=[
            Sum(lambda row: row["annotations"], name="annotations"),
            Avg(lambda row: row["avg_time_seconds"], name="avg_time_seconds"),
            Avg(lambda row: row["error_rate"], name="error_rate_pct", scale=100),
        ],
        order_by=["-complexity_level", "task_type"],
        digits=digits,
    )
    return run_query(first, second)


def cohort_report(records, digits: Optional[int] = None) -> List[AggregateRow]:
    """Experience cohort trend flattened into rows keyed by cohort period."""
    return [
        AggregateRow(
            dimensions=("cohort_period",),
            key=(row.period,),
            values={"annotators": row.entity_count, "avg_error_rate_pct": row.avg, "min": row.min, "max": row.max},
        )
        for row in experience_cohort_report(records, digits=digits)
    ]


SPECIAL_REPORTS: Dict[str, Tuple[str, Callable[..., List[AggregateRow]]]] = {
    "task_complexity": (
        "Task types classified Low/Medium/High from mean time and error rate.",
        task_complexity_report,
    ),
    "experience_cohort": (
        "Average of per-annotator error rates per tenure period.",
        cohort_report,
    ),
}


def list_reports() -> List[Tuple[str, str]]:
    entries = [(s.name, s.description) for s in _CATALOG]
    entries.extend((name, desc) for name, (desc, _) in SPECIAL_REPORTS.items())
    return sorted(entries)


def run_report(records, spec: Union[str, ReportSpec], digits: Optional[int] = None) -> ReportResult:
    """Run a named catalog report, a special assembly, or a caller-built ReportSpec."""
    digits = settings.metric_digits if digits is None else digits

    if isinstance(spec, str):
        if spec in SPECIAL_REPORTS:
            description, builder = SPECIAL_REPORTS[spec]
            logger.info("Running report %s", spec)
            return ReportResult(name=spec, description=description, rows=builder(records, digits=digits))
        if spec not in REPORT_CATALOG:
            raise QueryError(QueryErrorKind.UNKNOWN_REPORT, f"Unknown report {spec!r}")
        spec = REPORT_CATALOG[spec]

    logger.info("Running report %s", spec.name)
    rows = run_query(records, spec.to_query(digits=digits))
    return ReportResult(name=spec.name, description=spec.description, rows=rows)
