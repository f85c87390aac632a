"""Export schemas for renderers and JSON output."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from labellens.models.domain import AggregateRow, CostSummary, ValidationFailure


class AggregateRowOut(BaseModel):
    key: dict[str, Any]
    values: dict[str, Any]

    @classmethod
    def from_row(cls, row: AggregateRow) -> "AggregateRowOut":
        return cls(key=dict(zip(row.dimensions, row.key)), values=dict(row.values))


class ReportOut(BaseModel):
    name: str
    description: str
    record_count: int
    generated_at: datetime
    rows: list[AggregateRowOut]


class CostSummaryOut(BaseModel):
    scope: str
    total_count: int
    total_error_count: int
    annotation_cost: float
    rework_cost: float
    total_cost: float
    rework_pct_of_total: Optional[float]
    cost_per_annotation: Optional[float]

    @classmethod
    def from_summary(cls, scope: str, summary: CostSummary) -> "CostSummaryOut":
        return cls(
            scope=scope,
            total_count=summary.total_count,
            total_error_count=summary.total_error_count,
            annotation_cost=summary.annotation_cost,
            rework_cost=summary.rework_cost,
            total_cost=summary.total_cost,
            rework_pct_of_total=summary.rework_pct_of_total,
            cost_per_annotation=summary.cost_per_annotation,
        )


class ValidationFailureOut(BaseModel):
    index: int
    record_id: Optional[str]
    kind: str
    message: str
    field: Optional[str] = None

    @classmethod
    def from_failure(cls, failure: ValidationFailure) -> "ValidationFailureOut":
        return cls(
            index=failure.index,
            record_id=failure.record_id,
            kind=failure.kind,
            message=failure.message,
            field=failure.field,
        )


class ValidationReportOut(BaseModel):
    source: str
    policy: str
    accepted: int
    rejected: int
    failures: list[ValidationFailureOut]


class CostReportOut(BaseModel):
    annotation_unit_cost: float
    rework_unit_cost: float
    summaries: list[CostSummaryOut]
