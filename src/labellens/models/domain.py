from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Tuple

from labellens.services.buckets import MONTH_ORDER, TIME_OF_DAY, WEEKDAY_ORDER

ERROR_TYPE_NONE = "none"

KNOWN_ERROR_TYPES = frozenset(
    {
        "boundary_error",
        "misclassification",
        "missing_label",
        "incorrect_attribute",
        "duplicate_label",
        "occlusion_error",
        "ambiguity_error",
        "other",
    }
)


@dataclass(frozen=True)
class AnnotationRecord:
    """One labeling event. Build through RecordStore so invariants are checked."""

    record_id: str
    platform: str
    project: str
    annotator_id: str
    task_type: str
    submitted_at: datetime
    time_spent_seconds: float
    experience_days: float
    error_flag: bool = False
    error_type: str = ERROR_TYPE_NONE
    quality_score: Optional[float] = None
    confidence_score: Optional[float] = None
    task_id: Optional[str] = None
    training_completed: bool = False
    guideline_version: str = "unknown"
    guideline_imputed: bool = False
    reviewer_id: Optional[str] = None
    is_reviewed: bool = False

    @property
    def month(self) -> str:
        return self.submitted_at.strftime("%Y-%m")

    @property
    def month_name(self) -> str:
        return MONTH_ORDER[self.submitted_at.month - 1]

    @property
    def weekday(self) -> str:
        return WEEKDAY_ORDER[self.submitted_at.weekday()]

    @property
    def hour(self) -> int:
        return self.submitted_at.hour

    @property
    def time_of_day(self) -> str:
        return TIME_OF_DAY(self.submitted_at.hour)

    @property
    def is_error(self) -> int:
        return 1 if self.error_flag else 0


@dataclass(frozen=True)
class AggregateRow:
    """One group of an aggregation: the GroupKey plus its metric values."""

    dimensions: Tuple[str, ...]
    key: Tuple[Any, ...]
    values: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        try:
            return self.key[self.dimensions.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self[name]
        except KeyError:
            return default

    def keys(self) -> Iterator[str]:
        yield from self.dimensions
        yield from self.values

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(zip(self.dimensions, self.key))
        out.update(self.values)
        return out


@dataclass(frozen=True)
class CohortRow:
    """Per-(group, period) summary of per-entity metric values."""

    group: Tuple[Any, ...]
    period: Any
    entity_count: int
    avg: Optional[float]
    min: Optional[float]
    max: Optional[float]


@dataclass(frozen=True)
class CostSummary:
    total_count: int
    total_error_count: int
    annotation_cost: float
    rework_cost: float
    total_cost: float
    rework_pct_of_total: Optional[float]
    cost_per_annotation: Optional[float]


@dataclass(frozen=True)
class ValidationFailure:
    """Diagnostic for a candidate record rejected during a store build."""

    index: int
    record_id: Optional[str]
    kind: str
    message: str
    field: Optional[str] = None
