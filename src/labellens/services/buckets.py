"""Bucketizers: pure, total mappings from field values to discrete labels.

Each bucketizer is an ordered table of half-open intervals ``[lower, upper)``.
Only the last interval may be closed on the upper side. Anything the table does
not cover (negative values, scores above 1, NaN) lands in the overflow label, and
``None`` lands in the missing label, so every input yields exactly one label.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

OVERFLOW_LABEL = "Out of Range"
MISSING_LABEL = "Unknown"

WEEKDAY_ORDER = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MONTH_ORDER = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True)
class Interval:
    lower: float
    upper: float
    label: str
    upper_closed: bool = False

    def contains(self, value: float) -> bool:
        if value < self.lower:
            return False
        if self.upper_closed:
            return value <= self.upper
        return value < self.upper


class Bucketizer:
    """Maps a numeric value onto the label of the interval containing it."""

    def __init__(
        self,
        name: str,
        intervals: Sequence[Interval],
        order: Optional[Sequence[str]] = None,
        overflow_label: str = OVERFLOW_LABEL,
        missing_label: str = MISSING_LABEL,
    ):
        if not intervals:
            raise ValueError(f"Bucketizer {name} needs at least one interval")
        for prev, nxt in zip(intervals, intervals[1:]):
            if prev.upper != nxt.lower:
                raise ValueError(f"Bucketizer {name}: gap or overlap between {prev.label} and {nxt.label}")
            if prev.upper_closed:
                raise ValueError(f"Bucketizer {name}: only the last interval may be upper-closed")

        self.name = name
        self.intervals: Tuple[Interval, ...] = tuple(intervals)
        self.overflow_label = overflow_label
        self.missing_label = missing_label

        interval_labels = [i.label for i in self.intervals]
        ordered = list(order) if order is not None else interval_labels
        if sorted(ordered) != sorted(interval_labels):
            raise ValueError(f"Bucketizer {name}: order must list every interval label once")
        self.labels: Tuple[str, ...] = tuple(ordered) + (overflow_label, missing_label)
        self._ordinals: Dict[str, int] = {label: i for i, label in enumerate(self.labels)}

    def __call__(self, value: Optional[float]) -> str:
        if value is None:
            return self.missing_label
        v = float(value)
        if math.isnan(v):
            return self.overflow_label
        for interval in self.intervals:
            if interval.contains(v):
                return interval.label
        return self.overflow_label

    def ordinal(self, label: Optional[str]) -> int:
        if label is None:
            return len(self.labels)
        return self._ordinals.get(label, len(self.labels))

    def __repr__(self) -> str:
        return f"Bucketizer({self.name!r}, labels={list(self.labels)!r})"


def _table(bounds: Iterable[Tuple[float, float, str]], close_last: bool = False) -> List[Interval]:
    rows = list(bounds)
    out = []
    for i, (lo, hi, label) in enumerate(rows):
        out.append(Interval(lo, hi, label, upper_closed=close_last and i == len(rows) - 1))
    return out


EXPERIENCE_LEVEL = Bucketizer(
    "experience_level",
    _table(
        [
            (0, 30, "New"),
            (30, 90, "Intermediate"),
            (90, 180, "Experienced"),
            (180, math.inf, "Expert"),
        ]
    ),
)

QUALITY_RANGE = Bucketizer(
    "quality_range",
    _table(
        [
            (0.0, 0.5, "Poor"),
            (0.5, 0.7, "Below Average"),
            (0.7, 0.8, "Average"),
            (0.8, 0.9, "Good"),
            (0.9, 1.0, "Excellent"),
        ],
        close_last=True,
    ),
)

CONFIDENCE_LEVEL = Bucketizer(
    "confidence_level",
    _table(
        [
            (0.0, 0.6, "Low"),
            (0.6, 0.8, "Medium"),
            (0.8, 1.0, "High"),
        ],
        close_last=True,
    ),
)

SPEED_CATEGORY = Bucketizer(
    "speed_category",
    _table(
        [
            (0, 30, "Very Fast"),
            (30, 60, "Fast"),
            (60, 120, "Normal"),
            (120, math.inf, "Slow"),
        ]
    ),
)


class CohortPeriod(str, Enum):
    """Tenure period of an annotator, ordered from first week to long tenure."""

    WEEK_1 = "Week 1"
    MONTH_1 = "Month 1"
    MONTHS_2_3 = "Months 2-3"
    MONTHS_4_6 = "Months 4-6"
    TENURE = "6+ Months"


COHORT_PERIOD = Bucketizer(
    "cohort_period",
    _table(
        [
            (0, 7, CohortPeriod.WEEK_1.value),
            (7, 30, CohortPeriod.MONTH_1.value),
            (30, 90, CohortPeriod.MONTHS_2_3.value),
            (90, 180, CohortPeriod.MONTHS_4_6.value),
            (180, math.inf, CohortPeriod.TENURE.value),
        ]
    ),
)

# Hour-of-day buckets; reported in working-day order rather than clock order.
TIME_OF_DAY = Bucketizer(
    "time_of_day",
    _table(
        [
            (0, 6, "Night"),
            (6, 12, "Morning"),
            (12, 18, "Afternoon"),
            (18, 24, "Evening"),
        ]
    ),
    order=("Morning", "Afternoon", "Evening", "Night"),
)

BUCKETIZERS: Dict[str, Bucketizer] = {
    b.name: b
    for b in (EXPERIENCE_LEVEL, QUALITY_RANGE, CONFIDENCE_LEVEL, SPEED_CATEGORY, COHORT_PERIOD, TIME_OF_DAY)
}


COMPLEXITY_LEVELS = ("Low", "Medium", "High")


def complexity_level(
    mean_time: Optional[float],
    mean_error_rate: Optional[float],
    time_threshold: float = 100.0,
    error_threshold: float = 0.15,
) -> str:
    """
    Classify a group of tasks from its aggregate values.

    High when the mean time exceeds ``time_threshold`` seconds AND the mean error
    rate (a fraction, not a percentage) exceeds ``error_threshold``; Medium when
    exactly one of the two holds; Low otherwise. A missing aggregate never holds.
    """
    slow = mean_time is not None and mean_time > time_threshold
    error_prone = mean_error_rate is not None and mean_error_rate > error_threshold
    if slow and error_prone:
        return "High"
    if slow or error_prone:
        return "Medium"
    return "Low"


def ordinal_table(labels: Sequence[str]) -> Callable[[Optional[str]], int]:
    """Sort key for a closed label domain; unknown labels sort after known ones."""
    index = {label: i for i, label in enumerate(labels)}

    def key(label: Optional[str]) -> int:
        if label is None:
            return len(index) + 1
        return index.get(label, len(index))

    return key


weekday_ordinal = ordinal_table(WEEKDAY_ORDER)
month_ordinal = ordinal_table(MONTH_ORDER)
complexity_ordinal = ordinal_table(COMPLEXITY_LEVELS)
