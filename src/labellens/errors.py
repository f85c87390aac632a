"""LabelLens error taxonomy."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence


class IngestionErrorKind(str, Enum):
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    OUT_OF_RANGE_SCORE = "OutOfRangeScore"
    NEGATIVE_EXPERIENCE_DAYS = "NegativeExperienceDays"
    INCONSISTENT_ERROR_TYPE = "InconsistentErrorType"
    INVALID_TIMESTAMP = "InvalidTimestamp"
    NEGATIVE_TIME_SPENT = "NegativeTimeSpent"
    DUPLICATE_RECORD_ID = "DuplicateRecordId"
    INVALID_FIELD_TYPE = "InvalidFieldType"


class QueryErrorKind(str, Enum):
    UNKNOWN_DIMENSION = "UnknownDimension"
    UNKNOWN_METRIC = "UnknownMetric"
    INVALID_PARTITION_SUBSET = "InvalidPartitionSubset"
    UNKNOWN_REPORT = "UnknownReport"


class LabelLensError(Exception):
    """Base exception for LabelLens failures."""

    pass


class IngestionError(LabelLensError):
    """A candidate record violates a record invariant."""

    def __init__(self, kind: IngestionErrorKind, message: str, field: Optional[str] = None):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message
        self.field = field


class IngestionAbort(LabelLensError):
    """Strict build rejected the input; carries every collected failure."""

    def __init__(self, failures: Sequence):
        self.failures = list(failures)
        first = self.failures[0] if self.failures else None
        detail = f" (first: {first.message})" if first is not None else ""
        super().__init__(f"{len(self.failures)} invalid record(s){detail}")


class QueryError(LabelLensError):
    """A query or report request is malformed."""

    def __init__(self, kind: QueryErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message
