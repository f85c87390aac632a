"""Validated, immutable snapshot of annotation records."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union, overload

from labellens.errors import IngestionAbort, IngestionError, IngestionErrorKind
from labellens.models.domain import ERROR_TYPE_NONE, KNOWN_ERROR_TYPES, AnnotationRecord, ValidationFailure

logger = logging.getLogger(__name__)

POLICIES = ("strict", "skip")

REQUIRED_FIELDS = (
    "record_id",
    "platform",
    "project",
    "annotator_id",
    "task_type",
    "submitted_at",
    "time_spent_seconds",
    "experience_days",
)

_RECORD_FIELDS = {f.name for f in fields(AnnotationRecord)}

Candidate = Union[Mapping[str, Any], AnnotationRecord]


def _as_mapping(candidate: Candidate) -> Mapping[str, Any]:
    if isinstance(candidate, AnnotationRecord):
        return {name: getattr(candidate, name) for name in _RECORD_FIELDS}
    return candidate


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise IngestionError(IngestionErrorKind.INVALID_FIELD_TYPE, f"{name} must be numeric, got bool", name)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise IngestionError(
            IngestionErrorKind.INVALID_FIELD_TYPE, f"{name} must be numeric, got {value!r}", name
        ) from None


def _to_bool(name: str, value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise IngestionError(IngestionErrorKind.INVALID_FIELD_TYPE, f"{name} must be a boolean, got {value!r}", name)


def _to_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            pass
    raise IngestionError(
        IngestionErrorKind.INVALID_TIMESTAMP, f"submitted_at is not a valid timestamp: {value!r}", "submitted_at"
    )


def _score(name: str, value: Any) -> Optional[float]:
    if _is_blank(value):
        return None
    score = _to_float(name, value)
    if math.isnan(score) or not 0.0 <= score <= 1.0:
        raise IngestionError(IngestionErrorKind.OUT_OF_RANGE_SCORE, f"{name}={value!r} is outside [0, 1]", name)
    return score


def _optional_str(value: Any) -> Optional[str]:
    return None if _is_blank(value) else str(value)


def validate_candidate(candidate: Candidate) -> AnnotationRecord:
    """
    Check one candidate against every record invariant and build the record.

    Raises IngestionError on the first violation found.
    """
    data = _as_mapping(candidate)

    for name in REQUIRED_FIELDS:
        if _is_blank(data.get(name)):
            raise IngestionError(IngestionErrorKind.MISSING_REQUIRED_FIELD, f"{name} is required", name)

    submitted_at = _to_timestamp(data["submitted_at"])

    time_spent = _to_float("time_spent_seconds", data["time_spent_seconds"])
    if math.isnan(time_spent) or time_spent < 0:
        raise IngestionError(
            IngestionErrorKind.NEGATIVE_TIME_SPENT, f"time_spent_seconds={time_spent} must be >= 0", "time_spent_seconds"
        )

    experience = _to_float("experience_days", data["experience_days"])
    if math.isnan(experience) or experience < 0:
        raise IngestionError(
            IngestionErrorKind.NEGATIVE_EXPERIENCE_DAYS, f"experience_days={experience} must be >= 0", "experience_days"
        )

    quality = _score("quality_score", data.get("quality_score"))
    confidence = _score("confidence_score", data.get("confidence_score"))

    error_flag = _to_bool("error_flag", data.get("error_flag"))
    raw_type = data.get("error_type")
    error_type = ERROR_TYPE_NONE if _is_blank(raw_type) else str(raw_type).strip()
    if not error_flag and error_type != ERROR_TYPE_NONE:
        raise IngestionError(
            IngestionErrorKind.INCONSISTENT_ERROR_TYPE,
            f"error_type={error_type!r} set on a record without error_flag",
            "error_type",
        )
    if error_flag and error_type not in KNOWN_ERROR_TYPES:
        raise IngestionError(
            IngestionErrorKind.INCONSISTENT_ERROR_TYPE,
            f"error_flag is set but error_type={error_type!r} is not a known error type",
            "error_type",
        )

    guideline = data.get("guideline_version")
    return AnnotationRecord(
        record_id=str(data["record_id"]),
        platform=str(data["platform"]),
        project=str(data["project"]),
        annotator_id=str(data["annotator_id"]),
        task_type=str(data["task_type"]),
        submitted_at=submitted_at,
        time_spent_seconds=time_spent,
        experience_days=experience,
        error_flag=error_flag,
        error_type=error_type,
        quality_score=quality,
        confidence_score=confidence,
        task_id=_optional_str(data.get("task_id")),
        training_completed=_to_bool("training_completed", data.get("training_completed")),
        guideline_version="unknown" if _is_blank(guideline) else str(guideline),
        guideline_imputed=_to_bool("guideline_imputed", data.get("guideline_imputed")),
        reviewer_id=_optional_str(data.get("reviewer_id")),
        is_reviewed=_to_bool("is_reviewed", data.get("is_reviewed")),
    )


class RecordStore(Sequence[AnnotationRecord]):
    """Read-only sequence of validated records."""

    __slots__ = ("_records",)

    def __init__(self, records: Iterable[AnnotationRecord] = ()):
        self._records: Tuple[AnnotationRecord, ...] = tuple(records)

    @classmethod
    def build(cls, candidates: Iterable[Candidate], policy: str = "strict") -> "BuildResult":
        """
        Validate candidates and freeze the accepted records.

        policy="strict": any invalid candidate aborts the build (IngestionAbort
        carries every failure). policy="skip": invalid candidates are dropped and
        returned as diagnostics.
        """
        if policy not in POLICIES:
            raise ValueError(f"Unknown ingest policy {policy!r}. Expected one of {POLICIES}.")

        accepted: List[AnnotationRecord] = []
        failures: List[ValidationFailure] = []
        seen_ids: set[str] = set()

        for index, candidate in enumerate(candidates):
            raw_id = _as_mapping(candidate).get("record_id")
            record_id = None if _is_blank(raw_id) else str(raw_id)
            try:
                record = validate_candidate(candidate)
                if record.record_id in seen_ids:
                    raise IngestionError(
                        IngestionErrorKind.DUPLICATE_RECORD_ID,
                        f"record_id={record.record_id!r} appears more than once",
                        "record_id",
                    )
            except IngestionError as e:
                failures.append(
                    ValidationFailure(
                        index=index,
                        record_id=record_id,
                        kind=e.kind.value,
                        message=e.message,
                        field=e.field,
                    )
                )
                continue
            seen_ids.add(record.record_id)
            accepted.append(record)

        if failures and policy == "strict":
            logger.info("Strict build rejected %d of %d candidates", len(failures), len(failures) + len(accepted))
            raise IngestionAbort(failures)

        logger.info("Built record store: accepted=%d rejected=%d", len(accepted), len(failures))
        return BuildResult(store=cls(accepted), failures=tuple(failures))

    @overload
    def __getitem__(self, index: int) -> AnnotationRecord: ...

    @overload
    def __getitem__(self, index: slice) -> "RecordStore": ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return RecordStore(self._records[index])
        return self._records[index]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[AnnotationRecord]:
        return iter(self._records)

    def __repr__(self) -> str:
        return f"RecordStore(n={len(self._records)})"

    @property
    def records(self) -> Tuple[AnnotationRecord, ...]:
        return self._records

    def filter(self, predicate: Callable[[AnnotationRecord], bool]) -> "RecordStore":
        return RecordStore(r for r in self._records if predicate(r))

    def shards(self, n: int) -> List["RecordStore"]:
        """Split into ``n`` contiguous sub-stores of near-equal size."""
        if n <= 0:
            raise ValueError("shard count must be >= 1")
        size, extra = divmod(len(self._records), n)
        out: List[RecordStore] = []
        start = 0
        for i in range(n):
            end = start + size + (1 if i < extra else 0)
            out.append(RecordStore(self._records[start:end]))
            start = end
        return out


@dataclass(frozen=True)
class BuildResult:
    store: RecordStore
    failures: Tuple[ValidationFailure, ...]
