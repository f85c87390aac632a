"""CSV ingestion adapter.

Turns string-valued CSV rows into candidate mappings for RecordStore.build.
Conversion is lenient: a value that cannot be parsed is passed through unchanged
so the store reports it with the matching IngestionError kind.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

NUMERIC_FIELDS = ("time_spent_seconds", "experience_days", "quality_score", "confidence_score")
BOOL_FIELDS = ("error_flag", "training_completed", "guideline_imputed", "is_reviewed")

# Column aliases seen in exported labeling data.
COLUMN_ALIASES = {
    "id": "record_id",
    "annotation_id": "record_id",
    "timestamp": "submitted_at",
    "submission_time": "submitted_at",
    "annotator_experience_days": "experience_days",
    "time_spent": "time_spent_seconds",
    "project_name": "project",
    "is_guideline_imputed": "guideline_imputed",
}

_TRUE = {"true", "1", "yes", "y", "t"}
_FALSE = {"false", "0", "no", "n", "f"}


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def parse_bool(value: Any) -> Any:
    value = _blank_to_none(value)
    if value is None or isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return value


def parse_number(value: Any) -> Any:
    value = _blank_to_none(value)
    if value is None or isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).strip())
    except ValueError:
        return value


def parse_candidate(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalize column names and convert one CSV row into a candidate mapping."""
    out: Dict[str, Any] = {}
    for column, value in row.items():
        if column is None:
            continue
        name = column.strip().lower()
        name = COLUMN_ALIASES.get(name, name)
        out[name] = _blank_to_none(value.strip() if isinstance(value, str) else value)

    for name in NUMERIC_FIELDS:
        if name in out:
            out[name] = parse_number(out[name])
    for name in BOOL_FIELDS:
        if name in out:
            out[name] = parse_bool(out[name])
    return out


def load_candidates_csv(path: str | Path, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    path = Path(path)
    out: List[Dict[str, Any]] = []
    # utf-8-sig drops the BOM that spreadsheet exports put before the header
    with path.open("r", newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for row in reader:
            out.append(parse_candidate(row))
            if limit is not None and len(out) >= limit:
                break
    return out
