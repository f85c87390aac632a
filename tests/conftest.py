"""Global test fixtures."""

import itertools
import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from labellens.services.record_store import RecordStore  # noqa: E402


@pytest.fixture
def make_candidate():
    counter = itertools.count(1)

    def _make(**overrides) -> dict:
        n = next(counter)
        candidate = {
            "record_id": f"r{n}",
            "platform": "A",
            "project": "p1",
            "annotator_id": "ann1",
            "task_type": "bbox",
            # Monday morning
            "submitted_at": datetime(2024, 3, 4, 10, 0),
            "time_spent_seconds": 45.0,
            "experience_days": 10,
            "quality_score": 0.8,
            "confidence_score": 0.7,
            "error_flag": False,
            "error_type": "none",
        }
        if overrides.get("error_flag") and "error_type" not in overrides:
            candidate["error_type"] = "misclassification"
        candidate.update(overrides)
        return candidate

    return _make


@pytest.fixture
def make_store(make_candidate):
    def _make(specs) -> RecordStore:
        return RecordStore.build([make_candidate(**s) for s in specs]).store

    return _make


@pytest.fixture
def platform_store(make_store):
    """10 records: 6 on platform A with 2 errors, 4 on platform B with 1 error."""
    specs = (
        [{"platform": "A", "error_flag": i < 2} for i in range(6)]
        + [{"platform": "B", "error_flag": i < 1} for i in range(4)]
    )
    return make_store(specs)
