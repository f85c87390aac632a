"""Unit tests for the aggregation engine."""

from datetime import datetime

import pytest

from labellens.config.settings import settings
from labellens.errors import QueryError, QueryErrorKind
from labellens.services.aggregation import (
    Avg,
    Count,
    CountDistinct,
    Dimension,
    Max,
    Min,
    OrderKey,
    RatioOfTotal,
    Sum,
    aggregate,
)


def test_platform_error_rate_scenario(platform_store):
    rows = aggregate(
        platform_store,
        dimensions=["platform"],
        metrics=[Count(), Avg("is_error", name="error_rate_pct", scale=100, digits=2)],
        order_by=["-error_rate_pct"],
    )
    assert [r["platform"] for r in rows] == ["A", "B"]
    assert rows[0]["error_rate_pct"] == 33.33
    assert rows[1]["error_rate_pct"] == 25.0
    assert [r["count"] for r in rows] == [6, 4]


def test_digits_default_to_settings(platform_store, monkeypatch):
    metrics = [Avg("is_error", name="error_rate_pct", scale=100)]

    monkeypatch.setattr(settings, "metric_digits", 2)
    rows = aggregate(platform_store, ["platform"], metrics)
    assert [r["error_rate_pct"] for r in rows] == [33.33, 25.0]

    monkeypatch.setattr(settings, "metric_digits", 1)
    assert aggregate(platform_store, ["platform"], metrics)[0]["error_rate_pct"] == 33.3

    raw = aggregate(platform_store, ["platform"], metrics, digits=None)
    assert raw[0]["error_rate_pct"] == pytest.approx(100 / 3)
    assert raw[0]["error_rate_pct"] != 33.33


def test_default_order_is_group_key(make_store):
    store = make_store([{"platform": p} for p in "CABCA"])
    rows = aggregate(store, ["platform"], [Count()])
    assert [r.key for r in rows] == [("A",), ("B",), ("C",)]


def test_avg_ignores_absent_values_and_is_null_when_empty(make_store):
    store = make_store(
        [
            {"platform": "A", "quality_score": 0.6},
            {"platform": "A", "quality_score": None},
            {"platform": "B", "quality_score": None},
        ]
    )
    rows = aggregate(store, ["platform"], [Avg("quality_score"), Count()])
    assert rows[0]["avg_quality_score"] == pytest.approx(0.6)
    assert rows[1]["avg_quality_score"] is None
    assert rows[1]["count"] == 1


def test_sum_min_max_distinct(make_store):
    store = make_store(
        [
            {"annotator_id": "a", "time_spent_seconds": 10},
            {"annotator_id": "b", "time_spent_seconds": 30},
            {"annotator_id": "a", "time_spent_seconds": 20},
        ]
    )
    rows = aggregate(
        store,
        ["platform"],
        [
            Sum("time_spent_seconds"),
            Min("time_spent_seconds"),
            Max("time_spent_seconds"),
            CountDistinct("annotator_id"),
        ],
    )
    assert rows[0].values == {
        "sum_time_spent_seconds": 60.0,
        "min_time_spent_seconds": 10.0,
        "max_time_spent_seconds": 30.0,
        "distinct_annotator_id": 2,
    }


def test_ratio_within_partition(make_store):
    store = make_store(
        [{"platform": "A", "task_type": "bbox"}] * 3
        + [{"platform": "A", "task_type": "seg"}]
        + [{"platform": "B", "task_type": "bbox"}] * 2
    )
    rows = aggregate(
        store,
        ["platform", "task_type"],
        [Count(), RatioOfTotal("count", name="share")],
        partition_for_ratio=["platform"],
    )
    shares = {r.key: r["share"] for r in rows}
    assert shares[("A", "bbox")] == pytest.approx(0.75)
    assert shares[("A", "seg")] == pytest.approx(0.25)
    assert shares[("B", "bbox")] == pytest.approx(1.0)


def test_ratio_with_empty_partition_uses_grand_total(platform_store):
    rows = aggregate(
        platform_store,
        ["platform"],
        [Count(), RatioOfTotal("count", partition=(), name="share", scale=100, digits=1)],
    )
    assert [r["share"] for r in rows] == [60.0, 40.0]


def test_zero_denominator_ratio_is_null(make_store):
    store = make_store(
        [
            {"platform": "A", "error_flag": True},
            {"platform": "A"},
            {"platform": "B"},
            {"platform": "B"},
        ]
    )
    rows = aggregate(
        store,
        ["platform", "task_type"],
        [Sum("is_error", name="errors"), RatioOfTotal("errors", partition=["platform"], name="error_share")],
    )
    by_platform = {r["platform"]: r for r in rows}
    assert by_platform["A"]["error_share"] == pytest.approx(1.0)
    assert by_platform["B"]["errors"] == 0
    assert by_platform["B"]["error_share"] is None


def test_weekday_order_uses_ordinal_table(make_store):
    # Sunday, Wednesday, Monday, Friday of the same week
    days = [10, 6, 4, 8]
    store = make_store([{"submitted_at": datetime(2024, 3, d, 9)} for d in days])
    rows = aggregate(store, ["weekday"], [Count()], order_by=["weekday"])
    assert [r["weekday"] for r in rows] == ["Monday", "Wednesday", "Friday", "Sunday"]

    rows = aggregate(store, ["weekday"], [Count()], order_by=[OrderKey("weekday", descending=True)])
    assert [r["weekday"] for r in rows] == ["Sunday", "Friday", "Wednesday", "Monday"]


def test_bucket_dimensions_sort_by_bucket_order(make_store):
    store = make_store([{"quality_score": q} for q in (0.95, 0.1, 0.75, None, 0.55)])
    rows = aggregate(store, ["quality_range"], [Count()], order_by=["quality_range"])
    assert [r["quality_range"] for r in rows] == ["Poor", "Below Average", "Average", "Excellent", "Unknown"]


def test_ties_resolved_by_group_key_not_input_order(make_store):
    forward = make_store([{"platform": p} for p in "CBA"])
    backward = make_store([{"platform": p} for p in "ABC"])
    a = aggregate(forward, ["platform"], [Count()], order_by=["-count"])
    b = aggregate(backward, ["platform"], [Count()], order_by=["-count"])
    assert [r.key for r in a] == [r.key for r in b] == [("A",), ("B",), ("C",)]


def test_null_metrics_sort_last_in_both_directions(make_store):
    store = make_store(
        [
            {"platform": "A", "quality_score": None},
            {"platform": "B", "quality_score": 0.9},
            {"platform": "C", "quality_score": 0.5},
        ]
    )
    asc = aggregate(store, ["platform"], [Avg("quality_score", name="q")], order_by=["q"])
    desc = aggregate(store, ["platform"], [Avg("quality_score", name="q")], order_by=["-q"])
    assert [r["platform"] for r in asc] == ["C", "B", "A"]
    assert [r["platform"] for r in desc] == ["B", "C", "A"]


def test_where_filters_before_grouping(platform_store):
    rows = aggregate(platform_store, ["platform"], [Count()], where=lambda r: r.error_flag)
    assert [(r["platform"], r["count"]) for r in rows] == [("A", 2), ("B", 1)]


def test_custom_dimension_object(platform_store):
    is_a = Dimension("is_a", lambda r: r.platform == "A")
    rows = aggregate(platform_store, [is_a], [Count()], order_by=["-is_a"])
    assert [(r["is_a"], r["count"]) for r in rows] == [(True, 6), (False, 4)]


def test_row_as_dict(platform_store):
    row = aggregate(platform_store, ["platform"], [Count()])[0]
    assert row.as_dict() == {"platform": "A", "count": 6}
    assert list(row.keys()) == ["platform", "count"]
    with pytest.raises(KeyError):
        row["missing"]


@pytest.mark.parametrize(
    "kwargs,kind",
    [
        ({"dimensions": ["nope"], "metrics": [Count()]}, QueryErrorKind.UNKNOWN_DIMENSION),
        ({"dimensions": ["platform"], "metrics": [Avg("nope")]}, QueryErrorKind.UNKNOWN_METRIC),
        ({"dimensions": ["platform"], "metrics": [RatioOfTotal("count")]}, QueryErrorKind.UNKNOWN_METRIC),
        ({"dimensions": ["platform"], "metrics": [Count(), Count()]}, QueryErrorKind.UNKNOWN_METRIC),
        ({"dimensions": ["platform"], "metrics": [Count()], "order_by": ["-nope"]}, QueryErrorKind.UNKNOWN_METRIC),
        (
            {
                "dimensions": ["platform"],
                "metrics": [Count(), RatioOfTotal("count")],
                "partition_for_ratio": ["project"],
            },
            QueryErrorKind.INVALID_PARTITION_SUBSET,
        ),
        (
            {"dimensions": ["platform"], "metrics": [Count(), RatioOfTotal("count", partition=["task_type"])]},
            QueryErrorKind.INVALID_PARTITION_SUBSET,
        ),
    ],
)
def test_query_errors(platform_store, kwargs, kind):
    with pytest.raises(QueryError) as exc:
        aggregate(platform_store, **kwargs)
    assert exc.value.kind == kind
