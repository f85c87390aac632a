"""Aggregation engine: group records by dimensions and reduce them to metrics.

Pure domain logic over an immutable record sequence. Every accumulator is a
running count/sum style state whose merge is associative and commutative, so a
record set can be sharded, aggregated per shard, and merged into exactly the
result of a single pass.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from fractions import Fraction
from operator import attrgetter
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from labellens.config.settings import settings
from labellens.errors import QueryError, QueryErrorKind
from labellens.models.domain import AggregateRow
from labellens.services.buckets import (
    COHORT_PERIOD,
    CONFIDENCE_LEVEL,
    EXPERIENCE_LEVEL,
    QUALITY_RANGE,
    SPEED_CATEGORY,
    TIME_OF_DAY,
    Bucketizer,
    month_ordinal,
    weekday_ordinal,
)

logger = logging.getLogger(__name__)

# Marker for "use settings.metric_digits"; None already means "do not round".
SETTINGS_DIGITS: Any = object()

GroupKey = Tuple[Any, ...]
Getter = Callable[[Any], Any]


# ---------------------------------------------------------------------------
# Dimensions and fields
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Dimension:
    """A named grouping extractor with an explicit sort order."""

    name: str
    extract: Getter
    sort_key: Optional[Callable[[Any], Any]] = None

    def order_value(self, value: Any) -> Tuple[int, Any]:
        # None sorts after every real value.
        if value is None:
            return (1, 0)
        if self.sort_key is None:
            return (0, value)
        return (0, self.sort_key(value))


def bucket_dimension(name: str, bucketizer: Bucketizer, getter: Getter) -> Dimension:
    return Dimension(name=name, extract=lambda r: bucketizer(getter(r)), sort_key=bucketizer.ordinal)


def _flag(attr: str) -> Getter:
    get = attrgetter(attr)
    return lambda r: 1 if get(r) else 0


RECORD_DIMENSIONS: Dict[str, Dimension] = {
    d.name: d
    for d in [
        Dimension("platform", attrgetter("platform")),
        Dimension("project", attrgetter("project")),
        Dimension("annotator_id", attrgetter("annotator_id")),
        Dimension("task_type", attrgetter("task_type")),
        Dimension("task_id", attrgetter("task_id")),
        Dimension("error_type", attrgetter("error_type")),
        Dimension("error_flag", attrgetter("error_flag")),
        Dimension("guideline_version", attrgetter("guideline_version")),
        Dimension("guideline_imputed", attrgetter("guideline_imputed")),
        Dimension("training_completed", attrgetter("training_completed")),
        Dimension("reviewer_id", attrgetter("reviewer_id")),
        Dimension("is_reviewed", attrgetter("is_reviewed")),
        Dimension("month", attrgetter("month")),
        Dimension("month_name", attrgetter("month_name"), sort_key=month_ordinal),
        Dimension("weekday", attrgetter("weekday"), sort_key=weekday_ordinal),
        Dimension("hour", attrgetter("hour")),
        Dimension("time_of_day", attrgetter("time_of_day"), sort_key=TIME_OF_DAY.ordinal),
        bucket_dimension("experience_level", EXPERIENCE_LEVEL, attrgetter("experience_days")),
        bucket_dimension("cohort_period", COHORT_PERIOD, attrgetter("experience_days")),
        bucket_dimension("quality_range", QUALITY_RANGE, attrgetter("quality_score")),
        bucket_dimension("confidence_level", CONFIDENCE_LEVEL, attrgetter("confidence_score")),
        bucket_dimension("speed_category", SPEED_CATEGORY, attrgetter("time_spent_seconds")),
    ]
}

RECORD_FIELDS: Dict[str, Getter] = {
    "quality_score": attrgetter("quality_score"),
    "confidence_score": attrgetter("confidence_score"),
    "time_spent_seconds": attrgetter("time_spent_seconds"),
    "experience_days": attrgetter("experience_days"),
    "hour": attrgetter("hour"),
    "is_error": _flag("error_flag"),
    "is_reviewed": _flag("is_reviewed"),
    "training_completed": _flag("training_completed"),
    "guideline_imputed": _flag("guideline_imputed"),
}


# ---------------------------------------------------------------------------
# Accumulators
# ---------------------------------------------------------------------------


class Accumulator:
    def add(self, value: Any) -> None:
        raise NotImplementedError

    def merged(self, other: "Accumulator") -> "Accumulator":
        raise NotImplementedError

    def result(self) -> Any:
        raise NotImplementedError


class CountAcc(Accumulator):
    __slots__ = ("n",)

    def __init__(self, n: int = 0):
        self.n = n

    def add(self, value: Any) -> None:
        self.n += 1

    def merged(self, other: "CountAcc") -> "CountAcc":
        return CountAcc(self.n + other.n)

    def result(self) -> int:
        return self.n


class SumAcc(Accumulator):
    """
    Running (total, contributing count); also backs Avg.

    Finite values are summed as an exact Fraction and converted to float only
    in result(), so the outcome does not depend on how the records were split
    into shards or in which order partials are merged. Infinities and NaN are
    kept apart in ``special``, where float addition is already order-free.
    """

    __slots__ = ("total", "n", "is_float", "special")

    def __init__(self, total: Fraction = Fraction(0), n: int = 0, is_float: bool = False, special: float = 0.0):
        self.total = total
        self.n = n
        self.is_float = is_float
        self.special = special

    def add(self, value: Any) -> None:
        if value is None:
            return
        self.n += 1
        if not isinstance(value, int):
            self.is_float = True
        if isinstance(value, float) and not math.isfinite(value):
            self.special += value
            return
        self.total += Fraction(value)

    def merged(self, other: "SumAcc") -> "SumAcc":
        return type(self)(
            self.total + other.total,
            self.n + other.n,
            self.is_float or other.is_float,
            self.special + other.special,
        )

    def result(self) -> Any:
        if self.special:
            return self.special
        return float(self.total) if self.is_float else int(self.total)


class AvgAcc(SumAcc):
    __slots__ = ()

    def result(self) -> Optional[float]:
        if self.n == 0:
            return None
        if self.special:
            return self.special / self.n
        return float(self.total / self.n)


class ExtremumAcc(Accumulator):
    __slots__ = ("value", "pick")

    def __init__(self, pick: Callable[[Any, Any], Any], value: Any = None):
        self.pick = pick
        self.value = value

    def add(self, value: Any) -> None:
        if value is None:
            return
        self.value = value if self.value is None else self.pick(self.value, value)

    def merged(self, other: "ExtremumAcc") -> "ExtremumAcc":
        out = ExtremumAcc(self.pick, self.value)
        out.add(other.value)
        return out

    def result(self) -> Any:
        return self.value


class DistinctAcc(Accumulator):
    __slots__ = ("seen",)

    def __init__(self, seen: Optional[frozenset] = None):
        self.seen = set(seen or ())

    def add(self, value: Any) -> None:
        if value is not None:
            self.seen.add(value)

    def merged(self, other: "DistinctAcc") -> "DistinctAcc":
        return DistinctAcc(frozenset(self.seen | other.seen))

    def result(self) -> int:
        return len(self.seen)


# ---------------------------------------------------------------------------
# Metric specs
# ---------------------------------------------------------------------------

FieldRef = Union[str, Getter]


def _field_label(ref: FieldRef) -> str:
    return ref if isinstance(ref, str) else getattr(ref, "__name__", "value")


@dataclass(frozen=True)
class Metric:
    """Base for record reducers. ``name`` overrides the default output name."""

    name: Optional[str] = field(default=None, kw_only=True)
    digits: Optional[int] = field(default=None, kw_only=True)

    @property
    def key(self) -> str:
        return self.name or self.default_name()

    def default_name(self) -> str:
        raise NotImplementedError

    def field_ref(self) -> Optional[FieldRef]:
        return None

    def accumulator(self) -> Accumulator:
        raise NotImplementedError

    def finish(self, raw: Any) -> Any:
        return raw


@dataclass(frozen=True)
class Count(Metric):
    def default_name(self) -> str:
        return "count"

    def accumulator(self) -> Accumulator:
        return CountAcc()


@dataclass(frozen=True)
class Sum(Metric):
    field: FieldRef = "value"

    def default_name(self) -> str:
        return f"sum_{_field_label(self.field)}"

    def field_ref(self) -> FieldRef:
        return self.field

    def accumulator(self) -> Accumulator:
        return SumAcc()


@dataclass(frozen=True)
class Avg(Metric):
    """Mean of non-null values; null when nothing contributes."""

    field: FieldRef = "value"
    scale: float = 1.0

    def default_name(self) -> str:
        return f"avg_{_field_label(self.field)}"

    def field_ref(self) -> FieldRef:
        return self.field

    def accumulator(self) -> Accumulator:
        return AvgAcc()

    def finish(self, raw: Any) -> Any:
        return None if raw is None else raw * self.scale


@dataclass(frozen=True)
class Min(Metric):
    field: FieldRef = "value"

    def default_name(self) -> str:
        return f"min_{_field_label(self.field)}"

    def field_ref(self) -> FieldRef:
        return self.field

    def accumulator(self) -> Accumulator:
        return ExtremumAcc(min)


@dataclass(frozen=True)
class Max(Metric):
    field: FieldRef = "value"

    def default_name(self) -> str:
        return f"max_{_field_label(self.field)}"

    def field_ref(self) -> FieldRef:
        return self.field

    def accumulator(self) -> Accumulator:
        return ExtremumAcc(max)


@dataclass(frozen=True)
class CountDistinct(Metric):
    field: FieldRef = "value"

    def default_name(self) -> str:
        return f"distinct_{_field_label(self.field)}"

    def field_ref(self) -> FieldRef:
        return self.field

    def accumulator(self) -> Accumulator:
        return DistinctAcc()


@dataclass(frozen=True)
class RatioOfTotal:
    """
    Row value of ``metric`` divided by the sum of ``metric`` over all rows that
    share the ``partition`` dimensions. ``partition=None`` falls back to the
    query's ``partition_for_ratio``; an empty partition means the grand total.
    A zero denominator or a null numerator yields None.
    """

    metric: str
    partition: Optional[Sequence[str]] = None
    name: Optional[str] = None
    scale: float = 1.0
    digits: Optional[int] = None

    @property
    def key(self) -> str:
        return self.name or f"{self.metric}_ratio"


MetricSpec = Union[Metric, RatioOfTotal]


@dataclass(frozen=True)
class OrderKey:
    name: str
    descending: bool = False

    @classmethod
    def parse(cls, value: Union[str, "OrderKey"]) -> "OrderKey":
        if isinstance(value, OrderKey):
            return value
        if value.startswith("-"):
            return cls(value[1:], descending=True)
        return cls(value)


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Query:
    dimensions: Sequence[Union[str, Dimension]]
    metrics: Sequence[MetricSpec]
    partition_for_ratio: Optional[Sequence[str]] = None
    order_by: Sequence[Union[str, OrderKey]] = ()
    where: Optional[Callable[[Any], bool]] = None
    digits: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "dimensions", tuple(self.dimensions))
        object.__setattr__(self, "metrics", tuple(self.metrics))
        object.__setattr__(self, "order_by", tuple(self.order_by))
        if self.partition_for_ratio is not None:
            object.__setattr__(self, "partition_for_ratio", tuple(self.partition_for_ratio))

    def compile(
        self,
        dimension_registry: Mapping[str, Dimension] = RECORD_DIMENSIONS,
        field_registry: Mapping[str, Getter] = RECORD_FIELDS,
    ) -> "CompiledQuery":
        """Resolve names and validate; raises QueryError before touching any record."""
        dims: List[Dimension] = []
        for d in self.dimensions:
            if isinstance(d, Dimension):
                dims.append(d)
            elif d in dimension_registry:
                dims.append(dimension_registry[d])
            else:
                raise QueryError(QueryErrorKind.UNKNOWN_DIMENSION, f"Unknown dimension {d!r}")
        dim_names = [d.name for d in dims]
        if len(set(dim_names)) != len(dim_names):
            raise QueryError(QueryErrorKind.UNKNOWN_DIMENSION, f"Duplicate dimension in {dim_names}")

        def resolve_field(ref: FieldRef) -> Getter:
            if callable(ref):
                return ref
            if ref in field_registry:
                return field_registry[ref]
            if ref in dimension_registry:
                return dimension_registry[ref].extract
            raise QueryError(QueryErrorKind.UNKNOWN_METRIC, f"Unknown metric field {ref!r}")

        reducers: List[Tuple[Metric, Optional[Getter]]] = []
        ratios: List[RatioOfTotal] = []
        output_names = set(dim_names)
        for m in self.metrics:
            if not isinstance(m, (Metric, RatioOfTotal)):
                raise QueryError(QueryErrorKind.UNKNOWN_METRIC, f"Unsupported metric spec {m!r}")
            if m.key in output_names:
                raise QueryError(QueryErrorKind.UNKNOWN_METRIC, f"Duplicate output name {m.key!r}")
            output_names.add(m.key)
            if isinstance(m, RatioOfTotal):
                ratios.append(m)
            else:
                ref = m.field_ref()
                reducers.append((m, None if ref is None else resolve_field(ref)))

        reducer_keys = {m.key for m, _ in reducers}
        resolved_ratios: List[Tuple[RatioOfTotal, Tuple[int, ...]]] = []
        for ratio in ratios:
            if ratio.metric not in reducer_keys:
                raise QueryError(
                    QueryErrorKind.UNKNOWN_METRIC,
                    f"Ratio {ratio.key!r} references unknown metric {ratio.metric!r}",
                )
            partition = ratio.partition if ratio.partition is not None else (self.partition_for_ratio or ())
            resolved_ratios.append((ratio, _partition_positions(partition, dim_names)))

        if self.partition_for_ratio is not None:
            _partition_positions(self.partition_for_ratio, dim_names)

        order = [OrderKey.parse(o) for o in self.order_by]
        for o in order:
            if o.name not in output_names:
                raise QueryError(QueryErrorKind.UNKNOWN_METRIC, f"Cannot order by unknown name {o.name!r}")

        return CompiledQuery(
            dimensions=tuple(dims),
            reducers=tuple(reducers),
            ratios=tuple(resolved_ratios),
            order=tuple(order),
            where=self.where,
            digits=self.digits,
        )


def _partition_positions(partition: Sequence[str], dim_names: Sequence[str]) -> Tuple[int, ...]:
    missing = [p for p in partition if p not in dim_names]
    if missing:
        raise QueryError(
            QueryErrorKind.INVALID_PARTITION_SUBSET,
            f"Partition dimensions {missing} are not grouping dimensions {list(dim_names)}",
        )
    return tuple(dim_names.index(p) for p in partition)


@dataclass(frozen=True)
class CompiledQuery:
    dimensions: Tuple[Dimension, ...]
    reducers: Tuple[Tuple[Metric, Optional[Getter]], ...]
    ratios: Tuple[Tuple[RatioOfTotal, Tuple[int, ...]], ...]
    order: Tuple[OrderKey, ...]
    where: Optional[Callable[[Any], bool]]
    digits: Optional[int]

    @property
    def dimension_names(self) -> Tuple[str, ...]:
        return tuple(d.name for d in self.dimensions)


# ---------------------------------------------------------------------------
# Partial aggregation and merge
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PartialAggregate:
    """Per-group accumulator state for one slice of the records."""

    query: CompiledQuery
    groups: Mapping[GroupKey, Tuple[Accumulator, ...]]
    record_count: int = 0

    def merge(self, other: "PartialAggregate") -> "PartialAggregate":
        if other.query != self.query:
            raise ValueError("Cannot merge partial aggregates of different queries")
        groups: Dict[GroupKey, Tuple[Accumulator, ...]] = dict(self.groups)
        for key, accs in other.groups.items():
            mine = groups.get(key)
            if mine is None:
                groups[key] = accs
            else:
                groups[key] = tuple(a.merged(b) for a, b in zip(mine, accs))
        return PartialAggregate(self.query, groups, self.record_count + other.record_count)


def partial_aggregate(records: Iterable[Any], query: Union[Query, CompiledQuery]) -> PartialAggregate:
    compiled = query.compile() if isinstance(query, Query) else query
    groups: Dict[GroupKey, Tuple[Accumulator, ...]] = {}
    n = 0
    for record in records:
        if compiled.where is not None and not compiled.where(record):
            continue
        n += 1
        key = tuple(d.extract(record) for d in compiled.dimensions)
        accs = groups.get(key)
        if accs is None:
            accs = tuple(m.accumulator() for m, _ in compiled.reducers)
            groups[key] = accs
        for acc, (_, getter) in zip(accs, compiled.reducers):
            acc.add(None if getter is None else getter(record))
    return PartialAggregate(compiled, groups, n)


def _round(value: Any, digits: Optional[int]) -> Any:
    if digits is None or isinstance(value, bool) or not isinstance(value, float):
        return value
    return round(value, digits)


def finalize(partial: PartialAggregate) -> List[AggregateRow]:
    q = partial.query
    names = q.dimension_names

    raw: Dict[GroupKey, Dict[str, Any]] = {}
    for key, accs in partial.groups.items():
        raw[key] = {m.key: m.finish(acc.result()) for acc, (m, _) in zip(accs, q.reducers)}

    for ratio, positions in q.ratios:
        parts: Dict[GroupKey, List[float]] = {}
        for key, values in raw.items():
            v = values[ratio.metric]
            parts.setdefault(tuple(key[i] for i in positions), []).append(v if v is not None else 0)
        # fsum is exactly rounded, so the denominator ignores group order
        totals = {pkey: math.fsum(vs) for pkey, vs in parts.items()}
        for key, values in raw.items():
            v = values[ratio.metric]
            denom = totals[tuple(key[i] for i in positions)]
            values[ratio.key] = None if v is None or denom == 0 else (v / denom) * ratio.scale

    digits_by_name = {m.key: (m.digits if m.digits is not None else q.digits) for m, _ in q.reducers}
    digits_by_name.update({r.key: (r.digits if r.digits is not None else q.digits) for r, _ in q.ratios})

    ordered_keys = _ordered_keys(q, raw)
    rows = []
    for key in ordered_keys:
        values = {name: _round(raw[key][name], digits_by_name[name]) for name in digits_by_name}
        rows.append(AggregateRow(dimensions=names, key=key, values=values))
    return rows


def _ordered_keys(q: CompiledQuery, raw: Mapping[GroupKey, Mapping[str, Any]]) -> List[GroupKey]:
    """Explicit ordering: order keys first, then the full GroupKey; never input order."""
    keys = sorted(raw, key=lambda k: tuple(d.order_value(v) for d, v in zip(q.dimensions, k)))
    dim_index = {d.name: i for i, d in enumerate(q.dimensions)}

    for o in reversed(q.order):
        if o.name in dim_index:
            i = dim_index[o.name]
            dim = q.dimensions[i]
            present = [k for k in keys if k[i] is not None]
            nulls = [k for k in keys if k[i] is None]
            present.sort(key=lambda k: dim.order_value(k[i]), reverse=o.descending)
        else:
            present = [k for k in keys if raw[k][o.name] is not None]
            nulls = [k for k in keys if raw[k][o.name] is None]
            present.sort(key=lambda k: raw[k][o.name], reverse=o.descending)
        keys = present + nulls
    return keys


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def run_query(records: Iterable[Any], query: Union[Query, CompiledQuery]) -> List[AggregateRow]:
    return finalize(partial_aggregate(records, query))


def aggregate(
    records: Iterable[Any],
    dimensions: Sequence[Union[str, Dimension]],
    metrics: Sequence[MetricSpec],
    partition_for_ratio: Optional[Sequence[str]] = None,
    order_by: Sequence[Union[str, OrderKey]] = (),
    where: Optional[Callable[[Any], bool]] = None,
    digits: Any = SETTINGS_DIGITS,
) -> List[AggregateRow]:
    """
    Group ``records`` by ``dimensions`` and compute ``metrics`` per group.

    Returns one AggregateRow per distinct observed GroupKey, ordered by
    ``order_by`` (dimension or metric names, "-name" for descending) and then
    by the GroupKey itself. Float values are rounded to ``digits``, which
    defaults to ``settings.metric_digits``; pass ``digits=None`` for raw values.
    """
    if digits is SETTINGS_DIGITS:
        digits = settings.metric_digits
    query = Query(
        dimensions=dimensions,
        metrics=metrics,
        partition_for_ratio=partition_for_ratio,
        order_by=order_by,
        where=where,
        digits=digits,
    )
    return run_query(records, query)


def aggregate_sharded(shards: Iterable[Iterable[Any]], query: Query) -> List[AggregateRow]:
    """Aggregate each shard independently and merge the partial states."""
    compiled = query.compile()
    merged = PartialAggregate(compiled, {}, 0)
    count = 0
    for shard in shards:
        merged = merged.merge(partial_aggregate(shard, compiled))
        count += 1
    logger.debug("Merged %d shard(s) into %d group(s)", count, len(merged.groups))
    return finalize(merged)
