"""Group-by aggregation over filtered conversations."""

import time
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger
from pydantic.alias_generators import to_snake

from .adapters import RecordAdapter
from .config import AnalyticsConfig
from .constants import (
    MILLISECONDS,
    UNKNOWN_DIMENSION,
    Dimension,
    LogMessage,
    MetricName,
    Outcome,
    SortDirection,
    TimeGranularity,
)
from .filtering import FilterEngine
from .models import ConversationRecord, QueryMetadata, QueryResult, QueryRow, format_timestamp
from .options import AnalyticsQuery

Metric = Callable[[Sequence[ConversationRecord]], float]


def _average_confidence(group: Sequence[ConversationRecord]) -> float:
    scores = [c.average_confidence_score for c in group if c.average_confidence_score is not None]
    return sum(scores) / len(scores) if scores else 0.0


def _escalation_rate(group: Sequence[ConversationRecord]) -> float:
    if not group:
        return 0.0
    return sum(1 for c in group if c.outcome == Outcome.ESCALATED) / len(group)


DEFAULT_METRICS: dict[str, Metric] = {
    MetricName.COUNT: lambda group: float(len(group)),
    MetricName.AVERAGE_CONFIDENCE: _average_confidence,
    MetricName.TOTAL_MESSAGES: lambda group: float(sum(c.message_count for c in group)),
    MetricName.ESCALATION_RATE: _escalation_rate,
}

_DIMENSIONS = frozenset(d.value for d in Dimension)


def dimension_value(record: ConversationRecord, dimension: str) -> Any:
    """Read a dimension by snake_case or camelCase name.

    Missing values and names outside ``Dimension`` map to ``unknown``.
    """
    name = to_snake(dimension)
    if name not in _DIMENSIONS:
        return UNKNOWN_DIMENSION
    value = getattr(record, name)
    return UNKNOWN_DIMENSION if value is None else value


def bucket_timestamp(value: datetime, granularity: TimeGranularity) -> datetime:
    """Truncate a timestamp to the start of its hour, day, week (Sunday) or month, in UTC."""
    value = value.astimezone(timezone.utc)
    if granularity == TimeGranularity.HOUR:
        return value.replace(minute=0, second=0, microsecond=0)
    day = value.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == TimeGranularity.WEEK:
        return day - timedelta(days=(day.weekday() + 1) % 7)
    if granularity == TimeGranularity.MONTH:
        return day.replace(day=1)
    return day


def _sortable(value: Any) -> tuple[int, Any]:
    if isinstance(value, (int, float)):
        return (0, value)
    if isinstance(value, datetime):
        return (1, value.timestamp())
    return (2, str(value))


class QueryEngine:
    """Executes analytics queries: filter, group by dimensions, compute metrics, sort.

    Attributes:
        filter_engine: Produces the candidate conversations.
        metrics: Metric name to reducer; unknown names yield 0.
    """

    def __init__(
        self,
        *,
        adapter: RecordAdapter,
        filter_engine: FilterEngine | None = None,
        config: AnalyticsConfig | None = None,
    ):
        self.filter_engine = filter_engine or FilterEngine(adapter=adapter, config=config)
        self.metrics: dict[str, Metric] = dict(DEFAULT_METRICS)

    def register_metric(self, name: str, metric: Metric) -> None:
        self.metrics[name] = metric

    def aggregate(
        self,
        records: Sequence[ConversationRecord],
        dimensions: Sequence[str],
        metrics: Sequence[str],
        time_granularity: TimeGranularity | None = None,
    ) -> list[QueryRow]:
        """Group records and compute metrics per group, in group-discovery order.

        Args:
            records: Conversations to aggregate.
            dimensions: Grouping dimensions; none yields a single group.
            metrics: Metric names to compute.
            time_granularity: When set, each row carries the bucketed
                timestamp of its group's first record.

        Returns:
            list[QueryRow]: One row per distinct dimension tuple.
        """
        groups: dict[tuple, list[ConversationRecord]] = {}
        for record in records:
            key = tuple(dimension_value(record, d) for d in dimensions)
            groups.setdefault(key, []).append(record)

        rows: list[QueryRow] = []
        for key, group in groups.items():
            values = {
                name: self.metrics[name](group) if name in self.metrics else 0
                for name in metrics
            }
            bucket = None
            if time_granularity:
                bucket = format_timestamp(bucket_timestamp(group[0].timestamp, time_granularity))
            rows.append(
                QueryRow(dimensions=dict(zip(dimensions, key)), metrics=values, timestamp=bucket)
            )
        return rows

    @staticmethod
    def sort_rows(rows: list[QueryRow], sort_by: str, order: SortDirection) -> list[QueryRow]:
        """Stable sort by a metric, falling back to a dimension of the same name."""

        def key(row: QueryRow) -> tuple[int, Any]:
            if sort_by in row.metrics:
                return _sortable(row.metrics[sort_by])
            return _sortable(row.dimensions.get(sort_by, 0))

        return sorted(rows, key=key, reverse=order == SortDirection.DESC)

    async def execute(self, query: AnalyticsQuery) -> QueryResult:
        """Run an analytics query.

        Aggregates over every matching conversation; the filter's own
        pagination is not applied.

        Args:
            query: Validated query.

        Returns:
            QueryResult: Rows plus execution metadata.
        """
        started = time.perf_counter()
        logger.info(
            LogMessage.QUERY_EXECUTING.format(
                query.query_id, len(query.dimensions), len(query.metrics)
            )
        )

        records = await self.filter_engine.select(query.filters)
        rows = self.aggregate(records, query.dimensions, query.metrics, query.time_granularity)
        if query.sort_by:
            rows = self.sort_rows(rows, query.sort_by, query.sort_order)
        if query.limit:
            rows = rows[: query.limit]

        elapsed = (time.perf_counter() - started) * MILLISECONDS
        now = format_timestamp(datetime.now(timezone.utc))
        logger.debug(
            LogMessage.QUERY_DONE.format(query.query_id, len(rows), len(records), round(elapsed, 2))
        )
        return QueryResult(
            query_id=query.query_id,
            executed_at=now,
            execution_time_ms=elapsed,
            result_count=len(rows),
            data=rows,
            filters=query.filters,
            metadata=QueryMetadata(
                total_records_scanned=len(records),
                cache_hit=False,
                data_freshness=now,
            ),
        )
