"""CLI interface for support chatbot analytics."""

import asyncio
import json
from dataclasses import asdict
from collections.abc import AsyncIterator, Coroutine, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from .adapters import RecordAdapter
from .aggregation import QueryEngine
from .analyzers import FaqAnalyzer, KnowledgeGapAnalyzer, QuestionAnalyzer
from .config import AnalyticsConfig
from .constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_CSV_DELIMITER,
    DEFAULT_DATA_DIR,
    DEFAULT_EXPORT_DIR,
    DEFAULT_MAX_OPPORTUNITIES,
    DEFAULT_MAX_SEARCH_RESULTS,
    DEFAULT_MIN_OCCURRENCES,
    DEFAULT_PAGE_LIMIT,
    DEFAULT_RANKING_LIMIT,
    DEFAULT_TOP_CATEGORIES,
    ENV_API_URL,
    ENV_DATA_DIR,
    ENV_EXPORT_DIR,
    EXIT_CODE_ERROR,
    CliHelp,
    ExportDataType,
    ExportFormat,
    Language,
    LogMessage,
    MetricName,
    Outcome,
    RankingMethod,
    SearchScope,
    SortDirection,
    SortField,
    TimeGranularity,
    TrendGranularity,
)
from .exporter import ExportFormatter
from .fetcher import RecordApiClient
from .filtering import FilterEngine, resolve_date_range
from .models import format_timestamp
from .options import AnalyticsQuery, ExportOptions, FilterOptions, SearchOptions
from .search import SearchEngine
from .storage import JsonRecordStore, LocalExportSink

app = typer.Typer(help=CliHelp.APP)
console = Console()

DataDirOption = typer.Option(DEFAULT_DATA_DIR, "--data-dir", envvar=ENV_DATA_DIR, help=CliHelp.DATA_DIR)
ApiUrlOption = typer.Option(None, "--api-url", envvar=ENV_API_URL, help=CliHelp.API_URL)
StartOption = typer.Option(None, "--start", "-s", help=CliHelp.START)
EndOption = typer.Option(None, "--end", "-e", help=CliHelp.END)
LanguageOption = typer.Option(None, "--language", "-l", help=CliHelp.LANGUAGE)

_SEARCHABLE_TYPES = {t.value for t in SearchScope}


@asynccontextmanager
async def _open_adapter(data_dir: Path, api_url: str | None) -> AsyncIterator[RecordAdapter]:
    """Record source for a command: the HTTP record store when a URL is set, else the data directory."""
    if api_url:
        async with RecordApiClient(base_url=api_url) as client:
            yield client
    else:
        yield JsonRecordStore(data_dir=data_dir).load()


def _run(coro: Coroutine[Any, Any, None]) -> None:
    try:
        asyncio.run(coro)
    except typer.Exit:
        raise
    except Exception as e:
        logger.exception(LogMessage.ERROR_OCCURRED.format(e))
        raise typer.Exit(code=EXIT_CODE_ERROR)


def _date_range(
    start: str | None, end: str | None, config: AnalyticsConfig
) -> tuple[datetime, datetime]:
    options = FilterOptions(start_date=start, end_date=end)
    return resolve_date_range(options, lookback_days=config.lookback_days)


def _print_table(title: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("" if value is None else str(value) for value in row))
    console.print(table)


async def _filter_async(
    data_dir: Path,
    api_url: str | None,
    options: FilterOptions,
) -> None:
    async with _open_adapter(data_dir, api_url) as adapter:
        response = await FilterEngine(adapter=adapter).filter(options)

    _print_table(
        f"Conversations {response.pagination.offset + 1}-"
        f"{response.pagination.offset + len(response.data)} of {response.pagination.total}",
        ["id", "timestamp", "language", "outcome", "messages", "confidence"],
        [
            (
                c.conversation_id,
                format_timestamp(c.timestamp),
                c.language,
                c.outcome,
                c.message_count,
                c.average_confidence_score,
            )
            for c in response.data
        ],
    )
    console.print(f"filter id: {response.filter_state.filter_id}")


@app.command("filter")
def filter_conversations(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    outcome: Outcome = typer.Option(None, "--outcome", "-o", help=CliHelp.OUTCOME),
    min_messages: int = typer.Option(None, "--min-messages", help=CliHelp.MIN_MESSAGES),
    max_messages: int = typer.Option(None, "--max-messages", help=CliHelp.MAX_MESSAGES),
    sort_by: SortField = typer.Option(None, "--sort-by", help=CliHelp.SORT_BY),
    sort_order: SortDirection = typer.Option(
        SortDirection.ASC, "--sort-order", help=CliHelp.SORT_ORDER
    ),
    limit: int = typer.Option(DEFAULT_PAGE_LIMIT, "--limit", "-n", help=CliHelp.LIMIT),
    offset: int = typer.Option(0, "--offset", help=CliHelp.OFFSET),
) -> None:
    """List conversations matching every given filter, one page at a time."""

    async def run() -> None:
        options = FilterOptions(
            start_date=start,
            end_date=end,
            language=language,
            outcome=outcome,
            message_count_min=min_messages,
            message_count_max=max_messages,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
        await _filter_async(data_dir, api_url, options)

    _run(run())


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to search for."),
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    scope: list[SearchScope] = typer.Option(None, "--in", help=CliHelp.SCOPE),
    fuzzy: bool = typer.Option(False, "--fuzzy/--exact", help=CliHelp.FUZZY),
    max_results: int = typer.Option(
        DEFAULT_MAX_SEARCH_RESULTS, "--max-results", "-n", help=CliHelp.MAX_RESULTS
    ),
) -> None:
    """Search conversations, questions and messages by relevance."""

    async def run() -> None:
        options = SearchOptions(
            query=query,
            search_in=scope or list(SearchScope),
            filters=FilterOptions(start_date=start, end_date=end, language=language),
            fuzzy_match=fuzzy,
            max_results=max_results,
        )
        async with _open_adapter(data_dir, api_url) as adapter:
            response = await SearchEngine(adapter=adapter).search(options)

        _print_table(
            f"{len(response.results)} of {response.total_count} results for '{query}'",
            ["kind", "id", "relevance", "highlights", "content"],
            [
                (r.kind, r.id, f"{r.relevance_score:.3f}", ", ".join(r.highlights), r.content)
                for r in response.results
            ],
        )
        if response.suggestions:
            console.print(f"Did you mean: {', '.join(response.suggestions)}")

    _run(run())


@app.command()
def query(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    dimension: list[str] = typer.Option(None, "--dimension", "-d", help=CliHelp.DIMENSION),
    metric: list[str] = typer.Option(None, "--metric", "-m", help=CliHelp.METRIC),
    granularity: TimeGranularity = typer.Option(
        None, "--granularity", "-g", help=CliHelp.TIME_GRANULARITY
    ),
    sort_by: str = typer.Option(None, "--sort-by", help=CliHelp.QUERY_SORT_BY),
    sort_order: SortDirection = typer.Option(
        SortDirection.DESC, "--sort-order", help=CliHelp.SORT_ORDER
    ),
    limit: int = typer.Option(None, "--limit", "-n", help=CliHelp.LIMIT),
) -> None:
    """Group conversations by dimensions and compute metrics per group."""

    async def run() -> None:
        analytics_query = AnalyticsQuery(
            filters=FilterOptions(start_date=start, end_date=end, language=language),
            dimensions=dimension or [],
            metrics=metric or [MetricName.COUNT.value],
            time_granularity=granularity,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
        )
        async with _open_adapter(data_dir, api_url) as adapter:
            result = await QueryEngine(adapter=adapter).execute(analytics_query)

        columns = [*analytics_query.dimensions, *analytics_query.metrics]
        if granularity:
            columns.insert(0, "bucket")
        _print_table(
            f"{result.result_count} rows from {result.metadata.total_records_scanned} conversations",
            columns,
            [
                (
                    *([row.timestamp] if granularity else []),
                    *(row.dimensions[d] for d in analytics_query.dimensions),
                    *(round(row.metrics[m], 4) for m in analytics_query.metrics),
                )
                for row in result.data
            ],
        )

    _run(run())


@app.command()
def gaps(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    confidence: float = typer.Option(
        DEFAULT_CONFIDENCE_THRESHOLD, "--confidence", "-c", help=CliHelp.CONFIDENCE
    ),
    min_occurrences: int = typer.Option(
        DEFAULT_MIN_OCCURRENCES, "--min-occurrences", help=CliHelp.MIN_OCCURRENCES
    ),
) -> None:
    """Find knowledge gaps: categories of questions the bot fails to answer."""

    async def run() -> None:
        config = AnalyticsConfig(confidence_threshold=confidence, min_occurrences=min_occurrences)
        range_start, range_end = _date_range(start, end, config)
        async with _open_adapter(data_dir, api_url) as adapter:
            analysis = await KnowledgeGapAnalyzer(
                adapter=adapter, config=config
            ).analyze_knowledge_gaps(start=range_start, end=range_end, language=language)

        _print_table(
            f"{len(analysis.knowledge_gaps)} knowledge gaps from "
            f"{analysis.total_unanswered_questions} unanswered questions",
            ["category", "frequency", "avg confidence", "severity", "top subcategory"],
            [
                (
                    g.category,
                    g.frequency,
                    f"{g.average_confidence:.2f}",
                    f"{g.severity:.2f}",
                    g.subcategories[0].subcategory if g.subcategories else None,
                )
                for g in analysis.knowledge_gaps
            ],
        )
        summary = analysis.summary
        console.print(
            f"critical: {summary.critical_gaps}  moderate: {summary.moderate_gaps}  "
            f"minor: {summary.minor_gaps}"
        )

    _run(run())


@app.command()
def opportunities(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    limit: int = typer.Option(DEFAULT_MAX_OPPORTUNITIES, "--limit", "-n", help=CliHelp.LIMIT),
) -> None:
    """Rank knowledge gaps as content improvement opportunities."""

    async def run() -> None:
        config = AnalyticsConfig()
        range_start, range_end = _date_range(start, end, config)
        async with _open_adapter(data_dir, api_url) as adapter:
            ranked = await KnowledgeGapAnalyzer(
                adapter=adapter, config=config
            ).improvement_opportunities(
                start=range_start, end=range_end, max_opportunities=limit, language=language
            )

        _print_table(
            "Improvement opportunities",
            ["id", "priority", "frequency", "severity", "trend", "effort", "timeline"],
            [
                (
                    o.id,
                    f"{o.priority_score:.3f}",
                    o.frequency,
                    f"{o.severity:.2f}",
                    f"{o.trend_score:+.2f}",
                    o.effort_level,
                    o.timeline,
                )
                for o in ranked
            ],
        )

    _run(run())


@app.command()
def trends(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    granularity: TrendGranularity = typer.Option(
        TrendGranularity.DAILY, "--granularity", "-g", help=CliHelp.GRANULARITY
    ),
    top: int = typer.Option(DEFAULT_TOP_CATEGORIES, "--top", help=CliHelp.TOP),
) -> None:
    """Trend unanswered questions per category over time."""

    async def run() -> None:
        config = AnalyticsConfig()
        range_start, range_end = _date_range(start, end, config)
        async with _open_adapter(data_dir, api_url) as adapter:
            result = await KnowledgeGapAnalyzer(
                adapter=adapter, config=config
            ).analyze_question_trends(
                start=range_start,
                end=range_end,
                granularity=granularity,
                top_categories=top,
                language=language,
            )

        _print_table(
            f"Unanswered question trends ({granularity})",
            ["category", "total", "avg change %", "increasing", "volatile", "forecast"],
            [
                (
                    t.category,
                    t.total_count,
                    f"{t.average_change:.1f}",
                    t.is_increasing,
                    t.is_volatile,
                    ", ".join(str(p.predicted_count) for p in t.forecast.forecast)
                    if t.forecast
                    else None,
                )
                for t in result.category_trends
            ],
        )
        overall = result.overall_trend
        console.print(f"overall change: {overall.total_change:.1f}%")
        if overall.peak_periods:
            console.print(f"peak periods: {', '.join(overall.peak_periods)}")

    _run(run())


@app.command()
def faq(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    method: RankingMethod = typer.Option(
        RankingMethod.COMBINED, "--method", "-m", help=CliHelp.RANKING
    ),
    text: str = typer.Option(None, "--query", "-q", help=CliHelp.RANKING_QUERY),
    limit: int = typer.Option(DEFAULT_RANKING_LIMIT, "--limit", "-n", help=CliHelp.LIMIT),
    extract: bool = typer.Option(False, "--extract/--no-extract", help=CliHelp.EXTRACT),
) -> None:
    """Rank frequently asked questions."""

    async def run() -> None:
        config = AnalyticsConfig()
        range_start, range_end = _date_range(start, end, config)
        async with _open_adapter(data_dir, api_url) as adapter:
            ranking = await FaqAnalyzer(adapter=adapter, config=config).rank_questions(
                start=range_start,
                end=range_end,
                language=language,
                method=method,
                limit=limit,
                query=text,
                include_message_extraction=extract,
            )

        _print_table(
            f"Top questions by {ranking.method} ({ranking.total_questions} asked)",
            ["rank", "question", "category", "count", "avg confidence", "score", "sources"],
            [
                (
                    q.rank,
                    q.question,
                    q.category,
                    q.frequency,
                    f"{q.average_confidence:.2f}",
                    f"{q.score:.3f}",
                    ", ".join(f"{source}={count}" for source, count in q.sources.items()),
                )
                for q in ranking.questions
            ],
        )

    _run(run())


@app.command()
def unanswered(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
) -> None:
    """Summarize unanswered questions and category content gaps from question records."""

    async def run() -> None:
        config = AnalyticsConfig()
        range_start, range_end = _date_range(start, end, config)
        async with _open_adapter(data_dir, api_url) as adapter:
            summary = await FaqAnalyzer(adapter=adapter, config=config).unanswered_summary(
                start=range_start, end=range_end, language=language
            )

        console.print(
            f"{summary.unanswered_questions} of {summary.total_questions} questions unanswered, "
            f"escalation rate {summary.escalation_rate:.1f}%"
        )
        priorities = {o.category: o.priority for o in summary.improvement_opportunities}
        _print_table(
            "Category gaps",
            ["category", "asked", "unanswered", "gap %", "priority"],
            [
                (
                    g.category,
                    g.total_questions,
                    g.unanswered_questions,
                    f"{g.gap_percentage:.1f}",
                    priorities.get(g.category),
                )
                for g in summary.category_gaps
            ],
        )

    _run(run())


@app.command()
def track(
    data_dir: Path = DataDirOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
) -> None:
    """Rebuild questions.json from the user questions found in conversation messages."""

    async def run() -> None:
        config = AnalyticsConfig()
        range_start, range_end = _date_range(start, end, config)
        store = JsonRecordStore(data_dir=data_dir)
        records = await QuestionAnalyzer(adapter=store.load(), config=config).question_records(
            start=range_start, end=range_end, language=language
        )
        store.save_questions(records)

    _run(run())


@app.command()
def export(
    data_dir: Path = DataDirOption,
    api_url: str = ApiUrlOption,
    start: str = StartOption,
    end: str = EndOption,
    language: Language = LanguageOption,
    export_format: ExportFormat = typer.Option(
        ExportFormat.JSON, "--format", "-f", help=CliHelp.FORMAT
    ),
    data_type: list[ExportDataType] = typer.Option(None, "--type", "-t", help=CliHelp.DATA_TYPE),
    text: str = typer.Option(None, "--query", "-q", help=CliHelp.SEARCH_QUERY),
    max_records: int = typer.Option(None, "--max-records", help=CliHelp.MAX_RECORDS),
    headers: bool = typer.Option(True, "--headers/--no-headers", help=CliHelp.HEADERS),
    delimiter: str = typer.Option(DEFAULT_CSV_DELIMITER, "--delimiter", help=CliHelp.DELIMITER),
    filename: str = typer.Option(None, "--filename", help=CliHelp.FILENAME),
    export_dir: Path = typer.Option(
        DEFAULT_EXPORT_DIR, "--export-dir", envvar=ENV_EXPORT_DIR, help=CliHelp.EXPORT_DIR
    ),
) -> None:
    """Export filtered (or searched) records as JSON, CSV or XLSX."""

    async def run() -> None:
        data_types = data_type or [ExportDataType.CONVERSATIONS]
        filters = FilterOptions(start_date=start, end_date=end, language=language)
        searchable = [SearchScope(t) for t in data_types if t in _SEARCHABLE_TYPES]
        options = ExportOptions(
            format=export_format,
            data_types=data_types,
            filters=filters,
            search_options=(
                SearchOptions(query=text, search_in=searchable, filters=filters)
                if text and searchable
                else None
            ),
            include_headers=headers,
            filename=filename,
            max_records=max_records,
            delimiter=delimiter,
        )
        async with _open_adapter(data_dir, api_url) as adapter:
            result = await ExportFormatter(
                adapter=adapter, sink=LocalExportSink(directory=export_dir)
            ).export(options)

        console.print_json(json.dumps(asdict(result), default=str))
        if not result.succeeded:
            raise typer.Exit(code=EXIT_CODE_ERROR)

    _run(run())
