"""Export of filtered or searched records as JSON, CSV or XLSX."""

import io
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import polars as pl
from loguru import logger

from .adapters import RecordAdapter, StorageSink
from .config import AnalyticsConfig
from .constants import (
    EMPTY_STRING,
    EXPORT_FILENAME_PREFIX,
    EXPORT_TTL_HOURS,
    FAILED_EXPORT_FILENAME,
    JSON_INDENT,
    MILLISECONDS,
    XLSX_WORKSHEET,
    ExportDataType,
    ExportFormat,
    ExportStatus,
    LogMessage,
    Outcome,
    RecordKind,
    RowSource,
)
from .filtering import FilterEngine
from .fingerprint import fingerprint
from .models import ExportResult, format_timestamp
from .options import ExportOptions, FilterOptions
from .search import SearchEngine

Row = dict[str, Any]

_SEARCH_KINDS: dict[ExportDataType, RecordKind] = {
    ExportDataType.CONVERSATIONS: RecordKind.CONVERSATION,
    ExportDataType.MESSAGES: RecordKind.MESSAGE,
    ExportDataType.QUESTIONS: RecordKind.QUESTION,
}


def generate_export_id() -> str:
    return f"export_{time.time_ns() // 1_000_000}_{fingerprint(str(time.time_ns()))[:9]}"


def default_filename(created_at: datetime, fmt: ExportFormat) -> str:
    stamp = format_timestamp(created_at).replace(":", "-").replace(".", "-")
    return f"{EXPORT_FILENAME_PREFIX}-{stamp}.{fmt}"


def _cell(value: Any) -> str:
    if value is None:
        return EMPTY_STRING
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple, bool)):
        return json.dumps(value, default=str)
    return str(value)


def _columns(rows: list[Row]) -> list[str]:
    """Union of row keys in first-seen order."""
    return list(dict.fromkeys(key for row in rows for key in row))


def to_frame(rows: list[Row]) -> pl.DataFrame:
    """Tabulate heterogeneous rows as text columns; nested values are JSON-encoded."""
    columns = _columns(rows)
    return pl.DataFrame(
        {column: [_cell(row.get(column)) for row in rows] for column in columns},
        schema={column: pl.String for column in columns},
    )


def format_json(rows: list[Row], *, export_id: str, options: ExportOptions) -> bytes:
    envelope = {
        "export_info": {
            "export_id": export_id,
            "timestamp": format_timestamp(datetime.now(timezone.utc)),
            "filters": (
                options.filters.model_dump(mode="json", by_alias=True, exclude_none=True)
                if options.filters
                else None
            ),
            "record_count": len(rows),
        },
        "data": rows,
    }
    return json.dumps(envelope, indent=JSON_INDENT, default=str, ensure_ascii=False).encode("utf-8")


def format_csv(rows: list[Row], *, include_headers: bool, delimiter: str) -> bytes:
    """Delimited text; fields holding the delimiter, a quote or a newline are quoted."""
    if not rows:
        return b""
    text = to_frame(rows).write_csv(separator=delimiter, include_header=include_headers)
    return text.encode("utf-8")


def format_xlsx(rows: list[Row], *, include_headers: bool) -> bytes:
    buffer = io.BytesIO()
    to_frame(rows).write_excel(
        workbook=buffer, worksheet=XLSX_WORKSHEET, include_header=include_headers
    )
    return buffer.getvalue()


class ExportFormatter:
    """Collects rows per requested data type, serializes them and hands them to a sink.

    Attributes:
        filter_engine: Collects filtered records.
        search_engine: Collects searchable kinds when search options are given.
        sink: Stores the payload and returns a download URL.
    """

    def __init__(
        self,
        *,
        adapter: RecordAdapter,
        sink: StorageSink,
        filter_engine: FilterEngine | None = None,
        search_engine: SearchEngine | None = None,
        config: AnalyticsConfig | None = None,
    ):
        self.sink = sink
        self.filter_engine = filter_engine or FilterEngine(adapter=adapter, config=config)
        self.search_engine = search_engine or SearchEngine(
            adapter=adapter, filter_engine=self.filter_engine, config=config
        )

    async def collect(self, options: ExportOptions) -> list[Row]:
        """Rows for every requested data type, each tagged with ``data_type``.

        Args:
            options: Export options; ``filters`` scope every data type.

        Returns:
            list[Row]: Rows in data-type order, before ``max_records`` truncation.
        """
        filters = options.filters or FilterOptions()
        search_results = (
            (await self.search_engine.search(options.search_options)).results
            if options.search_options
            else None
        )

        rows: list[Row] = []
        for data_type in dict.fromkeys(options.data_types):
            if search_results is not None and data_type in _SEARCH_KINDS:
                kind = _SEARCH_KINDS[data_type]
                rows.extend(
                    {"data_type": kind.value, **result.to_dict()}
                    for result in search_results
                    if result.kind == kind
                )
            elif data_type == ExportDataType.CONVERSATIONS:
                conversations = await self.filter_engine.select(filters)
                rows.extend(
                    {"data_type": RowSource.CONVERSATION.value, **c.to_dict()} for c in conversations
                )
            elif data_type == ExportDataType.MESSAGES:
                messages = await self.filter_engine.messages(filters)
                rows.extend({"data_type": RowSource.MESSAGE.value, **m.to_dict()} for m in messages)
            elif data_type == ExportDataType.QUESTIONS:
                questions = await self.filter_engine.questions(filters)
                rows.extend(
                    {"data_type": RowSource.QUESTION.value, **q.to_dict()} for q in questions
                )
            elif data_type == ExportDataType.ESCALATIONS:
                if filters.outcome not in (None, Outcome.ESCALATED):
                    logger.debug(LogMessage.ESCALATIONS_EXCLUDED.format(filters.outcome))
                    continue
                escalated = await self.filter_engine.select(
                    filters.model_copy(update={"outcome": Outcome.ESCALATED})
                )
                rows.extend(
                    {"data_type": RowSource.ESCALATION.value, **c.to_dict()} for c in escalated
                )
        return rows

    def serialize(self, rows: list[Row], *, export_id: str, options: ExportOptions) -> bytes:
        if options.format == ExportFormat.JSON:
            return format_json(rows, export_id=export_id, options=options)
        if options.format == ExportFormat.CSV:
            return format_csv(
                rows, include_headers=options.include_headers, delimiter=options.delimiter
            )
        if options.format == ExportFormat.XLSX:
            return format_xlsx(rows, include_headers=options.include_headers)
        raise ValueError(f"Unsupported export format: {options.format}")

    async def export(self, options: ExportOptions) -> ExportResult:
        """Collect, serialize and store an export.

        Never raises: any failure during collection, formatting or storage is
        returned as a ``failed`` result carrying the error message.

        Args:
            options: Validated export options.

        Returns:
            ExportResult: Outcome with record count, byte size and link expiry.
        """
        export_id = generate_export_id()
        created_at = datetime.now(timezone.utc)
        logger.info(LogMessage.EXPORTING.format(", ".join(options.data_types), options.format))

        try:
            rows = await self.collect(options)
            if options.max_records is not None:
                rows = rows[: options.max_records]

            filename = options.filename or default_filename(created_at, options.format)
            payload = self.serialize(rows, export_id=export_id, options=options)
            download_url = await self.sink.store(export_id, filename, payload, options.format)
        except Exception as e:
            logger.exception(LogMessage.EXPORT_FAILED.format(export_id, e))
            return ExportResult(
                export_id=export_id,
                status=ExportStatus.FAILED,
                format=options.format,
                filename=options.filename or FAILED_EXPORT_FILENAME,
                record_count=0,
                file_size=0,
                created_at=format_timestamp(created_at),
                error=str(e),
            )

        completed_at = datetime.now(timezone.utc)
        elapsed = (completed_at - created_at).total_seconds() * MILLISECONDS
        logger.success(LogMessage.EXPORT_DONE.format(len(rows), len(payload), download_url))
        logger.debug(LogMessage.EXPORT_TIMING.format(export_id, round(elapsed, 2)))
        return ExportResult(
            export_id=export_id,
            status=ExportStatus.COMPLETED,
            format=options.format,
            filename=filename,
            record_count=len(rows),
            file_size=len(payload),
            created_at=format_timestamp(created_at),
            download_url=download_url,
            completed_at=format_timestamp(completed_at),
            expires_at=format_timestamp(completed_at + timedelta(hours=EXPORT_TTL_HOURS)),
        )
