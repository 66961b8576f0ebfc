"""
Tests for exporting records as JSON, CSV and XLSX.
"""

import csv
import io
import json
import re
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from clara_analytics.adapters import InMemoryRecordAdapter
from clara_analytics.constants import (
    ExportDataType,
    ExportFormat,
    ExportStatus,
    Outcome,
    SearchScope,
)
from clara_analytics.exporter import (
    ExportFormatter,
    default_filename,
    format_csv,
    generate_export_id,
    to_frame,
)
from clara_analytics.options import ExportOptions, FilterOptions, SearchOptions
from clara_analytics.storage import LocalExportSink
from conftest import RANGE_END, RANGE_START, make_conversation


class RecordingSink:
    """Storage sink that keeps payloads in memory."""

    def __init__(self):
        self.stored: dict[str, tuple[str, bytes]] = {}

    async def store(self, export_id, filename, payload, fmt):
        self.stored[export_id] = (filename, payload)
        return f"memory://{export_id}/{filename}"


class BrokenSink:
    async def store(self, export_id, filename, payload, fmt):
        raise OSError("disk full")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def formatter(adapter, sink) -> ExportFormatter:
    return ExportFormatter(adapter=adapter, sink=sink)


def export_options(*data_types: ExportDataType, **kwargs) -> ExportOptions:
    return ExportOptions(
        data_types=list(data_types) or [ExportDataType.CONVERSATIONS],
        filters=FilterOptions(start_date=RANGE_START, end_date=RANGE_END),
        **kwargs,
    )


class TestJsonExport:
    """Tests for the JSON envelope."""

    @pytest.mark.asyncio
    async def test_round_trip_ten_conversations(self, sink):
        conversations = [make_conversation(f"conv-{i}", message_count=i) for i in range(10)]
        formatter = ExportFormatter(
            adapter=InMemoryRecordAdapter(conversations=conversations), sink=sink
        )

        result = await formatter.export(export_options(format=ExportFormat.JSON))

        _, payload = sink.stored[result.export_id]
        document = json.loads(payload)
        assert document["export_info"]["record_count"] == 10
        assert document["export_info"]["export_id"] == result.export_id
        assert document["data"] == [
            {"data_type": "conversation", **c.to_dict()} for c in conversations
        ]

    @pytest.mark.asyncio
    async def test_result_metadata(self, formatter, sink):
        result = await formatter.export(export_options(format=ExportFormat.JSON))

        filename, payload = sink.stored[result.export_id]
        assert result.status == ExportStatus.COMPLETED
        assert result.succeeded
        assert result.record_count == 3
        assert result.file_size == len(payload)
        assert result.filename == filename
        assert filename.startswith("clara-export-") and filename.endswith(".json")
        assert result.download_url == f"memory://{result.export_id}/{filename}"
        completed = datetime.fromisoformat(result.completed_at.replace("Z", "+00:00"))
        expires = datetime.fromisoformat(result.expires_at.replace("Z", "+00:00"))
        assert (expires - completed).total_seconds() == 24 * 3600

    @pytest.mark.asyncio
    async def test_filters_echoed_in_envelope(self, formatter, sink):
        result = await formatter.export(export_options(format=ExportFormat.JSON))

        document = json.loads(sink.stored[result.export_id][1])
        assert document["export_info"]["filters"]["startDate"] == "2024-03-01T00:00:00Z"


class TestCollect:
    """Tests for gathering rows per data type."""

    @pytest.mark.asyncio
    async def test_multiple_data_types(self, formatter):
        rows = await formatter.collect(
            export_options(
                ExportDataType.CONVERSATIONS,
                ExportDataType.QUESTIONS,
                ExportDataType.ESCALATIONS,
                format=ExportFormat.JSON,
            )
        )

        assert [r["data_type"] for r in rows] == [
            "conversation",
            "conversation",
            "conversation",
            "question",
            "question",
            "question",
            "escalation",
        ]
        assert rows[-1]["conversation_id"] == "conv-2"

    @pytest.mark.asyncio
    async def test_escalations_respect_outcome_filter(self, formatter):
        def options(outcome: Outcome) -> ExportOptions:
            return ExportOptions(
                format=ExportFormat.JSON,
                data_types=[ExportDataType.CONVERSATIONS, ExportDataType.ESCALATIONS],
                filters=FilterOptions(start_date=RANGE_START, end_date=RANGE_END, outcome=outcome),
            )

        resolved = await formatter.collect(options(Outcome.RESOLVED))
        escalated = await formatter.collect(options(Outcome.ESCALATED))

        assert [(r["data_type"], r["conversation_id"]) for r in resolved] == [
            ("conversation", "conv-1")
        ]
        assert [(r["data_type"], r["conversation_id"]) for r in escalated] == [
            ("conversation", "conv-2"),
            ("escalation", "conv-2"),
        ]

    @pytest.mark.asyncio
    async def test_search_results_replace_filtered_rows(self, formatter):
        options = export_options(
            ExportDataType.MESSAGES,
            format=ExportFormat.JSON,
            search_options=SearchOptions(
                query="insulin",
                search_in=[SearchScope.MESSAGES],
                filters=FilterOptions(start_date=RANGE_START, end_date=RANGE_END),
            ),
        )

        rows = await formatter.collect(options)

        assert rows
        assert all(r["data_type"] == "message" for r in rows)
        assert all("relevance_score" in r for r in rows)

    @pytest.mark.asyncio
    async def test_max_records(self, formatter):
        result = await formatter.export(
            export_options(ExportDataType.MESSAGES, format=ExportFormat.JSON, max_records=4)
        )

        assert result.record_count == 4


class TestCsvExport:
    @pytest.mark.asyncio
    async def test_csv_rows_and_headers(self, formatter, sink):
        result = await formatter.export(export_options(format=ExportFormat.CSV))

        text = sink.stored[result.export_id][1].decode("utf-8")
        rows = list(csv.DictReader(io.StringIO(text)))
        assert [r["conversation_id"] for r in rows] == ["conv-1", "conv-2", "conv-3"]
        assert rows[1]["escalation_reason"] == "Billing question"
        assert rows[0]["escalation_triggered"] == "false"

    def test_delimiter_and_quoting(self):
        rows = [{"a": "x;y", "b": 'say "hi"', "c": None}]

        text = format_csv(rows, include_headers=True, delimiter=";").decode("utf-8")

        parsed = list(csv.reader(io.StringIO(text), delimiter=";"))
        assert parsed == [["a", "b", "c"], ["x;y", 'say "hi"', ""]]

    def test_without_headers(self):
        text = format_csv([{"a": "1"}], include_headers=False, delimiter=",").decode("utf-8")

        assert text.strip() == "1"

    def test_empty_rows(self):
        assert format_csv([], include_headers=True, delimiter=",") == b""

    def test_frame_unions_columns(self):
        frame = to_frame([{"a": 1}, {"b": {"nested": True}}])

        assert frame.columns == ["a", "b"]
        assert frame.row(1) == ("", '{"nested": true}')


class TestXlsxExport:
    @pytest.mark.asyncio
    async def test_xlsx_is_zip_container(self, formatter, sink):
        result = await formatter.export(export_options(format=ExportFormat.XLSX))

        _, payload = sink.stored[result.export_id]
        assert result.succeeded
        assert payload[:2] == b"PK"


class TestExportFailures:
    @pytest.mark.asyncio
    async def test_sink_failure_returns_failed_result(self, adapter):
        formatter = ExportFormatter(adapter=adapter, sink=BrokenSink())

        result = await formatter.export(export_options(format=ExportFormat.JSON))

        assert result.status == ExportStatus.FAILED
        assert result.record_count == 0
        assert result.file_size == 0
        assert result.filename == "export-failed"
        assert result.error == "disk full"
        assert result.download_url is None

    @pytest.mark.asyncio
    async def test_failed_export_keeps_requested_filename(self, adapter):
        formatter = ExportFormatter(adapter=adapter, sink=BrokenSink())

        result = await formatter.export(
            export_options(format=ExportFormat.CSV, filename="weekly.csv")
        )

        assert result.filename == "weekly.csv"

    def test_invalid_options(self):
        with pytest.raises(ValidationError):
            ExportOptions(format="pdf", data_types=[ExportDataType.MESSAGES])
        with pytest.raises(ValidationError):
            ExportOptions(format=ExportFormat.CSV, data_types=[])
        with pytest.raises(ValidationError):
            ExportOptions(format=ExportFormat.CSV, data_types=["messages"], delimiter='"')


class TestHelpers:
    def test_export_id_shape(self):
        first, second = generate_export_id(), generate_export_id()

        assert re.fullmatch(r"export_\d+_[0-9a-f]{9}", first)
        assert first != second

    def test_default_filename(self):
        created = datetime(2024, 3, 4, 9, 30, 15, 250000, tzinfo=timezone.utc)

        assert (
            default_filename(created, ExportFormat.CSV)
            == "clara-export-2024-03-04T09-30-15-250000Z.csv"
        )


class TestLocalExportSink:
    @pytest.mark.asyncio
    async def test_writes_under_export_id(self, tmp_path):
        sink = LocalExportSink(directory=tmp_path)

        url = await sink.store("export_1_abc", "out.json", b"{}", "json")

        assert (tmp_path / "export_1_abc" / "out.json").read_bytes() == b"{}"
        assert url.startswith("file://")
        assert url.endswith("/export_1_abc/out.json")
