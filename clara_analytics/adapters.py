"""Record access and storage sink interfaces, plus an in-memory adapter."""

import asyncio
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Protocol, TypeAlias

from loguru import logger

from .constants import RecordKind, LogMessage
from .models import ConversationRecord, MessageRecord, QuestionRecord

Record: TypeAlias = ConversationRecord | MessageRecord | QuestionRecord

BUCKET_SPAN = timedelta(days=1)
_EPSILON = timedelta(microseconds=1)


class RecordSourceError(RuntimeError):
    """The record store failed or timed out for a sub-query."""


class RecordAdapter(Protocol):
    """Read access to interaction records.

    Date ranges are inclusive on both ends. ``hints`` are advisory filters an
    adapter may push down to its store (e.g. ``{"language": "en"}``); callers
    re-apply every predicate themselves.
    """

    async def get_by_date_range(
        self,
        kind: RecordKind,
        start: datetime,
        end: datetime,
        hints: dict[str, str] | None = None,
    ) -> list[Record]: ...

    async def get_by_category(self, category: str, limit: int) -> list[QuestionRecord]: ...

    async def get_by_language(self, language: str, limit: int) -> list[QuestionRecord]: ...

    async def get_messages_for_conversation(self, conversation_id: str) -> list[MessageRecord]: ...


class StorageSink(Protocol):
    """Destination for export payloads."""

    async def store(self, export_id: str, filename: str, payload: bytes, fmt: str) -> str:
        """Persist the payload and return a URL it can be downloaded from."""
        ...


def record_timestamp(record: Record) -> datetime:
    """The instant a record is filed under for date-range queries."""
    if isinstance(record, ConversationRecord):
        return record.timestamp
    if isinstance(record, QuestionRecord):
        return record.last_asked
    return record.timestamp


def day_buckets(start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
    """Split an inclusive range into disjoint, inclusive one-day slices."""
    buckets: list[tuple[datetime, datetime]] = []
    cursor = start
    while cursor <= end:
        bucket_end = min(cursor + BUCKET_SPAN - _EPSILON, end)
        buckets.append((cursor, bucket_end))
        cursor = bucket_end + _EPSILON
    return buckets


async def fetch_in_buckets(
    adapter: RecordAdapter,
    kind: RecordKind,
    start: datetime,
    end: datetime,
    hints: dict[str, str] | None = None,
) -> list[Record]:
    """Query the adapter one day at a time, concurrently.

    A failing bucket is logged and treated as holding no records; the other
    buckets still contribute.

    Args:
        adapter: Record source.
        kind: Record kind to load.
        start: Inclusive range start.
        end: Inclusive range end.
        hints: Optional push-down hints forwarded to the adapter.

    Returns:
        list[Record]: Records of all successful buckets, in bucket order.
    """

    async def load(bucket_start: datetime, bucket_end: datetime) -> list[Record]:
        try:
            return await adapter.get_by_date_range(kind, bucket_start, bucket_end, hints)
        except Exception as e:
            logger.warning(
                LogMessage.BUCKET_FAILED.format(kind, bucket_start.date().isoformat(), e)
            )
            return []

    batches = await asyncio.gather(*(load(s, e) for s, e in day_buckets(start, end)))
    return [record for batch in batches for record in batch]


class InMemoryRecordAdapter:
    """Serves records held in memory; used by tests and the JSON file store."""

    def __init__(
        self,
        *,
        conversations: Sequence[ConversationRecord] = (),
        messages: Sequence[MessageRecord] = (),
        questions: Sequence[QuestionRecord] = (),
    ):
        self.conversations = list(conversations)
        self.messages = list(messages)
        self.questions = list(questions)

    def _collection(self, kind: RecordKind) -> list[Record]:
        if kind == RecordKind.CONVERSATION:
            return self.conversations
        if kind == RecordKind.MESSAGE:
            return self.messages
        if kind == RecordKind.QUESTION:
            return self.questions
        raise ValueError(f"Unknown record kind: {kind}")

    async def get_by_date_range(
        self,
        kind: RecordKind,
        start: datetime,
        end: datetime,
        hints: dict[str, str] | None = None,
    ) -> list[Record]:
        return [
            record
            for record in self._collection(kind)
            if start <= record_timestamp(record) <= end
        ]

    async def get_by_category(self, category: str, limit: int) -> list[QuestionRecord]:
        return [q for q in self.questions if q.category == category][:limit]

    async def get_by_language(self, language: str, limit: int) -> list[QuestionRecord]:
        return [q for q in self.questions if q.language == language][:limit]

    async def get_messages_for_conversation(self, conversation_id: str) -> list[MessageRecord]:
        return sorted(
            (m for m in self.messages if m.conversation_id == conversation_id),
            key=lambda m: m.message_index,
        )
