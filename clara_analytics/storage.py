"""File-backed record store and export sink."""

import asyncio
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger

from .adapters import InMemoryRecordAdapter
from .constants import (
    CONVERSATIONS_FILE,
    DEFAULT_DATA_DIR,
    DEFAULT_EXPORT_DIR,
    JSON_INDENT,
    MESSAGES_FILE,
    QUESTIONS_FILE,
    LogMessage,
    RecordKind,
)
from .models import ConversationRecord, MessageRecord, QuestionRecord


class JsonRecordStore:
    """Reads and writes interaction records as JSON files in one directory.

    The directory holds ``conversations.json``, ``messages.json`` and
    ``questions.json``, each a JSON array of records in camelCase or
    snake_case form. Missing files count as empty.

    Attributes:
        data_dir: Directory holding the record files.
    """

    def __init__(self, *, data_dir: Path | str = DEFAULT_DATA_DIR):
        self.data_dir = Path(data_dir)

    def _read(self, filename: str, kind: RecordKind) -> list[dict[str, Any]]:
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with filepath.open("r") as f:
            data = json.load(f)
        logger.debug(LogMessage.LOADED_RECORDS.format(len(data), kind, filepath))
        return data

    def _write(self, filename: str, kind: RecordKind, records: Sequence[Any]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.data_dir / filename
        with filepath.open("w") as f:
            json.dump([r.to_dict() for r in records], f, indent=JSON_INDENT, ensure_ascii=False)
        logger.success(LogMessage.SAVED_RECORDS.format(len(records), kind, filepath))

    def load(self) -> InMemoryRecordAdapter:
        """Load every record file into an in-memory adapter.

        Returns:
            InMemoryRecordAdapter: Adapter serving the loaded records.

        Raises:
            ValueError: If a record is malformed.
        """
        adapter = InMemoryRecordAdapter(
            conversations=[
                ConversationRecord.from_dict(data=item)
                for item in self._read(CONVERSATIONS_FILE, RecordKind.CONVERSATION)
            ],
            messages=[
                MessageRecord.from_dict(data=item)
                for item in self._read(MESSAGES_FILE, RecordKind.MESSAGE)
            ],
            questions=[
                QuestionRecord.from_dict(data=item)
                for item in self._read(QUESTIONS_FILE, RecordKind.QUESTION)
            ],
        )
        logger.info(
            LogMessage.LOADED_RECORDS.format(
                len(adapter.conversations) + len(adapter.messages) + len(adapter.questions),
                "interaction",
                self.data_dir,
            )
        )
        return adapter

    def save_conversations(self, conversations: Sequence[ConversationRecord]) -> None:
        self._write(CONVERSATIONS_FILE, RecordKind.CONVERSATION, conversations)

    def save_messages(self, messages: Sequence[MessageRecord]) -> None:
        self._write(MESSAGES_FILE, RecordKind.MESSAGE, messages)

    def save_questions(self, questions: Sequence[QuestionRecord]) -> None:
        self._write(QUESTIONS_FILE, RecordKind.QUESTION, questions)


class LocalExportSink:
    """Storage sink writing export payloads under a local directory.

    Each export goes to ``{directory}/{export_id}/{filename}``; the returned
    download URL is the file's ``file://`` URI.
    """

    def __init__(self, *, directory: Path | str = DEFAULT_EXPORT_DIR):
        self.directory = Path(directory)

    async def store(self, export_id: str, filename: str, payload: bytes, fmt: str) -> str:
        filepath = self.directory / export_id / Path(filename).name
        await asyncio.to_thread(filepath.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(filepath.write_bytes, payload)
        logger.debug(LogMessage.STORED_EXPORT.format(export_id, filepath))
        return filepath.resolve().as_uri()
