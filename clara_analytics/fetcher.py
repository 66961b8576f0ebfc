"""HTTP client for the interaction record store."""

import asyncio
from datetime import datetime
from typing import Any

import httpx
from aiolimiter import AsyncLimiter
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .adapters import Record, RecordSourceError
from .constants import (
    API_CONVERSATION_MESSAGES_ENDPOINT,
    API_QUESTIONS_BY_CATEGORY_ENDPOINT,
    API_QUESTIONS_BY_LANGUAGE_ENDPOINT,
    API_RECORDS_ENDPOINT,
    DEFAULT_API_CONCURRENCY,
    DEFAULT_API_MAX_RETRIES,
    DEFAULT_API_RATE_PER_SECOND,
    DEFAULT_API_TIMEOUT_SECONDS,
    ApiParam,
    ApiResponseKey,
    LogMessage,
    RecordKind,
)
from .models import ConversationRecord, MessageRecord, QuestionRecord, format_timestamp

_RECORD_TYPES: dict[RecordKind, type] = {
    RecordKind.CONVERSATION: ConversationRecord,
    RecordKind.MESSAGE: MessageRecord,
    RecordKind.QUESTION: QuestionRecord,
}


def _items(payload: Any) -> list[dict[str, Any]]:
    """Records from a bare list or a ``{"records": [...]}`` envelope."""
    if isinstance(payload, dict):
        payload = payload.get(ApiResponseKey.RECORDS, [])
    return list(payload or [])


class RecordApiClient:
    """Record adapter backed by the record store's HTTP API.

    Attributes:
        base_url: Base URL for the API endpoint.
        semaphore: Asyncio semaphore limiting concurrent API calls.
        rate_limiter: AsyncLimiter limiting API calls per second.
    """

    def __init__(
        self,
        *,
        base_url: str,
        max_concurrency: int = DEFAULT_API_CONCURRENCY,
        rate_per_second: int = DEFAULT_API_RATE_PER_SECOND,
        timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the RecordApiClient.

        Args:
            base_url: Base URL for the API endpoint.
            max_concurrency: Maximum requests in flight.
            rate_per_second: Maximum requests started per second.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport, e.g. a mock in tests.
        """
        self.base_url = base_url.rstrip("/")
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self.rate_limiter = AsyncLimiter(max_rate=rate_per_second, time_period=1)
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "RecordApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(DEFAULT_API_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        logger.debug(LogMessage.REQUESTING.format(path, params))
        async with self.semaphore:
            async with self.rate_limiter:
                response = await self.client.get(path, params=params)
                response.raise_for_status()
        return response.json()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """GET a record list, surfacing any transport or status failure as RecordSourceError."""
        try:
            return _items(await self._request(path, params or {}))
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(LogMessage.REQUEST_FAILED.format(path, e))
            raise RecordSourceError(f"GET {path} failed: {e}") from e

    async def get_by_date_range(
        self,
        kind: RecordKind,
        start: datetime,
        end: datetime,
        hints: dict[str, str] | None = None,
    ) -> list[Record]:
        """Fetch records of one kind in an inclusive range; hints are sent as query parameters."""
        params: dict[str, Any] = {
            ApiParam.START.value: format_timestamp(start),
            ApiParam.END.value: format_timestamp(end),
            **(hints or {}),
        }
        items = await self._get(API_RECORDS_ENDPOINT.format(kind=kind), params)
        record_type = _RECORD_TYPES[kind]
        return [record_type.from_dict(data=item) for item in items]

    async def get_by_category(self, category: str, limit: int) -> list[QuestionRecord]:
        items = await self._get(
            API_QUESTIONS_BY_CATEGORY_ENDPOINT.format(category=category),
            {ApiParam.LIMIT.value: limit},
        )
        return [QuestionRecord.from_dict(data=item) for item in items]

    async def get_by_language(self, language: str, limit: int) -> list[QuestionRecord]:
        items = await self._get(
            API_QUESTIONS_BY_LANGUAGE_ENDPOINT.format(language=language),
            {ApiParam.LIMIT.value: limit},
        )
        return [QuestionRecord.from_dict(data=item) for item in items]

    async def get_messages_for_conversation(self, conversation_id: str) -> list[MessageRecord]:
        items = await self._get(
            API_CONVERSATION_MESSAGES_ENDPOINT.format(conversation_id=conversation_id)
        )
        return [MessageRecord.from_dict(data=item) for item in items]
