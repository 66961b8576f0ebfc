"""Multi-parameter conversation filtering with stable sorting and pagination."""

import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

from loguru import logger

from .adapters import RecordAdapter, fetch_in_buckets
from .config import AnalyticsConfig
from .constants import MILLISECONDS, LogMessage, RecordKind, SortDirection, SortField
from .fingerprint import fingerprint
from .models import (
    ConversationRecord,
    FilteredResponse,
    FilterState,
    MessageRecord,
    Pagination,
    QuestionRecord,
)
from .options import FilterOptions


def resolve_date_range(
    options: FilterOptions, *, lookback_days: int, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """Fill in the default range (the ``lookback_days`` ending now)."""
    now = now or datetime.now(timezone.utc)
    end = options.end_date or now
    start = options.start_date or end - timedelta(days=lookback_days)
    return start, end


def matches(conversation: ConversationRecord, options: FilterOptions) -> bool:
    """Check a conversation against every supplied predicate."""
    if options.start_date and conversation.timestamp < options.start_date:
        return False
    if options.end_date and conversation.timestamp > options.end_date:
        return False
    if options.language and conversation.language != options.language:
        return False
    if options.outcome and conversation.outcome != options.outcome:
        return False
    if options.confidence_threshold is not None and (
        conversation.average_confidence_score is None
        or conversation.average_confidence_score < options.confidence_threshold
    ):
        return False
    if (
        options.message_count_min is not None
        and conversation.message_count < options.message_count_min
    ):
        return False
    if (
        options.message_count_max is not None
        and conversation.message_count > options.message_count_max
    ):
        return False
    if options.user_id and conversation.user_id != options.user_id:
        return False
    if options.user_zip_code and conversation.user_zip_code != options.user_zip_code:
        return False
    if (
        options.escalation_priority
        and conversation.escalation_priority != options.escalation_priority
    ):
        return False
    if options.escalation_status and conversation.escalation_status != options.escalation_status:
        return False
    if options.escalation_reason and (
        not conversation.escalation_reason
        or options.escalation_reason.lower() not in conversation.escalation_reason.lower()
    ):
        return False
    return True


def _sort_key(sort_by: SortField):
    if sort_by == SortField.CONFIDENCE_SCORE:
        # Unscored conversations sort below every scored one
        return lambda c: (c.average_confidence_score is not None, c.average_confidence_score or 0.0)
    if sort_by == SortField.MESSAGE_COUNT:
        return lambda c: c.message_count
    return lambda c: c.timestamp


def select(
    conversations: Iterable[ConversationRecord], options: FilterOptions
) -> list[ConversationRecord]:
    """Filter and sort without paginating.

    Sorting is stable in both directions, so ties keep their input order.
    """
    selected = [c for c in conversations if matches(c, options)]
    if options.sort_by:
        selected.sort(
            key=_sort_key(options.sort_by),
            reverse=options.sort_order == SortDirection.DESC,
        )
    return selected


def paginate(
    records: Sequence[ConversationRecord], *, offset: int, limit: int
) -> tuple[list[ConversationRecord], Pagination]:
    total = len(records)
    page = list(records[offset : offset + limit])
    return page, Pagination(
        total=total, offset=offset, limit=limit, has_more=offset + limit < total
    )


def generate_filter_id(options: FilterOptions) -> str:
    """Identifier unique per call: options fingerprint plus the call time."""
    return f"filter_{time.time_ns()}_{fingerprint(options.serialized())}"


def apply_filters(
    conversations: Iterable[ConversationRecord], options: FilterOptions
) -> FilteredResponse[ConversationRecord]:
    """Filter, sort and paginate records the caller already holds.

    Args:
        conversations: Candidate conversations, in input order.
        options: Predicates, ordering and paging.

    Returns:
        FilteredResponse[ConversationRecord]: The requested page and its filter descriptor.
    """
    started = time.perf_counter()
    filter_id = generate_filter_id(options)
    selected = select(conversations, options)
    page, pagination = paginate(selected, offset=options.offset, limit=options.limit)

    filter_state = FilterState(
        filter_id=filter_id,
        applied_filters=options,
        created_at=datetime.now(timezone.utc),
        result_count=pagination.total,
        execution_time_ms=(time.perf_counter() - started) * MILLISECONDS,
    )
    return FilteredResponse(
        data=page,
        filter_state=filter_state,
        pagination=pagination,
        applied_filters=options,
    )


def filter_messages(
    messages: Iterable[MessageRecord], options: FilterOptions
) -> list[MessageRecord]:
    """Scope messages by date range, language and category."""
    selected: list[MessageRecord] = []
    for message in messages:
        if options.start_date and message.timestamp < options.start_date:
            continue
        if options.end_date and message.timestamp > options.end_date:
            continue
        if options.language and message.language != options.language:
            continue
        if options.question_category and message.question_category != options.question_category:
            continue
        selected.append(message)
    return selected


def filter_questions(
    questions: Iterable[QuestionRecord], options: FilterOptions
) -> list[QuestionRecord]:
    """Scope question records by date range, language, category and answered state."""
    selected: list[QuestionRecord] = []
    for question in questions:
        if options.start_date and question.last_asked < options.start_date:
            continue
        if options.end_date and question.last_asked > options.end_date:
            continue
        if options.language and question.language != options.language:
            continue
        if options.question_category and question.category != options.question_category:
            continue
        if options.is_answered is not None and (question.unanswered_count == 0) != options.is_answered:
            continue
        selected.append(question)
    return selected


class FilterEngine:
    """Loads conversations through the record adapter and applies filter options.

    Attributes:
        adapter: Record source.
        config: Analysis thresholds; ``lookback_days`` sets the default range.
    """

    def __init__(self, *, adapter: RecordAdapter, config: AnalyticsConfig | None = None):
        self.adapter = adapter
        self.config = config or AnalyticsConfig()

    def _range(self, options: FilterOptions) -> tuple[datetime, datetime]:
        return resolve_date_range(options, lookback_days=self.config.lookback_days)

    @staticmethod
    def _hints(options: FilterOptions) -> dict[str, str] | None:
        return {"language": options.language.value} if options.language else None

    async def load(self, kind: RecordKind, options: FilterOptions) -> list:
        """Fetch raw records of one kind for the options' date range."""
        start, end = self._range(options)
        logger.debug(LogMessage.FETCHING_RECORDS.format(kind, start.isoformat(), end.isoformat()))
        return await fetch_in_buckets(self.adapter, kind, start, end, self._hints(options))

    async def select(self, options: FilterOptions) -> list[ConversationRecord]:
        """All matching conversations, sorted but not paginated."""
        conversations = await self.load(RecordKind.CONVERSATION, options)
        return select(conversations, options)

    async def filter(self, options: FilterOptions) -> FilteredResponse[ConversationRecord]:
        """Filter, sort and paginate conversations in the options' date range.

        Args:
            options: Validated filter options.

        Returns:
            FilteredResponse[ConversationRecord]: One page plus its filter descriptor.
        """
        logger.info(LogMessage.FILTERING.format(options.active_predicates()))
        conversations = await self.load(RecordKind.CONVERSATION, options)
        response = apply_filters(conversations, options)
        logger.debug(
            LogMessage.FILTERED.format(
                response.filter_state.filter_id,
                response.pagination.total,
                len(conversations),
                round(response.filter_state.execution_time_ms, 2),
            )
        )
        return response

    async def messages(self, options: FilterOptions) -> list[MessageRecord]:
        """Messages in range, scoped by the message-level predicates."""
        messages = await self.load(RecordKind.MESSAGE, options)
        return filter_messages(messages, options)

    async def questions(self, options: FilterOptions) -> list[QuestionRecord]:
        """Question records in range, scoped by the question-level predicates."""
        questions = await self.load(RecordKind.QUESTION, options)
        return filter_questions(questions, options)
