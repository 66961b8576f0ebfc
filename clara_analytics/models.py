"""Data models for chatbot interaction records and engine results."""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .constants import (
    EMPTY_STRING,
    GENERAL_CATEGORY,
    MILLISECONDS,
    ExportStatus,
    Language,
    Outcome,
    SenderRole,
)
from .fingerprint import normalize_question, question_fingerprint

if TYPE_CHECKING:
    from .options import FilterOptions

T = TypeVar("T")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime.

    Args:
        value: ISO string (``Z`` suffix allowed), epoch milliseconds, datetime or None.

    Returns:
        datetime | None: UTC datetime, or None when value is empty.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp.
    """
    if value is None or value == EMPTY_STRING:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / MILLISECONDS, tz=timezone.utc)
    else:
        text = str(value)
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            # Epoch milliseconds serialized as a string
            dt = datetime.fromtimestamp(int(text) / MILLISECONDS, tz=timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Render a datetime as ISO-8601 with a ``Z`` suffix."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present, non-None value among keys.

    Record store payloads use camelCase while cached/exported rows use
    snake_case; both are accepted.
    """
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _optional_float(value: Any) -> float | None:
    if value is None or value == EMPTY_STRING:
        return None
    return float(value)


@dataclass
class UserInfo:
    """Optional attributes a user shared during a conversation."""

    name: str | None = None
    email: str | None = None
    zip_code: str | None = None

    @classmethod
    def from_dict(cls, *, data: dict[str, Any]) -> "UserInfo":
        return cls(
            name=data.get("name"),
            email=data.get("email"),
            zip_code=_pick(data, "zip_code", "zipCode"),
        )


@dataclass
class ConversationRecord:
    """A finished (or snapshotted) conversation.

    Attributes:
        conversation_id: Unique identifier for the conversation.
        start_time: When the conversation started.
        language: Conversation language (``en`` or ``es``).
        message_count: Number of messages exchanged.
        outcome: ``resolved``, ``escalated`` or ``abandoned``.
        average_confidence_score: Mean bot confidence (0-1), if any bot reply was scored.
        end_time: When the conversation ended, if it has.
        timestamp: Sort key; defaults to ``start_time``.
        escalation_reason: Free-text reason recorded on escalation.
        escalation_priority: Priority of the escalation ticket.
        escalation_status: Status of the escalation ticket.
        escalation_triggered: Whether a message in the conversation triggered escalation.
        user_id: Identifier of the user, if known.
        user_info: Optional attributes the user shared.
    """

    conversation_id: str
    start_time: datetime
    language: str = Language.EN
    message_count: int = 0
    outcome: str = Outcome.RESOLVED
    average_confidence_score: float | None = None
    end_time: datetime | None = None
    timestamp: datetime | None = None
    escalation_reason: str | None = None
    escalation_priority: str | None = None
    escalation_status: str | None = None
    escalation_triggered: bool = False
    user_id: str | None = None
    user_info: UserInfo | None = None

    def __post_init__(self) -> None:
        if self.timestamp is None:
            self.timestamp = self.start_time
        if (
            self.outcome == Outcome.ESCALATED
            and not self.escalation_reason
            and not self.escalation_triggered
        ):
            raise ValueError(
                f"Conversation {self.conversation_id} is escalated without a reason or trigger"
            )

    @property
    def user_name(self) -> str | None:
        return self.user_info.name if self.user_info else None

    @property
    def user_zip_code(self) -> str | None:
        return self.user_info.zip_code if self.user_info else None

    @classmethod
    def from_dict(cls, *, data: dict[str, Any]) -> "ConversationRecord":
        """Create a ConversationRecord from a record store or cached dictionary.

        Args:
            data: Dictionary in either camelCase (record store) or snake_case (cache) form.

        Returns:
            ConversationRecord: A new record.
        """
        start_time = parse_timestamp(_pick(data, "start_time", "startTime", "timestamp"))
        if start_time is None:
            raise ValueError("Conversation record has no start time")

        user_info_data = _pick(data, "user_info", "userInfo")

        return cls(
            conversation_id=_pick(data, "conversation_id", "conversationId", default=EMPTY_STRING),
            start_time=start_time,
            language=data.get("language", Language.EN),
            message_count=int(_pick(data, "message_count", "messageCount", default=0)),
            outcome=data.get("outcome", Outcome.RESOLVED),
            average_confidence_score=_optional_float(
                _pick(data, "average_confidence_score", "averageConfidenceScore")
            ),
            end_time=parse_timestamp(_pick(data, "end_time", "endTime")),
            timestamp=parse_timestamp(data.get("timestamp")),
            escalation_reason=_pick(data, "escalation_reason", "escalationReason"),
            escalation_priority=_pick(data, "escalation_priority", "escalationPriority"),
            escalation_status=_pick(data, "escalation_status", "escalationStatus"),
            escalation_triggered=bool(
                _pick(data, "escalation_triggered", "escalationTriggered", default=False)
            ),
            user_id=_pick(data, "user_id", "userId"),
            user_info=UserInfo.from_dict(data=user_info_data) if user_info_data else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-native dictionary.

        Returns:
            dict[str, Any]: Snake-case dictionary with ISO-8601 timestamps.
        """
        data = asdict(self)
        data["start_time"] = format_timestamp(self.start_time)
        data["end_time"] = format_timestamp(self.end_time)
        data["timestamp"] = format_timestamp(self.timestamp)
        return data


@dataclass
class MessageRecord:
    """A single message within a conversation.

    Attributes:
        conversation_id: Owning conversation.
        message_index: Position of the message in the conversation.
        timestamp: When the message was sent.
        role: ``user`` or ``bot``.
        content: Message text.
        confidence_score: Bot confidence (0-1); bot messages only.
        escalation_trigger: Whether this message triggered an escalation.
        language: Message language.
        question_category: Category assigned upstream, if any.
    """

    conversation_id: str
    message_index: int
    timestamp: datetime
    role: str
    content: str
    confidence_score: float | None = None
    escalation_trigger: bool = False
    language: str = Language.EN
    question_category: str | None = None

    @property
    def is_user(self) -> bool:
        return self.role == SenderRole.USER

    @property
    def is_bot(self) -> bool:
        return self.role == SenderRole.BOT

    @classmethod
    def from_dict(cls, *, data: dict[str, Any]) -> "MessageRecord":
        """Create a MessageRecord from a record store or cached dictionary.

        Accepts ``type`` as an alias of ``role`` and ``assistant`` as an alias of ``bot``.
        """
        timestamp = parse_timestamp(data.get("timestamp"))
        if timestamp is None:
            raise ValueError("Message record has no timestamp")

        role = _pick(data, "role", "type", "sender", default=SenderRole.USER)
        if role == "assistant":
            role = SenderRole.BOT

        return cls(
            conversation_id=_pick(data, "conversation_id", "conversationId", default=EMPTY_STRING),
            message_index=int(_pick(data, "message_index", "messageIndex", default=0)),
            timestamp=timestamp,
            role=role,
            content=data.get("content", EMPTY_STRING),
            confidence_score=_optional_float(_pick(data, "confidence_score", "confidenceScore")),
            escalation_trigger=bool(
                _pick(data, "escalation_trigger", "escalationTrigger", default=False)
            ),
            language=data.get("language", Language.EN),
            question_category=_pick(data, "question_category", "questionCategory"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = format_timestamp(self.timestamp)
        return data


@dataclass
class QuestionRecord:
    """Per-period aggregate for one deduplicated question.

    Counters are append-only: :meth:`merge` only ever adds. At every point
    ``answered_count + unanswered_count == count``.
    """

    question_hash: str
    original_question: str
    normalized_question: str
    category: str
    date: str
    count: int
    answered_count: int
    unanswered_count: int
    escalation_count: int
    total_confidence_score: float
    average_confidence_score: float
    language: str
    last_asked: datetime

    def __post_init__(self) -> None:
        if self.answered_count + self.unanswered_count != self.count:
            raise ValueError(
                f"Question {self.question_hash}: answered ({self.answered_count}) + "
                f"unanswered ({self.unanswered_count}) != count ({self.count})"
            )
        if min(self.count, self.answered_count, self.unanswered_count, self.escalation_count) < 0:
            raise ValueError(f"Question {self.question_hash} has negative counters")

    @classmethod
    def observe(
        cls,
        *,
        question: str,
        category: str,
        confidence_score: float,
        language: str = Language.EN,
        was_answered: bool = True,
        escalation_threshold: float,
        asked_at: datetime,
    ) -> "QuestionRecord":
        """Build a single-observation record for one asked question.

        Args:
            question: The question as the user typed it.
            category: Category label.
            confidence_score: Confidence of the bot's answer.
            language: Question language.
            was_answered: Whether the bot answered satisfactorily.
            escalation_threshold: Confidence below which the question counts as escalated.
            asked_at: When the question was asked.

        Returns:
            QuestionRecord: A record with ``count == 1``.
        """
        asked_at = parse_timestamp(asked_at)
        return cls(
            question_hash=question_fingerprint(question),
            original_question=question,
            normalized_question=normalize_question(question),
            category=category,
            date=asked_at.date().isoformat(),
            count=1,
            answered_count=1 if was_answered else 0,
            unanswered_count=0 if was_answered else 1,
            escalation_count=1 if confidence_score < escalation_threshold else 0,
            total_confidence_score=confidence_score,
            average_confidence_score=confidence_score,
            language=language,
            last_asked=asked_at,
        )

    def merge(self, other: "QuestionRecord") -> "QuestionRecord":
        """Fold another observation of the same question into a new record.

        Raises:
            ValueError: If the records describe different questions or periods.
        """
        if other.question_hash != self.question_hash or other.date != self.date:
            raise ValueError(
                f"Cannot merge question {other.question_hash}/{other.date} "
                f"into {self.question_hash}/{self.date}"
            )
        count = self.count + other.count
        total_confidence = self.total_confidence_score + other.total_confidence_score
        return replace(
            self,
            count=count,
            answered_count=self.answered_count + other.answered_count,
            unanswered_count=self.unanswered_count + other.unanswered_count,
            escalation_count=self.escalation_count + other.escalation_count,
            total_confidence_score=total_confidence,
            average_confidence_score=total_confidence / count if count else 0.0,
            last_asked=max(self.last_asked, other.last_asked),
        )

    @classmethod
    def from_dict(cls, *, data: dict[str, Any]) -> "QuestionRecord":
        original = _pick(data, "original_question", "originalQuestion", default=EMPTY_STRING)
        normalized = _pick(data, "normalized_question", "normalizedQuestion") or normalize_question(
            original
        )
        last_asked = parse_timestamp(_pick(data, "last_asked", "lastAsked"))
        date = data.get("date") or (last_asked.date().isoformat() if last_asked else EMPTY_STRING)
        count = int(data.get("count", 0))
        total_confidence = float(_pick(data, "total_confidence_score", "totalConfidenceScore", default=0.0))
        average = _pick(data, "average_confidence_score", "averageConfidenceScore")

        return cls(
            question_hash=_pick(data, "question_hash", "questionHash") or question_fingerprint(original),
            original_question=original,
            normalized_question=normalized,
            category=data.get("category", GENERAL_CATEGORY),
            date=date,
            count=count,
            answered_count=int(_pick(data, "answered_count", "answeredCount", default=0)),
            unanswered_count=int(_pick(data, "unanswered_count", "unansweredCount", default=0)),
            escalation_count=int(_pick(data, "escalation_count", "escalationCount", default=0)),
            total_confidence_score=total_confidence,
            average_confidence_score=(
                float(average) if average is not None else (total_confidence / count if count else 0.0)
            ),
            language=data.get("language", Language.EN),
            last_asked=last_asked or parse_timestamp(f"{date}T00:00:00Z"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_asked"] = format_timestamp(self.last_asked)
        return data


@dataclass
class FilterState:
    """Record of which filter parameters produced a result set.

    Attributes:
        filter_id: Identifier derived from the options plus the creation time.
        applied_filters: The options that were applied.
        created_at: When the filter ran.
        result_count: Matches before pagination.
        execution_time_ms: Wall-clock duration of the filter call.
    """

    filter_id: str
    applied_filters: "FilterOptions"
    created_at: datetime
    result_count: int
    execution_time_ms: float


@dataclass
class Pagination:
    total: int
    offset: int
    limit: int
    has_more: bool


@dataclass
class FilteredResponse(Generic[T]):
    """One page of filtered records plus the descriptor that produced it."""

    data: list[T]
    filter_state: FilterState
    pagination: Pagination
    applied_filters: "FilterOptions"


@dataclass
class SearchResult:
    """A single ranked search hit.

    Attributes:
        id: Identifier of the matched record.
        kind: ``conversation``, ``question`` or ``message``.
        relevance_score: 0-1 relevance.
        title: Short label for the hit.
        content: Excerpt of the searched text.
        highlights: Distinct matched substrings in original casing.
        metadata: Source metadata (timestamp, language, ids, category).
    """

    id: str
    kind: str
    relevance_score: float
    title: str
    content: str
    highlights: list[str] = field(default_factory=list)
    metadata: dict[str, str | None] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResponse:
    results: list[SearchResult]
    total_count: int
    search_query: str
    execution_time_ms: float
    suggestions: list[str] = field(default_factory=list)


@dataclass
class QueryRow:
    """One aggregation group."""

    dimensions: dict[str, Any]
    metrics: dict[str, float]
    timestamp: str | None = None


@dataclass
class QueryMetadata:
    total_records_scanned: int
    cache_hit: bool
    data_freshness: str


@dataclass
class QueryResult:
    """Outcome of an aggregation query."""

    query_id: str
    executed_at: str
    execution_time_ms: float
    result_count: int
    data: list[QueryRow]
    filters: "FilterOptions"
    metadata: QueryMetadata


@dataclass
class ExportResult:
    """Information about an export attempt.

    Attributes:
        export_id: Identifier of the export.
        status: ``completed`` or ``failed``.
        format: Requested serialization.
        filename: Name the payload was stored under.
        record_count: Rows written (0 on failure).
        file_size: Payload size in bytes (0 on failure).
        created_at: When the export started.
        download_url: Where the payload can be fetched, when completed.
        completed_at: When the export finished, when completed.
        expires_at: Download-link expiry, 24 hours after completion.
        error: Failure message, when failed.
    """

    export_id: str
    status: str
    format: str
    filename: str
    record_count: int
    file_size: int
    created_at: str
    download_url: str | None = None
    completed_at: str | None = None
    expires_at: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ExportStatus.COMPLETED
