"""Question detection, categorization and unanswered-question identification."""

import asyncio
from collections.abc import Iterable, Sequence
from datetime import datetime

from loguru import logger

from ..adapters import RecordAdapter
from ..config import AnalyticsConfig
from ..constants import (
    CATEGORY_KEYWORDS,
    GENERAL_CATEGORY,
    GENERIC_RESPONSE_PHRASES,
    INTERROGATIVE_WORDS,
    MILLISECONDS,
    SUBCATEGORY_KEYWORDS,
    Language,
    LogMessage,
    UnansweredReason,
)
from ..filtering import FilterEngine
from ..fingerprint import normalize_question
from ..models import ConversationRecord, MessageRecord, QuestionRecord
from ..options import FilterOptions
from .models import UnansweredQuestion

_INTERROGATIVES = tuple(
    f"{word} " for words in INTERROGATIVE_WORDS.values() for word in words
)


def is_question(text: str) -> bool:
    """Whether a user message reads as a question.

    A message is a question if it ends with ``?``, opens with ``¿`` or starts
    with an English or Spanish interrogative word.
    """
    content = text.strip()
    if not content:
        return False
    if content.endswith("?") or content.startswith("¿"):
        return True
    return content.lower().startswith(_INTERROGATIVES)


def is_generic_response(text: str) -> bool:
    """Whether a bot reply is a deflection such as "I don't know"."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in GENERIC_RESPONSE_PHRASES)


def categorize(text: str, language: str = Language.EN) -> str:
    """First keyword category whose keywords occur in the text, else ``general``."""
    lowered = text.lower()
    table = CATEGORY_KEYWORDS.get(language, CATEGORY_KEYWORDS[Language.EN])
    for category, keywords in table.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return GENERAL_CATEGORY


def subcategorize(text: str) -> str:
    lowered = text.lower()
    for subcategory, keywords in SUBCATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return subcategory
    return GENERAL_CATEGORY


def find_reply(
    question: MessageRecord, messages: Sequence[MessageRecord], window_seconds: int
) -> MessageRecord | None:
    """First bot message sent strictly after the question and within the window."""
    for message in messages:
        if not message.is_bot:
            continue
        elapsed = (message.timestamp - question.timestamp).total_seconds()
        if 0 < elapsed < window_seconds:
            return message
    return None


def unanswered_reason(
    reply: MessageRecord | None, confidence_threshold: float
) -> UnansweredReason | None:
    """Why a question went unanswered, or None if the reply was satisfactory.

    A reply without a confidence score is not treated as low confidence.
    """
    if reply is None:
        return UnansweredReason.NO_REPLY
    if reply.confidence_score is not None and reply.confidence_score < confidence_threshold:
        return UnansweredReason.LOW_CONFIDENCE
    if is_generic_response(reply.content):
        return UnansweredReason.GENERIC_RESPONSE
    return None


def build_question_record(
    *,
    message: MessageRecord,
    reply: MessageRecord | None,
    config: AnalyticsConfig,
) -> QuestionRecord:
    """Single-observation question record for a user question and its reply."""
    confidence = reply.confidence_score if reply and reply.confidence_score is not None else 0.0
    return QuestionRecord.observe(
        question=message.content.strip(),
        category=categorize(message.content, message.language),
        confidence_score=confidence,
        language=message.language,
        was_answered=unanswered_reason(reply, config.confidence_threshold) is None,
        escalation_threshold=config.escalation_confidence_threshold,
        asked_at=message.timestamp,
    )


def merge_question_records(records: Iterable[QuestionRecord]) -> list[QuestionRecord]:
    """Fold observations into one record per question and day, in first-seen order."""
    merged: dict[tuple[str, str], QuestionRecord] = {}
    for record in records:
        key = (record.question_hash, record.date)
        merged[key] = merged[key].merge(record) if key in merged else record
    return list(merged.values())


class QuestionAnalyzer:
    """Finds user questions in conversations and judges whether they were answered.

    Attributes:
        adapter: Record source.
        filter_engine: Selects the conversations in range.
        config: Confidence threshold and reply window.
    """

    def __init__(
        self,
        *,
        adapter: RecordAdapter,
        filter_engine: FilterEngine | None = None,
        config: AnalyticsConfig | None = None,
    ):
        self.adapter = adapter
        self.config = config or AnalyticsConfig()
        self.filter_engine = filter_engine or FilterEngine(adapter=adapter, config=self.config)

    async def _transcript(self, conversation_id: str) -> list[MessageRecord]:
        try:
            messages = await self.adapter.get_messages_for_conversation(conversation_id)
        except Exception as e:
            logger.warning(LogMessage.TRANSCRIPT_FAILED.format(conversation_id, e))
            return []
        return sorted(messages, key=lambda m: m.message_index)

    async def transcripts(
        self, *, start: datetime, end: datetime, language: str | None = None
    ) -> list[tuple[ConversationRecord, list[MessageRecord]]]:
        """Conversations in range paired with their ordered messages."""
        options = FilterOptions(start_date=start, end_date=end, language=language)
        conversations = await self.filter_engine.select(options)
        messages = await asyncio.gather(
            *(self._transcript(c.conversation_id) for c in conversations)
        )
        return list(zip(conversations, messages))

    def unanswered_in(
        self,
        conversation: ConversationRecord,
        messages: Sequence[MessageRecord],
        confidence_threshold: float,
    ) -> list[UnansweredQuestion]:
        """Unanswered questions within one conversation, in message order."""
        found: list[UnansweredQuestion] = []
        for message in messages:
            if not message.is_user or not is_question(message.content):
                continue
            reply = find_reply(message, messages, self.config.reply_window_seconds)
            reason = unanswered_reason(reply, confidence_threshold)
            if reason is None:
                continue
            language = conversation.language or message.language
            found.append(
                UnansweredQuestion(
                    id=f"{conversation.conversation_id}-"
                    f"{int(message.timestamp.timestamp() * MILLISECONDS)}",
                    question=message.content,
                    normalized_question=normalize_question(message.content),
                    category=categorize(message.content, language),
                    timestamp=message.timestamp,
                    conversation_id=conversation.conversation_id,
                    user_id=conversation.user_id,
                    confidence=(
                        reply.confidence_score
                        if reply and reply.confidence_score is not None
                        else 0.0
                    ),
                    response_content=reply.content if reply else None,
                    language=language,
                    reason=reason,
                )
            )
        return found

    async def identify_unanswered(
        self,
        *,
        start: datetime,
        end: datetime,
        confidence_threshold: float | None = None,
        language: str | None = None,
    ) -> list[UnansweredQuestion]:
        """Identify user questions without a satisfactory bot reply.

        A question is unanswered when no bot reply follows within the reply
        window, the reply's confidence is below the threshold, or the reply
        is a generic deflection.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            confidence_threshold: Overrides the configured threshold.
            language: Restrict to one conversation language.

        Returns:
            list[UnansweredQuestion]: Unanswered questions in conversation order.
        """
        threshold = (
            self.config.confidence_threshold
            if confidence_threshold is None
            else confidence_threshold
        )
        logger.info(LogMessage.IDENTIFYING_UNANSWERED.format(start.isoformat(), end.isoformat()))

        unanswered: list[UnansweredQuestion] = []
        user_messages = 0
        for conversation, messages in await self.transcripts(
            start=start, end=end, language=language
        ):
            user_messages += sum(1 for m in messages if m.is_user)
            unanswered.extend(self.unanswered_in(conversation, messages, threshold))

        logger.debug(LogMessage.UNANSWERED_FOUND.format(len(unanswered), user_messages))
        return unanswered

    async def question_records(
        self, *, start: datetime, end: datetime, language: str | None = None
    ) -> list[QuestionRecord]:
        """Per-day question records built from every user question in range."""
        observations: list[QuestionRecord] = []
        for _, messages in await self.transcripts(start=start, end=end, language=language):
            for message in messages:
                if message.is_user and is_question(message.content):
                    reply = find_reply(message, messages, self.config.reply_window_seconds)
                    observations.append(
                        build_question_record(message=message, reply=reply, config=self.config)
                    )
        return merge_question_records(observations)
