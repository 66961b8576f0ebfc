"""
Pytest configuration and fixtures for chatbot analytics tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from clara_analytics.adapters import InMemoryRecordAdapter
from clara_analytics.config import AnalyticsConfig
from clara_analytics.constants import Outcome, SenderRole
from clara_analytics.filtering import FilterEngine
from clara_analytics.models import ConversationRecord, MessageRecord, QuestionRecord
from clara_analytics.options import FilterOptions

# Monday
BASE_TIME = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
RANGE_START = datetime(2024, 3, 1, tzinfo=timezone.utc)
RANGE_END = datetime(2024, 3, 31, 23, 59, 59, tzinfo=timezone.utc)


def make_conversation(
    conversation_id: str,
    *,
    day: int = 0,
    language: str = "en",
    message_count: int = 4,
    outcome: str = Outcome.RESOLVED,
    confidence: float | None = 0.8,
    **overrides,
) -> ConversationRecord:
    """Build a conversation starting ``day`` days after BASE_TIME."""
    if outcome == Outcome.ESCALATED:
        overrides.setdefault("escalation_reason", "user asked for a human")
    return ConversationRecord(
        conversation_id=conversation_id,
        start_time=BASE_TIME + timedelta(days=day),
        language=language,
        message_count=message_count,
        outcome=outcome,
        average_confidence_score=confidence,
        **overrides,
    )


def make_message(
    conversation: ConversationRecord,
    index: int,
    role: str,
    content: str,
    *,
    seconds: int = 0,
    confidence: float | None = None,
) -> MessageRecord:
    """Build a message ``seconds`` after the conversation started."""
    return MessageRecord(
        conversation_id=conversation.conversation_id,
        message_index=index,
        timestamp=conversation.start_time + timedelta(seconds=seconds),
        role=role,
        content=content,
        confidence_score=confidence,
        language=conversation.language,
    )


@pytest.fixture
def config() -> AnalyticsConfig:
    return AnalyticsConfig()


@pytest.fixture
def conversations() -> list[ConversationRecord]:
    """Three conversations on consecutive days: en/resolved, es/escalated, en/abandoned."""
    return [
        make_conversation("conv-1", day=0, language="en", message_count=5, confidence=0.9,
                          user_id="user-1"),
        make_conversation(
            "conv-2",
            day=1,
            language="es",
            message_count=2,
            outcome=Outcome.ESCALATED,
            confidence=0.5,
            escalation_reason="Billing question",
            escalation_priority="high",
            user_id="user-2",
        ),
        make_conversation(
            "conv-3",
            day=2,
            language="en",
            message_count=12,
            outcome=Outcome.ABANDONED,
            confidence=0.7,
            user_id="user-3",
        ),
    ]


@pytest.fixture
def messages(conversations) -> list[MessageRecord]:
    """Transcripts with one answered and three unanswered questions.

    conv-1: answered question, then a question deflected with a generic reply.
    conv-2: Spanish question answered with low confidence.
    conv-3: question whose reply arrives outside the reply window.
    """
    first, second, third = conversations
    return [
        make_message(first, 0, SenderRole.USER, "What is a normal blood sugar level?"),
        make_message(
            first,
            1,
            SenderRole.BOT,
            "A normal fasting blood sugar level is 70-100 mg/dL.",
            seconds=5,
            confidence=0.92,
        ),
        make_message(first, 2, SenderRole.USER, "How much insulin should I take?", seconds=20),
        make_message(
            first,
            3,
            SenderRole.BOT,
            "I'm not sure, please contact support.",
            seconds=25,
            confidence=0.8,
        ),
        make_message(first, 4, SenderRole.USER, "Thanks", seconds=40),
        make_message(second, 0, SenderRole.USER, "¿Qué dosis de medicina debo tomar?"),
        make_message(
            second, 1, SenderRole.BOT, "Consulte a su médico.", seconds=10, confidence=0.4
        ),
        make_message(third, 0, SenderRole.USER, "Can I eat fruit with diabetes?"),
        make_message(third, 1, SenderRole.USER, "Managing blood sugar with insulin", seconds=30),
        make_message(
            third,
            2,
            SenderRole.BOT,
            "Managing blood sugar with insulin takes practice.",
            seconds=90,
            confidence=0.75,
        ),
    ]


@pytest.fixture
def questions() -> list[QuestionRecord]:
    """Stored question records: two insulin observations merged, plus two singles."""
    insulin = QuestionRecord.observe(
        question="How much insulin should I take?",
        category="diabetes",
        confidence_score=0.4,
        was_answered=False,
        escalation_threshold=0.5,
        asked_at=BASE_TIME,
    ).merge(
        QuestionRecord.observe(
            question="how much insulin should I take",
            category="diabetes",
            confidence_score=0.6,
            was_answered=True,
            escalation_threshold=0.5,
            asked_at=BASE_TIME + timedelta(hours=2),
        )
    )
    walking = QuestionRecord.observe(
        question="Is walking good exercise?",
        category="exercise",
        confidence_score=0.9,
        was_answered=True,
        escalation_threshold=0.5,
        asked_at=BASE_TIME + timedelta(days=1),
    )
    dose = QuestionRecord.observe(
        question="¿Qué dosis de medicina debo tomar?",
        category="medication",
        confidence_score=0.3,
        language="es",
        was_answered=False,
        escalation_threshold=0.5,
        asked_at=BASE_TIME + timedelta(days=1),
    )
    return [insulin, walking, dose]


@pytest.fixture
def adapter(conversations, messages, questions) -> InMemoryRecordAdapter:
    return InMemoryRecordAdapter(
        conversations=conversations, messages=messages, questions=questions
    )


@pytest.fixture
def filter_engine(adapter, config) -> FilterEngine:
    return FilterEngine(adapter=adapter, config=config)


@pytest.fixture
def march() -> FilterOptions:
    """Filter options covering every fixture record."""
    return FilterOptions(start_date=RANGE_START, end_date=RANGE_END)
