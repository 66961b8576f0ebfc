"""Frequently asked questions, question ranking and unanswered-question summaries."""

import asyncio
from collections import Counter
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from ..adapters import RecordAdapter
from ..config import AnalyticsConfig
from ..constants import (
    DEFAULT_FAQ_LIMIT,
    DEFAULT_RANKING_LIMIT,
    EXTRACTED_QUESTION_MAX_LENGTH,
    EXTRACTED_QUESTION_MIN_FREQUENCY,
    EXTRACTED_QUESTION_MIN_LENGTH,
    HIGH_PRIORITY_GAP_PCT,
    MAX_EXTRACTED_QUESTIONS,
    MEDIUM_PRIORITY_GAP_PCT,
    PERCENT,
    QUESTION_CATEGORIES,
    QUESTIONS_PER_CATEGORY_LOOKUP,
    QUESTIONS_PER_LANGUAGE_LOOKUP,
    RANKING_CONFIDENCE_WEIGHT,
    RANKING_FREQUENCY_WEIGHT,
    RANKING_IMPACT_WEIGHT,
    RANKING_POOL_SIZE,
    REQUEST_PREFIXES,
    UNANSWERED_GAP_PCT_THRESHOLD,
    ContentPriority,
    Language,
    LogMessage,
    QuestionSource,
    RankingMethod,
)
from ..filtering import FilterEngine
from ..fingerprint import normalize_question
from ..models import MessageRecord, QuestionRecord
from ..options import FilterOptions
from ..scoring import RelevanceScorer, tokenize
from .models import (
    CategoryGap,
    ContentOpportunity,
    ExtractedQuestion,
    FaqAnalysis,
    FaqEntry,
    QuestionRanking,
    RankedQuestion,
    UnansweredSummary,
)
from .questions import categorize


@dataclass
class _Tally:
    question: str
    category: str
    count: int = 0
    total_confidence: float = 0.0
    confidence_samples: int = 0
    sources: Counter = field(default_factory=Counter)

    @property
    def average_confidence(self) -> float:
        return self.total_confidence / self.confidence_samples if self.confidence_samples else 0.0


def is_extractable_question(content: str, language: str = Language.EN) -> bool:
    """Whether a user message reads as an FAQ candidate.

    Candidates end with ``?``, open with ``¿`` or start with a request phrase
    such as "tell me", and are between 10 and 200 characters long.
    """
    if not EXTRACTED_QUESTION_MIN_LENGTH < len(content) < EXTRACTED_QUESTION_MAX_LENGTH:
        return False
    if content.endswith("?") or content.startswith("¿"):
        return True
    prefixes = REQUEST_PREFIXES.get(language, REQUEST_PREFIXES[Language.EN])
    lowered = content.lower()
    return any(lowered.startswith(f"{prefix} ") for prefix in prefixes)


def content_priority(gap_percentage: float) -> ContentPriority:
    if gap_percentage > HIGH_PRIORITY_GAP_PCT:
        return ContentPriority.HIGH
    if gap_percentage > MEDIUM_PRIORITY_GAP_PCT:
        return ContentPriority.MEDIUM
    return ContentPriority.LOW


def rank(entries: Sequence[FaqEntry], method: RankingMethod) -> list[RankedQuestion]:
    """Score and order FAQ entries; ranks are 1-based.

    The frequency score is the count relative to the most frequent entry, the
    confidence score is the confidence deficit, and the impact score is
    ``frequency * (1 + confidence)``.
    """
    if not entries:
        return []
    max_count = max(entry.count for entry in entries) or 1
    ranked: list[RankedQuestion] = []
    for entry in entries:
        frequency_score = entry.count / max_count
        confidence_score = 1 - entry.average_confidence
        impact_score = frequency_score * (1 + confidence_score)
        combined_score = (
            frequency_score * RANKING_FREQUENCY_WEIGHT
            + confidence_score * RANKING_CONFIDENCE_WEIGHT
            + impact_score * RANKING_IMPACT_WEIGHT
        )
        score = {
            RankingMethod.FREQUENCY: frequency_score,
            RankingMethod.CONFIDENCE: confidence_score,
            RankingMethod.IMPACT: impact_score,
        }.get(method, combined_score)
        ranked.append(
            RankedQuestion(
                question=entry.question,
                rank=0,
                score=score,
                frequency=entry.count,
                average_confidence=entry.average_confidence,
                category=entry.category,
                frequency_score=frequency_score,
                confidence_score=confidence_score,
                impact_score=impact_score,
                combined_score=combined_score,
                sources=dict(entry.sources),
            )
        )
    ranked.sort(key=lambda q: q.score, reverse=True)
    for position, question in enumerate(ranked, 1):
        question.rank = position
    return ranked


class FaqAnalyzer:
    """FAQ views over stored question records and raw user messages.

    Attributes:
        adapter: Record source for question lookups.
        filter_engine: Scopes messages and question records by date and language.
        scorer: Restricts rankings to questions matching a text query.
    """

    def __init__(
        self,
        *,
        adapter: RecordAdapter,
        filter_engine: FilterEngine | None = None,
        scorer: RelevanceScorer | None = None,
        config: AnalyticsConfig | None = None,
    ):
        self.adapter = adapter
        self.filter_engine = filter_engine or FilterEngine(adapter=adapter, config=config)
        self.scorer = scorer or RelevanceScorer()

    async def _lookup(self, label: str, call: Awaitable[list[QuestionRecord]]) -> list[QuestionRecord]:
        try:
            return await call
        except Exception as e:
            logger.warning(LogMessage.FAQ_LOOKUP_FAILED.format(label, e))
            return []

    async def _question_pool(self, language: str | None) -> list[QuestionRecord]:
        if language:
            return await self._lookup(
                language, self.adapter.get_by_language(language, QUESTIONS_PER_LANGUAGE_LOOKUP)
            )
        batches = await asyncio.gather(
            *(
                self._lookup(
                    category,
                    self.adapter.get_by_category(category, QUESTIONS_PER_CATEGORY_LOOKUP),
                )
                for category in QUESTION_CATEGORIES
            )
        )
        return [record for batch in batches for record in batch]

    async def frequently_asked_questions(
        self,
        *,
        start: datetime,
        end: datetime,
        language: str | None = None,
        limit: int = DEFAULT_FAQ_LIMIT,
        include_message_extraction: bool = False,
    ) -> FaqAnalysis:
        """Most asked questions among the stored question records in range.

        Records are pulled by language when one is given, otherwise by each
        known category, kept when their day falls in range, and merged by
        normalized text. With ``include_message_extraction`` the questions
        mined from user messages are merged in as well, weighting confidence
        by frequency, and each entry reports how many occurrences came from
        each source.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            language: Restrict to one language.
            limit: Maximum number of questions returned.
            include_message_extraction: Also merge questions extracted from messages.

        Returns:
            FaqAnalysis: Top questions by count with per-category totals.
        """
        first_day, last_day = start.date().isoformat(), end.date().isoformat()
        records = [
            record
            for record in await self._question_pool(language)
            if first_day <= record.date <= last_day
        ]

        tallies: dict[str, _Tally] = {}
        for record in records:
            tally = tallies.setdefault(
                record.normalized_question,
                _Tally(question=record.original_question, category=record.category),
            )
            tally.count += record.count
            tally.total_confidence += record.total_confidence_score
            tally.confidence_samples += record.count
            tally.sources[QuestionSource.RECORDED] += record.count

        extracted: list[ExtractedQuestion] = []
        if include_message_extraction:
            extracted = await self.extract_questions_from_messages(
                start=start, end=end, language=language
            )
            for question in extracted:
                tally = tallies.setdefault(
                    normalize_question(question.question),
                    _Tally(question=question.question, category=question.category),
                )
                tally.count += question.frequency
                tally.total_confidence += question.average_confidence * question.frequency
                tally.confidence_samples += question.frequency
                tally.sources[QuestionSource.EXTRACTED] += question.frequency
            logger.debug(LogMessage.FAQ_MERGED.format(len(records), len(extracted), len(tallies)))

        top = sorted(tallies.values(), key=lambda t: t.count, reverse=True)[:limit]
        entries = [
            FaqEntry(
                question=t.question,
                count=t.count,
                category=t.category,
                average_confidence=t.average_confidence,
                sources={str(source): count for source, count in t.sources.items() if count},
            )
            for t in top
        ]
        categories: Counter = Counter()
        for entry in entries:
            categories[entry.category] += entry.count

        return FaqAnalysis(
            questions=entries,
            total_questions_analyzed=sum(record.count for record in records)
            + sum(question.frequency for question in extracted),
            categories=dict(categories),
            extracted_questions=extracted,
        )

    async def extract_questions_from_messages(
        self, *, start: datetime, end: datetime, language: str | None = None
    ) -> list[ExtractedQuestion]:
        """Questions users repeatedly typed, found by pattern matching on messages.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            language: Restrict to one language.

        Returns:
            list[ExtractedQuestion]: Questions asked at least twice, most frequent first.
        """
        messages: list[MessageRecord] = await self.filter_engine.messages(
            FilterOptions(start_date=start, end_date=end, language=language)
        )

        tallies: dict[str, _Tally] = {}
        for message in messages:
            content = message.content.strip()
            if not message.is_user or not is_extractable_question(content, message.language):
                continue
            tally = tallies.setdefault(
                normalize_question(content),
                _Tally(question=content, category=categorize(content, message.language)),
            )
            tally.count += 1
            if message.confidence_score is not None:
                tally.total_confidence += message.confidence_score
                tally.confidence_samples += 1

        frequent = [t for t in tallies.values() if t.count >= EXTRACTED_QUESTION_MIN_FREQUENCY]
        frequent.sort(key=lambda t: t.count, reverse=True)
        return [
            ExtractedQuestion(
                question=t.question,
                frequency=t.count,
                average_confidence=t.average_confidence,
                category=t.category,
            )
            for t in frequent[:MAX_EXTRACTED_QUESTIONS]
        ]

    async def rank_questions(
        self,
        *,
        start: datetime,
        end: datetime,
        language: str | None = None,
        method: RankingMethod = RankingMethod.COMBINED,
        limit: int = DEFAULT_RANKING_LIMIT,
        query: str | None = None,
        include_message_extraction: bool = False,
    ) -> QuestionRanking:
        """Rank frequently asked questions by frequency, confidence deficit, impact or a blend.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            language: Restrict to one language.
            method: Ranking strategy.
            limit: Maximum number of ranked questions returned.
            query: When given, only questions with a positive relevance to it are ranked.
            include_message_extraction: Also rank questions extracted from messages.

        Returns:
            QuestionRanking: Ranked questions, best first.
        """
        faq = await self.frequently_asked_questions(
            start=start,
            end=end,
            language=language,
            limit=RANKING_POOL_SIZE,
            include_message_extraction=include_message_extraction,
        )
        entries = faq.questions
        if query:
            tokens = tokenize(query)
            entries = [e for e in entries if self.scorer.score(e.question, tokens) > 0]

        return QuestionRanking(
            method=method,
            questions=rank(entries, method)[:limit],
            total_questions=faq.total_questions_analyzed,
        )

    async def unanswered_summary(
        self, *, start: datetime, end: datetime, language: str | None = None
    ) -> UnansweredSummary:
        """Unanswered totals and per-category content gaps from stored question records.

        Uses the per-record answered/unanswered counters, which may differ from
        the per-message judgement of the knowledge-gap analysis.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            language: Restrict to one language.

        Returns:
            UnansweredSummary: Totals, escalation rate (percent) and category gaps.
        """
        records = await self.filter_engine.questions(
            FilterOptions(start_date=start, end_date=end, language=language)
        )
        total = sum(r.count for r in records)
        escalations = sum(r.escalation_count for r in records)

        per_category: dict[str, list[int]] = {}
        for record in records:
            stats = per_category.setdefault(record.category, [0, 0])
            stats[0] += record.count
            stats[1] += record.unanswered_count

        gaps = sorted(
            (
                CategoryGap(
                    category=category,
                    total_questions=asked,
                    unanswered_questions=unanswered,
                    gap_percentage=unanswered / asked * PERCENT if asked else 0.0,
                )
                for category, (asked, unanswered) in per_category.items()
            ),
            key=lambda g: g.gap_percentage,
            reverse=True,
        )
        return UnansweredSummary(
            total_questions=total,
            answered_questions=sum(r.answered_count for r in records),
            unanswered_questions=sum(r.unanswered_count for r in records),
            escalation_rate=escalations / total * PERCENT if total else 0.0,
            category_gaps=gaps,
            improvement_opportunities=[
                ContentOpportunity(
                    category=gap.category,
                    gap_percentage=gap.gap_percentage,
                    priority=content_priority(gap.gap_percentage),
                )
                for gap in gaps
                if gap.gap_percentage > UNANSWERED_GAP_PCT_THRESHOLD
            ],
        )
