"""Full-text search across conversations, questions and messages."""

import asyncio
import time
from collections.abc import Awaitable, Callable

from loguru import logger

from .adapters import RecordAdapter
from .config import AnalyticsConfig
from .constants import (
    MAX_SUGGESTIONS,
    MILLISECONDS,
    SEARCH_VOCABULARY,
    SUGGESTION_MAX_DISTANCE,
    LogMessage,
    RecordKind,
    SearchScope,
)
from .filtering import FilterEngine
from .models import (
    ConversationRecord,
    MessageRecord,
    QuestionRecord,
    SearchResponse,
    SearchResult,
    format_timestamp,
)
from .options import FilterOptions, SearchOptions
from .scoring import RelevanceScorer, levenshtein, tokenize, truncate


def suggest_terms(query: str) -> list[str]:
    """Vocabulary terms within a small edit distance of the whole query."""
    needle = query.strip().lower()
    return [
        term for term in SEARCH_VOCABULARY if levenshtein(needle, term) <= SUGGESTION_MAX_DISTANCE
    ][:MAX_SUGGESTIONS]


def conversation_text(conversation: ConversationRecord, messages: list[MessageRecord]) -> str:
    """Searchable text of a conversation: user name, escalation reason and every message."""
    parts = [conversation.user_name or "", conversation.escalation_reason or ""]
    parts.extend(message.content for message in messages)
    return " ".join(part for part in parts if part)


class SearchEngine:
    """Ranks records of the selected kinds against a text query.

    Each kind is searched independently; a kind whose records cannot be loaded
    contributes nothing and the failure is logged, the others still return.

    Attributes:
        adapter: Record source.
        filter_engine: Scopes candidates before scoring.
        scorer: Relevance scorer shared by every kind.
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

    async def search(self, options: SearchOptions) -> SearchResponse:
        """Search the requested kinds, merge by relevance and truncate.

        Args:
            options: Validated search options.

        Returns:
            SearchResponse: Ranked results, pre-truncation hit count and suggestions.
        """
        started = time.perf_counter()
        logger.info(LogMessage.SEARCHING.format(", ".join(options.search_in), options.query))

        tokens = tokenize(options.query, case_sensitive=options.case_sensitive)
        filters = options.filters or FilterOptions()

        searchers: dict[SearchScope, Callable[[], Awaitable[list[SearchResult]]]] = {
            SearchScope.CONVERSATIONS: lambda: self._search_conversations(tokens, filters, options),
            SearchScope.QUESTIONS: lambda: self._search_questions(tokens, filters, options),
            SearchScope.MESSAGES: lambda: self._search_messages(tokens, filters, options),
        }
        scopes = list(dict.fromkeys(options.search_in))
        batches = await asyncio.gather(*(self._guarded(scope, searchers[scope]) for scope in scopes))

        results = [result for batch in batches for result in batch]
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        limited = results[: options.max_results]
        if options.min_relevance_score is not None:
            limited = [r for r in limited if r.relevance_score >= options.min_relevance_score]

        elapsed = (time.perf_counter() - started) * MILLISECONDS
        logger.debug(
            LogMessage.SEARCH_DONE.format(options.query, len(limited), len(results), round(elapsed, 2))
        )
        return SearchResponse(
            results=limited,
            total_count=len(results),
            search_query=options.query,
            execution_time_ms=elapsed,
            suggestions=[] if limited else suggest_terms(options.query),
        )

    async def _guarded(
        self, scope: SearchScope, searcher: Callable[[], Awaitable[list[SearchResult]]]
    ) -> list[SearchResult]:
        try:
            return await searcher()
        except Exception as e:
            logger.warning(LogMessage.SEARCH_KIND_FAILED.format(scope, e))
            return []

    def _result(
        self,
        *,
        record_id: str,
        kind: RecordKind,
        text: str,
        title: str,
        tokens: list[str],
        options: SearchOptions,
        metadata: dict[str, str | None],
        excerpt: bool = True,
    ) -> SearchResult | None:
        relevance = self.scorer.score(
            text, tokens, fuzzy=options.fuzzy_match, case_sensitive=options.case_sensitive
        )
        if relevance <= 0:
            return None
        highlights = (
            self.scorer.extract_highlights(
                text, tokens, fuzzy=options.fuzzy_match, case_sensitive=options.case_sensitive
            )
            if options.include_highlights
            else []
        )
        return SearchResult(
            id=record_id,
            kind=kind,
            relevance_score=relevance,
            title=title,
            content=truncate(text) if excerpt else text,
            highlights=highlights,
            metadata=metadata,
        )

    async def _search_conversations(
        self, tokens: list[str], filters: FilterOptions, options: SearchOptions
    ) -> list[SearchResult]:
        conversations = await self.filter_engine.select(filters)
        transcripts = await asyncio.gather(
            *(self.adapter.get_messages_for_conversation(c.conversation_id) for c in conversations)
        )
        results: list[SearchResult] = []
        for conversation, messages in zip(conversations, transcripts):
            result = self._result(
                record_id=conversation.conversation_id,
                kind=RecordKind.CONVERSATION,
                text=conversation_text(conversation, messages),
                title=f"Conversation {conversation.conversation_id}",
                tokens=tokens,
                options=options,
                metadata={
                    "timestamp": format_timestamp(conversation.timestamp),
                    "language": conversation.language,
                    "conversation_id": conversation.conversation_id,
                    "user_id": conversation.user_id,
                },
            )
            if result:
                results.append(result)
        return results

    async def _search_questions(
        self, tokens: list[str], filters: FilterOptions, options: SearchOptions
    ) -> list[SearchResult]:
        questions: list[QuestionRecord] = await self.filter_engine.questions(filters)
        results: list[SearchResult] = []
        for question in questions:
            result = self._result(
                record_id=question.question_hash,
                kind=RecordKind.QUESTION,
                text=question.original_question,
                title=question.original_question,
                tokens=tokens,
                options=options,
                metadata={
                    "timestamp": format_timestamp(question.last_asked),
                    "language": question.language,
                    "category": question.category,
                },
                excerpt=False,
            )
            if result:
                results.append(result)
        return results

    async def _search_messages(
        self, tokens: list[str], filters: FilterOptions, options: SearchOptions
    ) -> list[SearchResult]:
        messages = await self.filter_engine.messages(filters)
        results: list[SearchResult] = []
        for message in messages:
            result = self._result(
                record_id=f"{message.conversation_id}_{message.message_index}",
                kind=RecordKind.MESSAGE,
                text=message.content,
                title=f"Message from {message.role}",
                tokens=tokens,
                options=options,
                metadata={
                    "timestamp": format_timestamp(message.timestamp),
                    "language": message.language,
                    "conversation_id": message.conversation_id,
                },
            )
            if result:
                results.append(result)
        return results
