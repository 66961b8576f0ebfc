"""
Tests for conversation filtering, sorting and pagination.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from clara_analytics.adapters import InMemoryRecordAdapter, RecordSourceError
from clara_analytics.constants import Language, Outcome, SortDirection, SortField
from clara_analytics.filtering import (
    FilterEngine,
    apply_filters,
    filter_messages,
    filter_questions,
    matches,
    resolve_date_range,
    select,
)
from clara_analytics.models import UserInfo
from clara_analytics.options import FilterOptions
from conftest import BASE_TIME, RANGE_END, RANGE_START, make_conversation


class TestMatches:
    """Tests for the per-record predicate check."""

    def test_no_predicates_matches_everything(self, conversations):
        """Test that empty options impose no constraint."""
        assert all(matches(c, FilterOptions()) for c in conversations)

    def test_predicates_combine_with_and(self, conversations):
        """Test that every supplied predicate must hold."""
        options = FilterOptions(language=Language.EN, outcome=Outcome.ABANDONED)

        assert [c.conversation_id for c in conversations if matches(c, options)] == ["conv-3"]

    def test_confidence_threshold_excludes_unscored(self):
        """Test that conversations without a score fail a confidence threshold."""
        unscored = make_conversation("c", confidence=None)

        assert not matches(unscored, FilterOptions(confidence_threshold=0.1))
        assert matches(unscored, FilterOptions())

    def test_escalation_reason_is_case_insensitive_substring(self, conversations):
        """Test escalation reason substring matching."""
        options = FilterOptions(escalation_reason="BILLING")

        assert [c.conversation_id for c in conversations if matches(c, options)] == ["conv-2"]

    def test_date_bounds_are_inclusive(self, conversations):
        """Test that records exactly on the range bounds are kept."""
        first = conversations[0]
        options = FilterOptions(start_date=first.timestamp, end_date=first.timestamp)

        assert matches(first, options)
        assert not matches(conversations[1], options)

    def test_user_zip_code(self):
        """Test filtering on the zip code from user info."""
        with_zip = make_conversation("c", user_info=UserInfo(zip_code="94110"))

        assert matches(with_zip, FilterOptions(user_zip_code="94110"))
        assert not matches(with_zip, FilterOptions(user_zip_code="10001"))


class TestApplyFilters:
    """Tests for filtering, sorting and paginating held records."""

    def test_language_and_message_count(self):
        """Test that en conversations with at least 3 messages are returned."""
        records = [
            make_conversation("a", language="en", message_count=5),
            make_conversation("b", language="es", message_count=2),
            make_conversation("c", language="en", message_count=12),
        ]

        response = apply_filters(
            records, FilterOptions(language="en", message_count_min=3)
        )

        assert [c.conversation_id for c in response.data] == ["a", "c"]
        assert response.pagination.total == 2
        assert response.filter_state.result_count == 2

    def test_pagination_windows(self, conversations):
        """Test that each page is the offset window of the full result."""
        response = apply_filters(conversations, FilterOptions(limit=2, offset=1))

        assert [c.conversation_id for c in response.data] == ["conv-2", "conv-3"]
        assert response.pagination.total == 3
        assert response.pagination.has_more is False

        first_page = apply_filters(conversations, FilterOptions(limit=2))
        assert first_page.pagination.has_more is True
        assert len(first_page.data) == 2

    @pytest.mark.parametrize("limit", [1, 2, 3, 4, 7])
    def test_pages_partition_the_selection(self, limit):
        """Test that walking every page yields the full selection exactly once."""
        records = [
            make_conversation(
                f"c{i}", message_count=i % 4, confidence=None if i % 5 == 0 else i / 20
            )
            for i in range(17)
        ]
        options = FilterOptions(
            sort_by=SortField.CONFIDENCE_SCORE, sort_order=SortDirection.DESC, limit=limit
        )

        walked = []
        offset = 0
        while True:
            page = apply_filters(records, options.model_copy(update={"offset": offset}))
            walked.extend(page.data)
            if not page.pagination.has_more:
                break
            offset += limit

        expected = select(records, options)
        assert [c.conversation_id for c in walked] == [c.conversation_id for c in expected]
        assert len({c.conversation_id for c in walked}) == len(records)

    def test_offset_beyond_total_gives_empty_page(self, conversations):
        """Test an offset past the end returns no records but the full total."""
        response = apply_filters(conversations, FilterOptions(offset=10))

        assert response.data == []
        assert response.pagination.total == 3

    def test_sort_descending_by_message_count(self, conversations):
        """Test sorting by message count."""
        response = apply_filters(
            conversations,
            FilterOptions(sort_by=SortField.MESSAGE_COUNT, sort_order=SortDirection.DESC),
        )

        assert [c.message_count for c in response.data] == [12, 5, 2]

    def test_sort_is_stable(self):
        """Test that ties keep their input order in both directions."""
        records = [make_conversation(name, message_count=3) for name in ("x", "y", "z")]

        for order in SortDirection:
            response = apply_filters(
                records, FilterOptions(sort_by=SortField.MESSAGE_COUNT, sort_order=order)
            )
            assert [c.conversation_id for c in response.data] == ["x", "y", "z"]

    def test_unscored_sort_below_scored(self):
        """Test that unscored conversations sort first ascending."""
        records = [
            make_conversation("scored", confidence=0.2),
            make_conversation("unscored", confidence=None),
        ]

        ordered = select(records, FilterOptions(sort_by=SortField.CONFIDENCE_SCORE))

        assert [c.conversation_id for c in ordered] == ["unscored", "scored"]

    def test_filter_ids_are_unique(self, conversations):
        """Test that repeating the same filter yields a new filter id."""
        options = FilterOptions(language="en")

        first = apply_filters(conversations, options).filter_state.filter_id
        second = apply_filters(conversations, options).filter_state.filter_id

        assert first.startswith("filter_")
        assert first != second


class TestFilterOptionsValidation:
    """Tests for rejecting malformed filter options."""

    def test_inverted_message_count_range(self):
        with pytest.raises(ValidationError):
            FilterOptions(message_count_min=5, message_count_max=2)

    def test_inverted_date_range(self):
        with pytest.raises(ValidationError):
            FilterOptions(start_date=RANGE_END, end_date=RANGE_START)

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_out_of_bounds(self, limit):
        with pytest.raises(ValidationError):
            FilterOptions(limit=limit)

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            FilterOptions.model_validate({"colour": "red"})

    def test_camel_case_keys_accepted(self):
        """Test that record store style keys populate the options."""
        options = FilterOptions.model_validate(
            {"messageCountMin": 3, "startDate": "2024-03-01T00:00:00Z"}
        )

        assert options.message_count_min == 3
        assert options.start_date == RANGE_START


class TestScopedRecords:
    """Tests for message and question scoping."""

    def test_filter_messages_by_language(self, messages):
        spanish = filter_messages(messages, FilterOptions(language=Language.ES))

        assert {m.conversation_id for m in spanish} == {"conv-2"}

    def test_filter_questions_by_answered_state(self, questions):
        """Test that a question counts as answered only with no unanswered observations."""
        answered = filter_questions(questions, FilterOptions(is_answered=True))
        unanswered = filter_questions(questions, FilterOptions(is_answered=False))

        assert [q.category for q in answered] == ["exercise"]
        assert {q.category for q in unanswered} == {"diabetes", "medication"}


class TestResolveDateRange:
    def test_defaults_to_lookback_ending_now(self):
        start, end = resolve_date_range(FilterOptions(), lookback_days=30, now=BASE_TIME)

        assert end == BASE_TIME
        assert start == BASE_TIME - timedelta(days=30)

    def test_start_defaults_relative_to_end(self):
        options = FilterOptions(end_date=RANGE_END)

        start, end = resolve_date_range(options, lookback_days=7, now=BASE_TIME)

        assert (start, end) == (RANGE_END - timedelta(days=7), RANGE_END)


class TestFilterEngine:
    """Tests for filtering through the record adapter."""

    @pytest.mark.asyncio
    async def test_filter_loads_range(self, filter_engine, march):
        response = await filter_engine.filter(march)

        assert [c.conversation_id for c in response.data] == ["conv-1", "conv-2", "conv-3"]
        assert response.applied_filters is march

    @pytest.mark.asyncio
    async def test_failing_bucket_treated_as_empty(self, conversations):
        """Test that one failing day still lets the other days contribute."""

        class FlakyAdapter(InMemoryRecordAdapter):
            async def get_by_date_range(self, kind, start, end, hints=None):
                if start.date() == conversations[1].timestamp.date():
                    raise RecordSourceError("timed out")
                return await super().get_by_date_range(kind, start, end, hints)

        engine = FilterEngine(adapter=FlakyAdapter(conversations=conversations))

        response = await engine.filter(
            FilterOptions(start_date=RANGE_START, end_date=RANGE_END)
        )

        assert [c.conversation_id for c in response.data] == ["conv-1", "conv-3"]

    @pytest.mark.asyncio
    async def test_questions_and_messages(self, filter_engine, march):
        questions = await filter_engine.questions(march)
        messages = await filter_engine.messages(march)

        assert len(questions) == 3
        assert len(messages) == 10
