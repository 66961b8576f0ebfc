"""
Tests for knowledge-gap scoring, prioritization and trend analysis.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from clara_analytics.analyzers.gaps import (
    KnowledgeGapAnalyzer,
    build_gaps,
    build_trends,
    detect_seasonality,
    effort_level,
    gap_severity,
    impact_potential,
    linear_forecast,
    overall_change,
    peak_periods,
    period_key,
    prioritize_improvement_opportunities,
    recommended_actions,
    required_resources,
    summarize_gaps,
    trend_score,
    volatility,
)
from clara_analytics.analyzers.models import KnowledgeGap, TrendDataPoint, TrendPoint
from clara_analytics.config import AnalyticsConfig
from clara_analytics.constants import EffortLevel, TrendGranularity
from conftest import RANGE_END, RANGE_START


def gap(category: str, frequency: int, average_confidence: float, **kwargs) -> KnowledgeGap:
    return KnowledgeGap(
        category=category,
        frequency=frequency,
        average_confidence=average_confidence,
        severity=gap_severity(frequency, average_confidence),
        **kwargs,
    )


class TestScoring:
    """Tests for the gap scoring formulas."""

    def test_severity_caps_frequency(self):
        assert gap_severity(20, 0.3) == pytest.approx(0.88)
        assert gap_severity(40, 0.3) == pytest.approx(0.88)

    def test_severity_low_frequency(self):
        assert gap_severity(2, 0.4) == pytest.approx(0.06 + 0.24)

    def test_trend_score(self):
        trends = [TrendPoint(date=f"d{i}", count=i) for i in range(1, 15)]

        assert trend_score(trends) == pytest.approx((11 - 4) / 4)

    def test_trend_score_degenerate(self):
        assert trend_score([TrendPoint(date="d", count=3)]) == 0
        assert trend_score([TrendPoint(date="a", count=0), TrendPoint(date="b", count=4)]) == 0

    @pytest.mark.parametrize(
        "frequency,expected",
        [(4, EffortLevel.LOW), (5, EffortLevel.MEDIUM), (14, EffortLevel.MEDIUM), (15, EffortLevel.HIGH)],
    )
    def test_effort_level(self, frequency, expected):
        assert effort_level(frequency) == expected

    def test_impact_potential(self):
        assert impact_potential(10, 0.5) == pytest.approx(0.25)
        assert impact_potential(50, 0.9) == 1.0

    def test_required_resources(self):
        assert required_resources(3, 0.2) == ["Content writer", "Subject matter expert"]
        assert required_resources(16, 0.8) == [
            "Content writer",
            "Subject matter expert",
            "Technical writer",
            "QA reviewer",
            "Medical professional review",
        ]

    def test_recommended_actions(self):
        assert len(recommended_actions("diet", 3, 0.9)) == 3
        actions = recommended_actions("diet", 11, 0.4)
        assert actions[-2] == "Prioritize diet content creation due to high frequency"
        assert actions[-1] == "Improve response confidence for diet through better training data"


class TestBuildGaps:
    """Tests for grouping unanswered questions into gaps."""

    @pytest_asyncio.fixture
    async def unanswered(self, adapter, config):
        analyzer = KnowledgeGapAnalyzer(adapter=adapter, config=config)
        return await analyzer.questions.identify_unanswered(start=RANGE_START, end=RANGE_END)

    @pytest.mark.asyncio
    async def test_gaps_sorted_by_severity(self, unanswered):
        gaps = build_gaps(unanswered, min_occurrences=1)

        assert [g.category for g in gaps] == ["diabetes", "medication"]
        diabetes = gaps[0]
        assert diabetes.frequency == 2
        assert diabetes.average_confidence == pytest.approx(0.4)
        assert diabetes.severity == pytest.approx(0.30)
        assert [(t.date, t.count) for t in diabetes.trends] == [
            ("2024-03-04", 1),
            ("2024-03-05", 0),
            ("2024-03-06", 1),
        ]

    @pytest.mark.asyncio
    async def test_min_occurrences_drops_rare_categories(self, unanswered):
        assert [g.category for g in build_gaps(unanswered, min_occurrences=2)] == ["diabetes"]
        assert build_gaps(unanswered, min_occurrences=3) == []

    @pytest.mark.asyncio
    async def test_subcategories_optional(self, unanswered):
        with_breakdown = build_gaps(unanswered, min_occurrences=1)
        without = build_gaps(unanswered, min_occurrences=1, include_subcategories=False)

        assert with_breakdown[0].subcategories[0].count == 2
        assert without[0].subcategories == []

    def test_summarize_gaps(self):
        gaps = [gap("a", 20, 0.1), gap("b", 10, 0.5), gap("c", 1, 0.9)]

        summary = summarize_gaps(gaps)

        assert (summary.critical_gaps, summary.moderate_gaps, summary.minor_gaps) == (1, 1, 1)
        assert summary.top_categories == ["a", "b", "c"]


class TestPrioritization:
    def test_opportunity_fields(self):
        opportunity = prioritize_improvement_opportunities([gap("Blood Tests", 2, 0.4)])[0]

        assert opportunity.id == "gap-blood-tests"
        assert opportunity.priority_score == pytest.approx(0.4 * 2 / 50 + 0.4 * 0.30)
        assert opportunity.effort_level == EffortLevel.LOW
        assert opportunity.timeline == "1-2 weeks"
        assert opportunity.estimated_impact.questions_addressed == 2
        assert opportunity.estimated_impact.confidence_score_improvement == pytest.approx(0.3)
        assert opportunity.estimated_impact.user_satisfaction_improvement == pytest.approx(
            impact_potential(2, 0.30) * 0.3
        )

    def test_rising_trend_raises_priority(self):
        rising = [TrendPoint(date=f"d{i}", count=1 if i < 7 else 3) for i in range(14)]
        flat = [TrendPoint(date=f"d{i}", count=2) for i in range(14)]

        ranked = prioritize_improvement_opportunities(
            [gap("flat", 10, 0.5, trends=flat), gap("rising", 10, 0.5, trends=rising)]
        )

        assert [o.category for o in ranked] == ["rising", "flat"]
        assert ranked[0].trend_score == pytest.approx(2.0)

    def test_max_opportunities(self):
        gaps = [gap(f"c{i}", i + 1, 0.5) for i in range(5)]

        ranked = prioritize_improvement_opportunities(gaps, max_opportunities=2)

        assert [o.category for o in ranked] == ["c4", "c3"]


class TestTrendHelpers:
    @pytest.mark.parametrize(
        "granularity,moment,expected",
        [
            (TrendGranularity.DAILY, datetime(2024, 3, 9, 23, tzinfo=timezone.utc), "2024-03-09"),
            (TrendGranularity.WEEKLY, datetime(2024, 3, 9, tzinfo=timezone.utc), "2024-03-03"),
            (TrendGranularity.WEEKLY, datetime(2024, 3, 10, tzinfo=timezone.utc), "2024-03-10"),
            (TrendGranularity.MONTHLY, datetime(2024, 3, 9, tzinfo=timezone.utc), "2024-03"),
        ],
    )
    def test_period_key(self, granularity, moment, expected):
        assert period_key(moment, granularity) == expected

    def test_volatility(self):
        assert volatility([5, 5, 5]) == 0
        assert volatility([1]) == 0
        assert volatility([0, 0]) == 0
        assert volatility([1, 3]) == pytest.approx(0.5)

    def test_linear_forecast(self):
        forecast = linear_forecast([2, 4, 6])

        assert forecast.method == "linear-trend"
        assert forecast.confidence == "low"
        assert [(p.period, p.predicted_count) for p in forecast.forecast] == [
            ("forecast-1", 8),
            ("forecast-2", 10),
            ("forecast-3", 12),
        ]

    def test_forecast_never_negative(self):
        forecast = linear_forecast([10, 5, 0])

        assert [p.predicted_count for p in forecast.forecast] == [0, 0, 0]

    def test_forecast_needs_two_points(self):
        assert linear_forecast([5]) is None
        assert linear_forecast([]) is None

    def test_seasonality(self):
        points = [
            TrendDataPoint(period=f"2023-{month:02d}", count=month, average_confidence=0.5)
            for month in range(1, 13)
        ]

        seasonality = detect_seasonality(points)

        assert seasonality.detected is True
        assert seasonality.pattern[0] == (1, 1.0)
        assert detect_seasonality(points[:11]) is None

    def test_overall_change_and_peaks(self):
        assert overall_change({"a": 1, "b": 1, "c": 3, "d": 3}) == pytest.approx(200)
        assert overall_change({"a": 4}) == 0
        assert peak_periods({"a": 1, "b": 1, "c": 1, "d": 5}) == ["d"]
        assert peak_periods({}) == []


class TestBuildTrends:
    @pytest.mark.asyncio
    async def test_daily_trends(self, adapter, config):
        analyzer = KnowledgeGapAnalyzer(adapter=adapter, config=config)
        unanswered = await analyzer.questions.identify_unanswered(start=RANGE_START, end=RANGE_END)

        trends, overall = build_trends(
            unanswered, granularity=TrendGranularity.DAILY, top_categories=10
        )

        assert [t.category for t in trends] == ["diabetes", "medication"]
        diabetes = trends[0]
        assert [p.count for p in diabetes.trend_data] == [1, 0, 1]
        assert [p.change for p in diabetes.trend_data] == [0.0, -100.0, 0.0]
        assert diabetes.average_change == pytest.approx(-50)
        assert diabetes.is_increasing is False
        assert diabetes.is_volatile is True
        assert diabetes.seasonality is None
        assert [p.predicted_count for p in diabetes.forecast.forecast] == [1, 1, 1]
        assert overall.total_change == 0
        assert overall.peak_periods == []
        assert overall.improving_categories == ["diabetes", "medication"]
        assert overall.worsening_categories == []

    def test_top_categories_limit(self):
        trends, _ = build_trends([], granularity=TrendGranularity.WEEKLY, top_categories=3)

        assert trends == []


class TestKnowledgeGapAnalyzer:
    """Tests for the async analyzer entry points."""

    @pytest.mark.asyncio
    async def test_analyze_knowledge_gaps(self, adapter):
        analyzer = KnowledgeGapAnalyzer(adapter=adapter, config=AnalyticsConfig(min_occurrences=1))

        analysis = await analyzer.analyze_knowledge_gaps(start=RANGE_START, end=RANGE_END)

        assert analysis.total_unanswered_questions == 3
        assert [g.category for g in analysis.knowledge_gaps] == ["diabetes", "medication"]
        assert analysis.summary.minor_gaps == 2
        assert analysis.to_dict()["start_date"] == "2024-03-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_default_min_occurrences_filters_everything(self, adapter, config):
        analysis = await KnowledgeGapAnalyzer(
            adapter=adapter, config=config
        ).analyze_knowledge_gaps(start=RANGE_START, end=RANGE_END)

        assert analysis.knowledge_gaps == []
        assert analysis.summary.top_categories == []

    @pytest.mark.asyncio
    async def test_improvement_opportunities(self, adapter):
        analyzer = KnowledgeGapAnalyzer(adapter=adapter, config=AnalyticsConfig(min_occurrences=1))

        opportunities = await analyzer.improvement_opportunities(
            start=RANGE_START, end=RANGE_END, max_opportunities=1
        )

        assert [o.id for o in opportunities] == ["gap-diabetes"]

    @pytest.mark.asyncio
    async def test_analyze_question_trends_weekly(self, adapter, config):
        analyzer = KnowledgeGapAnalyzer(adapter=adapter, config=config)

        result = await analyzer.analyze_question_trends(
            start=RANGE_START, end=RANGE_END, granularity=TrendGranularity.WEEKLY
        )

        assert result.total_questions == 3
        assert [t.total_count for t in result.category_trends] == [2, 1]
        assert result.category_trends[0].forecast is None
        assert result.to_dict()["granularity"] == "weekly"
