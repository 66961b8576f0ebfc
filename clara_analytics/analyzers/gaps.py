"""Knowledge-gap detection, improvement prioritization and trend analysis."""

import math
import re
from collections import Counter, defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from loguru import logger

from ..adapters import RecordAdapter
from ..config import AnalyticsConfig
from ..constants import (
    BASE_GAP_ACTIONS,
    BASE_RESOURCES,
    CONFIDENCE_IMPROVEMENT_FACTOR,
    CRITICAL_SEVERITY,
    DEFAULT_MAX_OPPORTUNITIES,
    DEFAULT_TOP_CATEGORIES,
    EXTRA_RESOURCES,
    EXTRA_RESOURCES_FREQUENCY,
    FORECAST_CONFIDENCE,
    FORECAST_METHOD,
    FORECAST_MIN_POINTS,
    FORECAST_PERIODS,
    HIGH_FREQUENCY_GAP,
    HIGH_FREQUENCY_GAP_ACTION,
    IMPACT_FREQUENCY_CAP,
    IMPLEMENTATION_TIMELINES,
    IMPROVING_CHANGE_PCT,
    INCREASING_CHANGE_PCT,
    LOW_CONFIDENCE_GAP,
    LOW_CONFIDENCE_GAP_ACTION,
    LOW_EFFORT_MAX_FREQUENCY,
    MAX_SAMPLE_QUESTIONS,
    MEDICAL_REVIEW_RESOURCE,
    MEDICAL_REVIEW_SEVERITY,
    MEDIUM_EFFORT_MAX_FREQUENCY,
    MODERATE_SEVERITY,
    PEAK_PERIOD_FACTOR,
    PERCENT,
    PRIORITY_FREQUENCY_CAP,
    PRIORITY_FREQUENCY_WEIGHT,
    PRIORITY_SEVERITY_WEIGHT,
    PRIORITY_TREND_WEIGHT,
    SATISFACTION_IMPROVEMENT_FACTOR,
    SEASONALITY_MIN_MONTHS,
    SEASONALITY_MIN_POINTS,
    SEVERITY_CONFIDENCE_WEIGHT,
    SEVERITY_FREQUENCY_CAP,
    SEVERITY_FREQUENCY_WEIGHT,
    SUMMARY_TOP_CATEGORIES,
    TREND_WINDOW,
    VOLATILITY_THRESHOLD,
    WORSENING_CHANGE_PCT,
    EffortLevel,
    LogMessage,
    TrendGranularity,
)
from ..filtering import FilterEngine
from .models import (
    CategoryTrend,
    EstimatedImpact,
    Forecast,
    ForecastPoint,
    GapSummary,
    ImprovementOpportunity,
    KnowledgeGap,
    KnowledgeGapAnalysis,
    OverallTrend,
    QuestionTrends,
    Seasonality,
    SubcategoryCount,
    TrendDataPoint,
    TrendPoint,
    UnansweredQuestion,
)
from .questions import QuestionAnalyzer, subcategorize


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def gap_severity(frequency: int, average_confidence: float) -> float:
    """``0.6 * min(frequency / 20, 1) + 0.4 * (1 - average_confidence)``."""
    frequency_score = min(frequency / SEVERITY_FREQUENCY_CAP, 1.0)
    return (
        frequency_score * SEVERITY_FREQUENCY_WEIGHT
        + (1 - average_confidence) * SEVERITY_CONFIDENCE_WEIGHT
    )


def trend_score(trends: Sequence[TrendPoint]) -> float:
    """Relative change of the mean of the last 7 points against the first 7.

    Positive means the gap is getting worse. 0 with fewer than two points or
    when the early mean is 0.
    """
    if len(trends) < 2:
        return 0.0
    recent = _mean([t.count for t in trends[-TREND_WINDOW:]])
    earlier = _mean([t.count for t in trends[:TREND_WINDOW]])
    return (recent - earlier) / earlier if earlier > 0 else 0.0


def effort_level(frequency: int) -> EffortLevel:
    if frequency < LOW_EFFORT_MAX_FREQUENCY:
        return EffortLevel.LOW
    if frequency < MEDIUM_EFFORT_MAX_FREQUENCY:
        return EffortLevel.MEDIUM
    return EffortLevel.HIGH


def impact_potential(frequency: int, severity: float) -> float:
    return min(frequency * severity / IMPACT_FREQUENCY_CAP, 1.0)


def required_resources(frequency: int, severity: float) -> list[str]:
    resources = list(BASE_RESOURCES)
    if frequency > EXTRA_RESOURCES_FREQUENCY:
        resources.extend(EXTRA_RESOURCES)
    if severity > MEDICAL_REVIEW_SEVERITY:
        resources.append(MEDICAL_REVIEW_RESOURCE)
    return resources


def recommended_actions(category: str, frequency: int, average_confidence: float) -> list[str]:
    actions = [template.format(category) for template in BASE_GAP_ACTIONS]
    if frequency > HIGH_FREQUENCY_GAP:
        actions.append(HIGH_FREQUENCY_GAP_ACTION.format(category))
    if average_confidence < LOW_CONFIDENCE_GAP:
        actions.append(LOW_CONFIDENCE_GAP_ACTION.format(category))
    return actions


def period_key(timestamp: datetime, granularity: TrendGranularity) -> str:
    """Bucket label: ``YYYY-MM-DD`` (daily, or the Sunday starting the week) or ``YYYY-MM``."""
    day = timestamp.astimezone(timezone.utc).date()
    if granularity == TrendGranularity.WEEKLY:
        return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()
    if granularity == TrendGranularity.MONTHLY:
        return f"{day.year}-{day.month:02d}"
    return day.isoformat()


def volatility(values: Sequence[float]) -> float:
    """Coefficient of variation (population stddev over mean); 0 for short or zero series."""
    if len(values) < 2:
        return 0.0
    mean = _mean(values)
    if mean <= 0:
        return 0.0
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance) / mean


def linear_forecast(values: Sequence[float], periods: int = FORECAST_PERIODS) -> Forecast | None:
    """Least-squares line over the index sequence, extrapolated ``periods`` ahead.

    Returns None for fewer than two values.
    """
    n = len(values)
    if n < FORECAST_MIN_POINTS:
        return None
    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_x2 = n * (n - 1) * (2 * n - 1) / 6
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    return Forecast(
        method=FORECAST_METHOD,
        confidence=FORECAST_CONFIDENCE,
        forecast=[
            ForecastPoint(
                period=f"forecast-{i}",
                predicted_count=max(0, round(slope * (n + i - 1) + intercept)),
            )
            for i in range(1, periods + 1)
        ],
    )


def detect_seasonality(points: Sequence[TrendDataPoint]) -> Seasonality | None:
    """Average count per calendar month; detected when at least 6 months are present.

    Returns None for fewer than 12 points.
    """
    if len(points) < SEASONALITY_MIN_POINTS:
        return None
    by_month: dict[int, list[int]] = defaultdict(list)
    for point in points:
        by_month[int(point.period[5:7])].append(point.count)
    pattern = sorted((month, _mean(counts)) for month, counts in by_month.items())
    return Seasonality(detected=len(pattern) >= SEASONALITY_MIN_MONTHS, pattern=pattern)


def overall_change(totals: dict[str, int]) -> float:
    """Percent change of the mean period total, first half against second half."""
    periods = sorted(totals)
    if len(periods) < 2:
        return 0.0
    middle = len(periods) // 2
    first = _mean([totals[p] for p in periods[:middle]])
    second = _mean([totals[p] for p in periods[middle:]])
    return (second - first) / first * PERCENT if first > 0 else 0.0


def peak_periods(totals: dict[str, int]) -> list[str]:
    """Periods whose total exceeds 1.5 times the mean period total."""
    if not totals:
        return []
    threshold = _mean(list(totals.values())) * PEAK_PERIOD_FACTOR
    return sorted(period for period, total in totals.items() if total > threshold)


def build_gaps(
    unanswered: Sequence[UnansweredQuestion],
    *,
    min_occurrences: int,
    include_subcategories: bool = True,
) -> list[KnowledgeGap]:
    """Group unanswered questions by category into gaps, most severe first.

    Args:
        unanswered: Unanswered questions, in discovery order.
        min_occurrences: Categories with fewer questions are dropped.
        include_subcategories: Break each gap down by subcategory.

    Returns:
        list[KnowledgeGap]: Gaps sorted by severity, descending.
    """
    by_category: dict[str, list[UnansweredQuestion]] = defaultdict(list)
    daily: dict[str, Counter] = defaultdict(Counter)
    for question in unanswered:
        by_category[question.category].append(question)
        daily[period_key(question.timestamp, TrendGranularity.DAILY)][question.category] += 1

    gaps: list[KnowledgeGap] = []
    for category, questions in by_category.items():
        frequency = len(questions)
        if frequency < min_occurrences:
            continue
        average_confidence = _mean([q.confidence for q in questions])
        subcategories = (
            [
                SubcategoryCount(subcategory=name, count=count)
                for name, count in Counter(subcategorize(q.question) for q in questions).most_common()
            ]
            if include_subcategories
            else []
        )
        gaps.append(
            KnowledgeGap(
                category=category,
                frequency=frequency,
                average_confidence=average_confidence,
                severity=gap_severity(frequency, average_confidence),
                sample_questions=[q.question for q in questions[:MAX_SAMPLE_QUESTIONS]],
                subcategories=subcategories,
                trends=[
                    TrendPoint(date=date, count=daily[date][category]) for date in sorted(daily)
                ],
                recommended_actions=recommended_actions(category, frequency, average_confidence),
            )
        )
    gaps.sort(key=lambda g: g.severity, reverse=True)
    return gaps


def summarize_gaps(gaps: Sequence[KnowledgeGap]) -> GapSummary:
    return GapSummary(
        critical_gaps=sum(1 for g in gaps if g.severity >= CRITICAL_SEVERITY),
        moderate_gaps=sum(1 for g in gaps if MODERATE_SEVERITY <= g.severity < CRITICAL_SEVERITY),
        minor_gaps=sum(1 for g in gaps if g.severity < MODERATE_SEVERITY),
        top_categories=[g.category for g in gaps[:SUMMARY_TOP_CATEGORIES]],
    )


def prioritize_improvement_opportunities(
    gaps: Sequence[KnowledgeGap], *, max_opportunities: int = DEFAULT_MAX_OPPORTUNITIES
) -> list[ImprovementOpportunity]:
    """Rank gaps for content work by frequency, severity and trend.

    ``priority = 0.4 * min(frequency / 50, 1) + 0.4 * severity + 0.2 * trend_score``

    Args:
        gaps: Knowledge gaps to rank.
        max_opportunities: Maximum number of opportunities returned.

    Returns:
        list[ImprovementOpportunity]: Highest priority first.
    """
    opportunities: list[ImprovementOpportunity] = []
    for gap in gaps:
        trend = trend_score(gap.trends)
        priority = (
            min(gap.frequency / PRIORITY_FREQUENCY_CAP, 1.0) * PRIORITY_FREQUENCY_WEIGHT
            + gap.severity * PRIORITY_SEVERITY_WEIGHT
            + trend * PRIORITY_TREND_WEIGHT
        )
        effort = effort_level(gap.frequency)
        impact = impact_potential(gap.frequency, gap.severity)
        slug = re.sub(r"\s+", "-", gap.category).lower()
        opportunities.append(
            ImprovementOpportunity(
                id=f"gap-{slug}",
                category=gap.category,
                description=f"Address knowledge gap in {gap.category}",
                priority_score=priority,
                frequency=gap.frequency,
                severity=gap.severity,
                trend_score=trend,
                effort_level=effort,
                impact_potential=impact,
                recommended_actions=gap.recommended_actions,
                sample_questions=gap.sample_questions,
                estimated_impact=EstimatedImpact(
                    questions_addressed=gap.frequency,
                    user_satisfaction_improvement=impact * SATISFACTION_IMPROVEMENT_FACTOR,
                    confidence_score_improvement=(1 - gap.average_confidence)
                    * CONFIDENCE_IMPROVEMENT_FACTOR,
                ),
                timeline=IMPLEMENTATION_TIMELINES[effort],
                resources=required_resources(gap.frequency, gap.severity),
            )
        )
    opportunities.sort(key=lambda o: o.priority_score, reverse=True)
    return opportunities[:max_opportunities]


def category_trend(
    category: str,
    periods: Sequence[str],
    series: dict[str, list[UnansweredQuestion]],
    *,
    include_seasonality: bool = True,
) -> CategoryTrend:
    """Trend of one category over every period, with zero-filled gaps."""
    points = [
        TrendDataPoint(
            period=period,
            count=len(series.get(period, [])),
            average_confidence=_mean([q.confidence for q in series.get(period, [])]),
        )
        for period in periods
    ]
    for previous, current in zip(points, points[1:]):
        if previous.count > 0:
            current.change = (current.count - previous.count) / previous.count * PERCENT

    counts = [p.count for p in points]
    average_change = _mean([p.change for p in points[1:]])
    return CategoryTrend(
        category=category,
        total_count=sum(counts),
        average_change=average_change,
        is_increasing=average_change > INCREASING_CHANGE_PCT,
        is_volatile=volatility(counts) > VOLATILITY_THRESHOLD,
        trend_data=points,
        seasonality=detect_seasonality(points) if include_seasonality else None,
        forecast=linear_forecast(counts),
    )


def build_trends(
    unanswered: Sequence[UnansweredQuestion],
    *,
    granularity: TrendGranularity,
    top_categories: int,
    include_seasonality: bool = True,
) -> tuple[list[CategoryTrend], OverallTrend]:
    """Per-category trends for the most frequent categories and the overall direction."""
    by_period: dict[str, dict[str, list[UnansweredQuestion]]] = defaultdict(
        lambda: defaultdict(list)
    )
    for question in unanswered:
        by_period[period_key(question.timestamp, granularity)][question.category].append(question)

    periods = sorted(by_period)
    frequency = Counter(q.category for q in unanswered)
    trends = [
        category_trend(
            category,
            periods,
            {period: by_period[period].get(category, []) for period in periods},
            include_seasonality=include_seasonality,
        )
        for category, _ in frequency.most_common(top_categories)
    ]

    totals = {
        period: sum(len(qs) for qs in categories.values())
        for period, categories in by_period.items()
    }
    overall = OverallTrend(
        total_change=overall_change(totals),
        peak_periods=peak_periods(totals),
        improving_categories=[
            t.category
            for t in trends
            if not t.is_increasing and t.average_change < IMPROVING_CHANGE_PCT
        ],
        worsening_categories=[
            t.category for t in trends if t.is_increasing and t.average_change > WORSENING_CHANGE_PCT
        ],
    )
    return trends, overall


class KnowledgeGapAnalyzer:
    """Turns unanswered questions into knowledge gaps, priorities and trends.

    Every call re-reads the record source; nothing is retained between calls.

    Attributes:
        questions: Finds unanswered questions in range.
        config: Thresholds; ``min_occurrences`` and ``confidence_threshold`` are the defaults.
    """

    def __init__(
        self,
        *,
        adapter: RecordAdapter,
        filter_engine: FilterEngine | None = None,
        config: AnalyticsConfig | None = None,
    ):
        self.config = config or AnalyticsConfig()
        self.questions = QuestionAnalyzer(
            adapter=adapter, filter_engine=filter_engine, config=self.config
        )

    async def analyze_knowledge_gaps(
        self,
        *,
        start: datetime,
        end: datetime,
        min_occurrences: int | None = None,
        include_subcategories: bool = True,
        confidence_threshold: float | None = None,
        language: str | None = None,
    ) -> KnowledgeGapAnalysis:
        """Analyze unanswered questions by category over a date range.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            min_occurrences: Minimum unanswered questions for a category to count as a gap.
            include_subcategories: Break gaps down by subcategory.
            confidence_threshold: Reply confidence below which a question is unanswered.
            language: Restrict to one conversation language.

        Returns:
            KnowledgeGapAnalysis: Gaps sorted by severity plus a severity summary.
        """
        unanswered = await self.questions.identify_unanswered(
            start=start,
            end=end,
            confidence_threshold=confidence_threshold,
            language=language,
        )
        gaps = build_gaps(
            unanswered,
            min_occurrences=(
                self.config.min_occurrences if min_occurrences is None else min_occurrences
            ),
            include_subcategories=include_subcategories,
        )
        logger.info(LogMessage.GAPS_FOUND.format(len(gaps), len(unanswered)))

        return KnowledgeGapAnalysis(
            analysis_date=datetime.now(timezone.utc),
            start_date=start,
            end_date=end,
            total_unanswered_questions=len(unanswered),
            knowledge_gaps=gaps,
            summary=summarize_gaps(gaps),
        )

    async def improvement_opportunities(
        self,
        *,
        start: datetime,
        end: datetime,
        max_opportunities: int = DEFAULT_MAX_OPPORTUNITIES,
        language: str | None = None,
    ) -> list[ImprovementOpportunity]:
        """Analyze gaps in range and rank them as improvement opportunities."""
        analysis = await self.analyze_knowledge_gaps(start=start, end=end, language=language)
        return prioritize_improvement_opportunities(
            analysis.knowledge_gaps, max_opportunities=max_opportunities
        )

    async def analyze_question_trends(
        self,
        *,
        start: datetime,
        end: datetime,
        granularity: TrendGranularity = TrendGranularity.DAILY,
        top_categories: int = DEFAULT_TOP_CATEGORIES,
        include_seasonality: bool = True,
        language: str | None = None,
    ) -> QuestionTrends:
        """Build time series of unanswered questions for the most frequent categories.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            granularity: ``daily``, ``weekly`` (Sunday start) or ``monthly`` buckets.
            top_categories: Number of categories, by total frequency, to trend.
            include_seasonality: Compute the monthly seasonality pattern.
            language: Restrict to one conversation language.

        Returns:
            QuestionTrends: Category trends plus the overall direction.
        """
        unanswered = await self.questions.identify_unanswered(
            start=start, end=end, language=language
        )
        trends, overall = build_trends(
            unanswered,
            granularity=granularity,
            top_categories=top_categories,
            include_seasonality=include_seasonality,
        )
        logger.info(LogMessage.TRENDS_BUILT.format(len(trends), granularity))

        return QuestionTrends(
            analysis_date=datetime.now(timezone.utc),
            start_date=start,
            end_date=end,
            granularity=granularity,
            total_questions=len(unanswered),
            category_trends=trends,
            overall_trend=overall,
        )
