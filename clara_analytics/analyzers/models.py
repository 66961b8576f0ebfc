"""Result models for question, knowledge-gap and FAQ analysis."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from ..models import format_timestamp


@dataclass
class UnansweredQuestion:
    """A user question the bot did not answer satisfactorily.

    Attributes:
        id: ``{conversation_id}-{epoch_ms}`` of the question message.
        question: Question text as typed.
        normalized_question: Lower-cased, punctuation-free form.
        category: Keyword category, ``general`` when nothing matched.
        timestamp: When the question was asked.
        conversation_id: Owning conversation.
        user_id: Conversation user, if known.
        confidence: Confidence of the bot reply, 0 when there was none.
        response_content: The bot reply, if any.
        language: Conversation language.
        reason: Which rule flagged the question.
    """

    id: str
    question: str
    normalized_question: str
    category: str
    timestamp: datetime
    conversation_id: str
    user_id: str | None
    confidence: float
    response_content: str | None
    language: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = format_timestamp(self.timestamp)
        return data


@dataclass
class SubcategoryCount:
    subcategory: str
    count: int


@dataclass
class TrendPoint:
    date: str
    count: int


@dataclass
class KnowledgeGap:
    """Unanswered questions of one category, scored by severity."""

    category: str
    frequency: int
    average_confidence: float
    severity: float
    sample_questions: list[str] = field(default_factory=list)
    subcategories: list[SubcategoryCount] = field(default_factory=list)
    trends: list[TrendPoint] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)


@dataclass
class GapSummary:
    critical_gaps: int
    moderate_gaps: int
    minor_gaps: int
    top_categories: list[str]


@dataclass
class KnowledgeGapAnalysis:
    """Knowledge gaps over a date range, most severe first."""

    analysis_date: datetime
    start_date: datetime
    end_date: datetime
    total_unanswered_questions: int
    knowledge_gaps: list[KnowledgeGap]
    summary: GapSummary

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("analysis_date", "start_date", "end_date"):
            data[key] = format_timestamp(getattr(self, key))
        return data


@dataclass
class EstimatedImpact:
    questions_addressed: int
    user_satisfaction_improvement: float
    confidence_score_improvement: float


@dataclass
class ImprovementOpportunity:
    """A knowledge gap ranked for content work.

    Attributes:
        id: ``gap-{category-slug}``.
        priority_score: Weighted blend of frequency, severity and trend.
        trend_score: Relative change of the recent vs early trend window; positive is worsening.
        effort_level: ``low``, ``medium`` or ``high`` by frequency.
        impact_potential: ``min(frequency * severity / 20, 1)``.
    """

    id: str
    category: str
    description: str
    priority_score: float
    frequency: int
    severity: float
    trend_score: float
    effort_level: str
    impact_potential: float
    recommended_actions: list[str]
    sample_questions: list[str]
    estimated_impact: EstimatedImpact
    timeline: str
    resources: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TrendDataPoint:
    period: str
    count: int
    average_confidence: float
    change: float = 0.0


@dataclass
class ForecastPoint:
    period: str
    predicted_count: int


@dataclass
class Forecast:
    method: str
    confidence: str
    forecast: list[ForecastPoint]


@dataclass
class Seasonality:
    """Monthly pattern as ``(month, average count)`` pairs, months 1-12."""

    detected: bool
    pattern: list[tuple[int, float]]


@dataclass
class CategoryTrend:
    """Time series of unanswered questions for one category.

    ``forecast`` is None when the series has fewer than two points and
    ``seasonality`` is None when it has fewer than twelve.
    """

    category: str
    total_count: int
    average_change: float
    is_increasing: bool
    is_volatile: bool
    trend_data: list[TrendDataPoint]
    seasonality: Seasonality | None
    forecast: Forecast | None


@dataclass
class OverallTrend:
    total_change: float
    peak_periods: list[str]
    improving_categories: list[str]
    worsening_categories: list[str]


@dataclass
class QuestionTrends:
    """Per-category trends plus the overall direction across categories."""

    analysis_date: datetime
    start_date: datetime
    end_date: datetime
    granularity: str
    total_questions: int
    category_trends: list[CategoryTrend]
    overall_trend: OverallTrend

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("analysis_date", "start_date", "end_date"):
            data[key] = format_timestamp(getattr(self, key))
        return data


@dataclass
class ExtractedQuestion:
    question: str
    frequency: int
    average_confidence: float
    category: str


@dataclass
class FaqEntry:
    """A frequently asked question; ``sources`` counts how often each source saw it."""

    question: str
    count: int
    category: str
    average_confidence: float
    sources: dict[str, int] = field(default_factory=dict)


@dataclass
class FaqAnalysis:
    questions: list[FaqEntry]
    total_questions_analyzed: int
    categories: dict[str, int]
    extracted_questions: list[ExtractedQuestion] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RankedQuestion:
    """A question with its ranking factors; ``rank`` is 1-based."""

    question: str
    rank: int
    score: float
    frequency: int
    average_confidence: float
    category: str
    frequency_score: float
    confidence_score: float
    impact_score: float
    combined_score: float
    sources: dict[str, int] = field(default_factory=dict)


@dataclass
class QuestionRanking:
    method: str
    questions: list[RankedQuestion]
    total_questions: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CategoryGap:
    category: str
    total_questions: int
    unanswered_questions: int
    gap_percentage: float


@dataclass
class ContentOpportunity:
    category: str
    gap_percentage: float
    priority: str


@dataclass
class UnansweredSummary:
    """Per-record unanswered totals, escalation rate and content gaps."""

    total_questions: int
    answered_questions: int
    unanswered_questions: int
    escalation_rate: float
    category_gaps: list[CategoryGap]
    improvement_opportunities: list[ContentOpportunity]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
