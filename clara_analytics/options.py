"""Validated option models for filter, search, query and export calls.

Options are validated on construction, so a malformed request fails with a
``pydantic.ValidationError`` before any record is read.
"""

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel, to_snake

from .constants import (
    DEFAULT_CSV_DELIMITER,
    DEFAULT_MAX_SEARCH_RESULTS,
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
    MIN_PAGE_LIMIT,
    Dimension,
    EscalationPriority,
    EscalationStatus,
    ExportDataType,
    ExportFormat,
    Language,
    MetricName,
    Outcome,
    SearchScope,
    SortDirection,
    SortField,
    TimeGranularity,
)
from .models import parse_timestamp


class _Options(BaseModel):
    """Accepts snake_case or camelCase keys and rejects unknown ones."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class FilterOptions(_Options):
    """Predicates, ordering and paging for a conversation view.

    Every supplied predicate must hold (logical AND); absent ones impose no
    constraint.
    """

    start_date: datetime | None = Field(default=None, description="Inclusive range start")
    end_date: datetime | None = Field(default=None, description="Inclusive range end")
    language: Language | None = None
    outcome: Outcome | None = None
    confidence_threshold: float | None = Field(
        default=None, ge=0, le=1, description="Minimum average confidence score"
    )
    message_count_min: int | None = Field(default=None, ge=0)
    message_count_max: int | None = Field(default=None, ge=0)
    user_id: str | None = None
    user_zip_code: str | None = None
    escalation_priority: EscalationPriority | None = None
    escalation_status: EscalationStatus | None = None
    escalation_reason: str | None = Field(
        default=None, description="Case-insensitive substring of the escalation reason"
    )
    question_category: str | None = Field(
        default=None, description="Applies to question and message scoping only"
    )
    is_answered: bool | None = Field(
        default=None, description="Applies to question scoping only"
    )
    sort_by: SortField | None = None
    sort_order: SortDirection = SortDirection.ASC
    limit: int = Field(default=DEFAULT_PAGE_LIMIT, ge=MIN_PAGE_LIMIT, le=MAX_PAGE_LIMIT)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date", mode="after")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return parse_timestamp(value)

    @model_validator(mode="after")
    def _check_ranges(self) -> "FilterOptions":
        if (
            self.message_count_min is not None
            and self.message_count_max is not None
            and self.message_count_min > self.message_count_max
        ):
            raise ValueError("message_count_min must not exceed message_count_max")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    def serialized(self) -> str:
        """Canonical JSON form used for fingerprinting."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def active_predicates(self) -> int:
        """Number of record predicates that will be evaluated."""
        paging = {"sort_by", "sort_order", "limit", "offset", "start_date", "end_date"}
        return sum(
            1
            for name, value in self
            if name not in paging and value is not None
        )


class SearchOptions(_Options):
    """A full-text query over one or more record collections."""

    query: str = Field(min_length=1)
    search_in: list[SearchScope] = Field(min_length=1)
    filters: FilterOptions | None = None
    fuzzy_match: bool = False
    case_sensitive: bool = False
    max_results: int = Field(default=DEFAULT_MAX_SEARCH_RESULTS, ge=1)
    include_highlights: bool = True
    min_relevance_score: float | None = Field(default=None, ge=0, le=1)

    @field_validator("query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must contain at least one term")
        return value


class AnalyticsQuery(_Options):
    """Group-by query over filtered conversations."""

    query_id: str = Field(default_factory=lambda: f"query_{uuid4().hex[:12]}")
    query_name: str | None = None
    filters: FilterOptions = Field(default_factory=FilterOptions)
    dimensions: list[str] = Field(default_factory=list)
    metrics: list[str] = Field(default_factory=lambda: [MetricName.COUNT.value], min_length=1)
    time_granularity: TimeGranularity | None = None
    sort_by: str | None = None
    sort_order: SortDirection = SortDirection.ASC
    limit: int | None = Field(default=None, ge=1)

    @field_validator("dimensions")
    @classmethod
    def _known_dimensions(cls, value: list[str]) -> list[str]:
        unknown = [d for d in value if to_snake(d) not in {x.value for x in Dimension}]
        if unknown:
            raise ValueError(f"unknown dimensions: {', '.join(unknown)}")
        return value


class ExportOptions(_Options):
    """What to export and how to serialize it."""

    format: ExportFormat
    data_types: list[ExportDataType] = Field(min_length=1)
    filters: FilterOptions | None = None
    search_options: SearchOptions | None = None
    include_headers: bool = True
    filename: str | None = None
    max_records: int | None = Field(default=None, ge=1)
    delimiter: str = Field(default=DEFAULT_CSV_DELIMITER, min_length=1, max_length=1)

    @field_validator("delimiter")
    @classmethod
    def _single_byte(cls, value: str) -> str:
        if value == '"' or len(value.encode("utf-8")) != 1:
            raise ValueError("delimiter must be a single ASCII character other than '\"'")
        return value
