"""Support chatbot analytics and search engine package."""

from .adapters import InMemoryRecordAdapter, RecordAdapter, RecordSourceError, StorageSink
from .aggregation import QueryEngine
from .analyzers import FaqAnalyzer, KnowledgeGapAnalyzer, QuestionAnalyzer
from .config import AnalyticsConfig
from .exporter import ExportFormatter
from .fetcher import RecordApiClient
from .filtering import FilterEngine
from .models import ConversationRecord, MessageRecord, QuestionRecord
from .options import AnalyticsQuery, ExportOptions, FilterOptions, SearchOptions
from .scoring import RelevanceScorer
from .search import SearchEngine
from .storage import JsonRecordStore, LocalExportSink

__all__ = [
    "AnalyticsConfig",
    "AnalyticsQuery",
    "ConversationRecord",
    "ExportFormatter",
    "ExportOptions",
    "FaqAnalyzer",
    "FilterEngine",
    "FilterOptions",
    "InMemoryRecordAdapter",
    "JsonRecordStore",
    "KnowledgeGapAnalyzer",
    "LocalExportSink",
    "MessageRecord",
    "QueryEngine",
    "QuestionAnalyzer",
    "QuestionRecord",
    "RecordAdapter",
    "RecordApiClient",
    "RecordSourceError",
    "RelevanceScorer",
    "SearchEngine",
    "SearchOptions",
    "StorageSink",
]
