"""Constants and enumerations for the chatbot analytics engine."""

from enum import StrEnum
from typing import Final


# Record store API
API_RECORDS_ENDPOINT: Final[str] = "/records/{kind}"
API_QUESTIONS_BY_CATEGORY_ENDPOINT: Final[str] = "/questions/category/{category}"
API_QUESTIONS_BY_LANGUAGE_ENDPOINT: Final[str] = "/questions/language/{language}"
API_CONVERSATION_MESSAGES_ENDPOINT: Final[str] = "/conversations/{conversation_id}/messages"
DEFAULT_API_CONCURRENCY: Final[int] = 10
DEFAULT_API_RATE_PER_SECOND: Final[int] = 10
DEFAULT_API_MAX_RETRIES: Final[int] = 3
DEFAULT_API_TIMEOUT_SECONDS: Final[float] = 30.0

# Filtering & pagination
DEFAULT_LOOKBACK_DAYS: Final[int] = 30
DEFAULT_PAGE_LIMIT: Final[int] = 50
MIN_PAGE_LIMIT: Final[int] = 1
MAX_PAGE_LIMIT: Final[int] = 100

# Search
DEFAULT_MAX_SEARCH_RESULTS: Final[int] = 100
MAX_SUGGESTIONS: Final[int] = 5
SUGGESTION_MAX_DISTANCE: Final[int] = 2
EXCERPT_MAX_LENGTH: Final[int] = 200
EXCERPT_ELLIPSIS: Final[str] = "..."
COVERAGE_WEIGHT: Final[float] = 0.7
DENSITY_WEIGHT: Final[float] = 0.3
FUZZY_MATCH_WEIGHT: Final[float] = 0.8
FUZZY_DISTANCE_RATIO: Final[float] = 0.2

# Aggregation
UNKNOWN_DIMENSION: Final[str] = "unknown"

# Knowledge gaps & trends
DEFAULT_CONFIDENCE_THRESHOLD: Final[float] = 0.7
DEFAULT_ESCALATION_CONFIDENCE_THRESHOLD: Final[float] = 0.5
DEFAULT_MIN_OCCURRENCES: Final[int] = 3
DEFAULT_MAX_OPPORTUNITIES: Final[int] = 20
DEFAULT_TOP_CATEGORIES: Final[int] = 10
REPLY_WINDOW_SECONDS: Final[int] = 60
SEVERITY_FREQUENCY_CAP: Final[int] = 20
PRIORITY_FREQUENCY_CAP: Final[int] = 50
TREND_WINDOW: Final[int] = 7
FORECAST_PERIODS: Final[int] = 3
SEASONALITY_MIN_POINTS: Final[int] = 12
SEASONALITY_MIN_MONTHS: Final[int] = 6
PEAK_PERIOD_FACTOR: Final[float] = 1.5
VOLATILITY_THRESHOLD: Final[float] = 0.3
INCREASING_CHANGE_PCT: Final[float] = 5.0
WORSENING_CHANGE_PCT: Final[float] = 10.0
MAX_SAMPLE_QUESTIONS: Final[int] = 5
CRITICAL_SEVERITY: Final[float] = 0.8
MODERATE_SEVERITY: Final[float] = 0.5
SUMMARY_TOP_CATEGORIES: Final[int] = 5
SEVERITY_FREQUENCY_WEIGHT: Final[float] = 0.6
SEVERITY_CONFIDENCE_WEIGHT: Final[float] = 0.4
PRIORITY_FREQUENCY_WEIGHT: Final[float] = 0.4
PRIORITY_SEVERITY_WEIGHT: Final[float] = 0.4
PRIORITY_TREND_WEIGHT: Final[float] = 0.2
LOW_EFFORT_MAX_FREQUENCY: Final[int] = 5
MEDIUM_EFFORT_MAX_FREQUENCY: Final[int] = 15
IMPACT_FREQUENCY_CAP: Final[int] = 20
SATISFACTION_IMPROVEMENT_FACTOR: Final[float] = 0.3
CONFIDENCE_IMPROVEMENT_FACTOR: Final[float] = 0.5
HIGH_FREQUENCY_GAP: Final[int] = 10
LOW_CONFIDENCE_GAP: Final[float] = 0.5
EXTRA_RESOURCES_FREQUENCY: Final[int] = 15
MEDICAL_REVIEW_SEVERITY: Final[float] = 0.7
FORECAST_MIN_POINTS: Final[int] = 2
FORECAST_METHOD: Final[str] = "linear-trend"
FORECAST_CONFIDENCE: Final[str] = "low"
IMPROVING_CHANGE_PCT: Final[float] = -5.0

# FAQ
DEFAULT_FAQ_LIMIT: Final[int] = 10
DEFAULT_RANKING_LIMIT: Final[int] = 20
EXTRACTED_QUESTION_MIN_LENGTH: Final[int] = 10
EXTRACTED_QUESTION_MAX_LENGTH: Final[int] = 200
EXTRACTED_QUESTION_MIN_FREQUENCY: Final[int] = 2
MAX_EXTRACTED_QUESTIONS: Final[int] = 50
QUESTIONS_PER_CATEGORY_LOOKUP: Final[int] = 20
QUESTIONS_PER_LANGUAGE_LOOKUP: Final[int] = 100
UNANSWERED_GAP_PCT_THRESHOLD: Final[float] = 20.0
HIGH_PRIORITY_GAP_PCT: Final[float] = 50.0
MEDIUM_PRIORITY_GAP_PCT: Final[float] = 35.0
RANKING_FREQUENCY_WEIGHT: Final[float] = 0.4
RANKING_CONFIDENCE_WEIGHT: Final[float] = 0.3
RANKING_IMPACT_WEIGHT: Final[float] = 0.3
RANKING_POOL_SIZE: Final[int] = 100
PERCENT: Final[int] = 100

# Export
EXPORT_TTL_HOURS: Final[int] = 24
EXPORT_FILENAME_PREFIX: Final[str] = "clara-export"
DEFAULT_EXPORT_DIR: Final[str] = "exports"
DEFAULT_CSV_DELIMITER: Final[str] = ","
FAILED_EXPORT_FILENAME: Final[str] = "export-failed"
XLSX_WORKSHEET: Final[str] = "export"

# JSON Serialization
JSON_INDENT: Final[int] = 2

# Empty Values
EMPTY_STRING: Final[str] = ""

# Numeric Constants
EXIT_CODE_ERROR: Final[int] = 1
MILLISECONDS: Final[int] = 1000

# Local data directory layout
DEFAULT_DATA_DIR: Final[str] = "data"
CONVERSATIONS_FILE: Final[str] = "conversations.json"
MESSAGES_FILE: Final[str] = "messages.json"
QUESTIONS_FILE: Final[str] = "questions.json"

# Environment variables
ENV_DATA_DIR: Final[str] = "CLARA_DATA_DIR"
ENV_API_URL: Final[str] = "CLARA_API_URL"
ENV_EXPORT_DIR: Final[str] = "CLARA_EXPORT_DIR"


class Language(StrEnum):
    """Supported conversation languages."""

    EN = "en"
    ES = "es"


class Outcome(StrEnum):
    """How a conversation ended."""

    RESOLVED = "resolved"
    ESCALATED = "escalated"
    ABANDONED = "abandoned"


class SenderRole(StrEnum):
    """Message sender roles."""

    USER = "user"
    BOT = "bot"


class EscalationPriority(StrEnum):
    """Escalation ticket priorities."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EscalationStatus(StrEnum):
    """Escalation ticket states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class RecordKind(StrEnum):
    """Record kinds served by the record store."""

    CONVERSATION = "conversation"
    MESSAGE = "message"
    QUESTION = "question"


class SearchScope(StrEnum):
    """Record collections a search can fan out to."""

    CONVERSATIONS = "conversations"
    QUESTIONS = "questions"
    MESSAGES = "messages"


class SortField(StrEnum):
    """Conversation sort keys."""

    TIMESTAMP = "timestamp"
    CONFIDENCE_SCORE = "confidenceScore"
    MESSAGE_COUNT = "messageCount"


class SortDirection(StrEnum):
    """Sort direction for filtered views and query results."""

    ASC = "asc"
    DESC = "desc"


class TimeGranularity(StrEnum):
    """Time buckets for aggregation rows."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class TrendGranularity(StrEnum):
    """Time buckets for knowledge-gap trend series."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class MetricName(StrEnum):
    """Built-in aggregation metrics."""

    COUNT = "count"
    AVERAGE_CONFIDENCE = "averageConfidence"
    TOTAL_MESSAGES = "totalMessages"
    ESCALATION_RATE = "escalationRate"


class Dimension(StrEnum):
    """Conversation attributes an analytics query can group by."""

    CONVERSATION_ID = "conversation_id"
    LANGUAGE = "language"
    OUTCOME = "outcome"
    MESSAGE_COUNT = "message_count"
    ESCALATION_REASON = "escalation_reason"
    ESCALATION_PRIORITY = "escalation_priority"
    ESCALATION_STATUS = "escalation_status"
    ESCALATION_TRIGGERED = "escalation_triggered"
    USER_ID = "user_id"
    USER_NAME = "user_name"
    USER_ZIP_CODE = "user_zip_code"


class ExportFormat(StrEnum):
    """Supported export serializations."""

    JSON = "json"
    CSV = "csv"
    XLSX = "xlsx"


class ExportDataType(StrEnum):
    """Collections that can be exported."""

    CONVERSATIONS = "conversations"
    MESSAGES = "messages"
    QUESTIONS = "questions"
    ESCALATIONS = "escalations"


class ExportStatus(StrEnum):
    """Export lifecycle states."""

    COMPLETED = "completed"
    FAILED = "failed"


class EffortLevel(StrEnum):
    """Estimated effort to close a knowledge gap."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RankingMethod(StrEnum):
    """FAQ question ranking strategies."""

    FREQUENCY = "frequency"
    CONFIDENCE = "confidence"
    IMPACT = "impact"
    COMBINED = "combined"


class QuestionSource(StrEnum):
    """Where an FAQ entry's occurrences were observed."""

    RECORDED = "recorded"
    EXTRACTED = "extracted"


class UnansweredReason(StrEnum):
    """Rule that flagged a question as unanswered."""

    NO_REPLY = "no_reply"
    LOW_CONFIDENCE = "low_confidence"
    GENERIC_RESPONSE = "generic_response"


class ContentPriority(StrEnum):
    """Priority of a category content opportunity."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RowSource(StrEnum):
    """Values of the ``data_type`` column on exported rows."""

    CONVERSATION = "conversation"
    MESSAGE = "message"
    QUESTION = "question"
    ESCALATION = "escalation"


GENERAL_CATEGORY: Final[str] = "general"

CATEGORY_KEYWORDS: Final[dict[str, dict[str, list[str]]]] = {
    Language.EN: {
        "diabetes": ["diabetes", "blood sugar", "glucose", "insulin", "diabetic"],
        "diet": ["food", "eat", "diet", "nutrition", "meal", "carb", "sugar"],
        "medication": ["medication", "medicine", "drug", "pill", "dose", "prescription"],
        "exercise": ["exercise", "workout", "physical", "activity", "gym", "walk"],
        "symptoms": ["symptom", "feel", "pain", "hurt", "sick", "tired"],
        "monitoring": ["test", "check", "monitor", "measure", "level"],
        "complications": ["complication", "problem", "issue", "concern", "risk"],
        "lifestyle": ["lifestyle", "daily", "routine", "habit", "change"],
    },
    Language.ES: {
        "diabetes": ["diabetes", "azúcar", "glucosa", "insulina", "diabético"],
        "diet": ["comida", "comer", "dieta", "nutrición", "carbohidrato"],
        "medication": ["medicamento", "medicina", "droga", "pastilla", "dosis"],
        "exercise": ["ejercicio", "entrenamiento", "físico", "actividad", "gimnasio"],
        "symptoms": ["síntoma", "sentir", "dolor", "doler", "enfermo", "cansado"],
        "monitoring": ["prueba", "verificar", "monitorear", "medir", "nivel"],
        "complications": ["complicación", "problema", "asunto", "preocupación", "riesgo"],
        "lifestyle": ["estilo de vida", "diario", "rutina", "hábito", "cambio"],
    },
}

# Ordered: first match wins.
SUBCATEGORY_KEYWORDS: Final[list[tuple[str, list[str]]]] = [
    ("type-1-diabetes", ["type 1", "tipo 1"]),
    ("type-2-diabetes", ["type 2", "tipo 2"]),
    ("gestational-diabetes", ["gestational", "gestacional"]),
    ("pediatric", ["child", "kid", "niño", "niña", "hijo"]),
    ("pregnancy", ["pregnancy", "pregnant", "embarazo", "embarazada"]),
    ("emergency", ["emergency", "urgent", "emergencia", "urgente"]),
]

INTERROGATIVE_WORDS: Final[dict[str, list[str]]] = {
    Language.EN: [
        "what", "how", "why", "when", "where", "who", "which", "can",
        "could", "would", "should", "is", "are", "do", "does", "did",
    ],
    Language.ES: [
        "qué", "que", "cómo", "como", "cuándo", "cuando", "dónde", "donde",
        "por qué", "quién", "quien", "cuál", "cual", "puedo", "podría",
        "debería", "es", "son",
    ],
}

REQUEST_PREFIXES: Final[dict[str, list[str]]] = {
    Language.EN: ["tell me", "explain", "help me", "show me"],
    Language.ES: ["dime", "explica", "ayúdame", "muéstrame"],
}

GENERIC_RESPONSE_PHRASES: Final[list[str]] = [
    "i don't know",
    "i'm not sure",
    "i can't help",
    "sorry, i don't understand",
    "please contact support",
    "i don't have information",
    "no lo sé",
    "no estoy seguro",
    "no puedo ayudar",
    "no tengo información",
]

SEARCH_VOCABULARY: Final[list[str]] = [
    "diabetes",
    "blood sugar",
    "insulin",
    "glucose",
    "type 1",
    "type 2",
    "medication",
    "diet",
    "exercise",
    "symptoms",
    "treatment",
    "management",
]

IMPLEMENTATION_TIMELINES: Final[dict[str, str]] = {
    EffortLevel.LOW: "1-2 weeks",
    EffortLevel.MEDIUM: "2-4 weeks",
    EffortLevel.HIGH: "1-2 months",
}

BASE_RESOURCES: Final[list[str]] = ["Content writer", "Subject matter expert"]
EXTRA_RESOURCES: Final[list[str]] = ["Technical writer", "QA reviewer"]
MEDICAL_REVIEW_RESOURCE: Final[str] = "Medical professional review"

BASE_GAP_ACTIONS: Final[list[str]] = [
    "Create comprehensive FAQ section for {}",
    "Enhance knowledge base content for {} topics",
    "Review and improve existing {} responses",
]
HIGH_FREQUENCY_GAP_ACTION: Final[str] = "Prioritize {} content creation due to high frequency"
LOW_CONFIDENCE_GAP_ACTION: Final[str] = (
    "Improve response confidence for {} through better training data"
)

QUESTION_CATEGORIES: Final[list[str]] = [
    "diabetes",
    "health",
    "medication",
    "diet",
    "exercise",
    GENERAL_CATEGORY,
]


class ApiParam(StrEnum):
    """Record store query parameters."""

    START = "start"
    END = "end"
    LIMIT = "limit"


class ApiResponseKey(StrEnum):
    """Keys in record store response payloads."""

    RECORDS = "records"


class LogMessage(StrEnum):
    """Log message templates."""

    FILTERING = "Filtering conversations with {} active predicates"
    FILTERED = "Filter {} matched {} of {} conversations in {} ms"
    BUCKET_FAILED = "Failed to load {} records for {}: {}"
    SEARCHING = "Searching {} for '{}'"
    SEARCH_KIND_FAILED = "Search over {} failed, continuing without it: {}"
    SEARCH_DONE = "Search for '{}' returned {} of {} hits in {} ms"
    QUERY_EXECUTING = "Executing query {} over {} dimensions and {} metrics"
    QUERY_DONE = "Query {} produced {} rows from {} records in {} ms"
    IDENTIFYING_UNANSWERED = "Identifying unanswered questions from {} to {}"
    UNANSWERED_FOUND = "Found {} unanswered questions in {} user messages"
    TRANSCRIPT_FAILED = "Failed to load messages for conversation {}: {}"
    GAPS_FOUND = "Identified {} knowledge gaps from {} unanswered questions"
    TRENDS_BUILT = "Built {} category trends at {} granularity"
    FAQ_LOOKUP_FAILED = "Failed to load questions for {}: {}"
    FAQ_MERGED = "Merged {} recorded and {} extracted questions into {} FAQ entries"
    EXPORTING = "Exporting {} as {}"
    EXPORT_DONE = "Exported {} records ({} bytes) to {}"
    EXPORT_TIMING = "Export {} took {} ms"
    ESCALATIONS_EXCLUDED = "Skipping escalations: outcome filter is {}"
    EXPORT_FAILED = "Export {} failed: {}"
    FETCHING_RECORDS = "Fetching {} records from {} to {}"
    LOADED_RECORDS = "Loaded {} {} records from {}"
    ERROR_OCCURRED = "Error occurred: {}"
    REQUESTING = "GET {} {}"
    REQUEST_FAILED = "Record store request {} failed: {}"
    SAVED_RECORDS = "Saved {} {} records to {}"
    STORED_EXPORT = "Stored export {} at {}"


class CliHelp(StrEnum):
    """CLI help messages."""

    APP = "Support chatbot analytics and search engine"
    DATA_DIR = "Directory containing conversations.json, messages.json and questions.json."
    API_URL = "Record store API base URL. When set, records are fetched over HTTP instead of the data directory."
    START = "Start of the date range (ISO 8601)."
    END = "End of the date range (ISO 8601)."
    LANGUAGE = "Restrict to one language (en or es)."
    LIMIT = "Maximum number of rows to return."
    CONFIDENCE = "Confidence below which a bot reply counts as unanswered."
    FUZZY = "Enable approximate (edit-distance) matching."
    GRANULARITY = "Trend granularity: daily, weekly or monthly."
    EXPORT_DIR = "Directory export files are written to."
    OFFSET = "Number of matching conversations to skip."
    SORT_BY = "Sort field: timestamp, confidenceScore or messageCount."
    SORT_ORDER = "Sort direction: asc or desc."
    OUTCOME = "Restrict to one outcome (resolved, escalated or abandoned)."
    MIN_MESSAGES = "Minimum message count."
    MAX_MESSAGES = "Maximum message count."
    SCOPE = "Collection to search; repeat for several (conversations, questions, messages)."
    MAX_RESULTS = "Maximum number of search results."
    DIMENSION = "Grouping dimension (a conversation attribute such as language, outcome or userZipCode); repeat for several."
    METRIC = "Metric to compute (count, averageConfidence, totalMessages, escalationRate); repeat for several."
    TIME_GRANULARITY = "Bucket rows by hour, day, week or month."
    QUERY_SORT_BY = "Metric or dimension to sort rows by."
    MIN_OCCURRENCES = "Minimum unanswered questions for a category to count as a gap."
    TOP = "Number of most frequent categories to trend."
    RANKING = "Ranking method: frequency, confidence, impact or combined."
    RANKING_QUERY = "Only rank questions relevant to this text."
    EXTRACT = "Also mine user messages for repeated questions and merge them with recorded ones."
    FORMAT = "Export format: json, csv or xlsx."
    DATA_TYPE = "Data type to export; repeat for several (conversations, messages, questions, escalations)."
    SEARCH_QUERY = "Export search results for this text instead of filtered records."
    MAX_RECORDS = "Truncate the export to this many rows."
    HEADERS = "Write a header row (csv and xlsx)."
    DELIMITER = "CSV field delimiter."
    FILENAME = "Export file name."
