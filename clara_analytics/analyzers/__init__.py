"""Analyzers for unanswered questions, knowledge gaps and FAQs."""

from .faq import FaqAnalyzer
from .gaps import KnowledgeGapAnalyzer, prioritize_improvement_opportunities
from .questions import QuestionAnalyzer

__all__ = [
    "FaqAnalyzer",
    "KnowledgeGapAnalyzer",
    "QuestionAnalyzer",
    "prioritize_improvement_opportunities",
]
