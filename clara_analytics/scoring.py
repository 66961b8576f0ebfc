"""Relevance scoring with exact and edit-distance token matching."""

import math
import re
import string
from collections.abc import Sequence

from .constants import (
    COVERAGE_WEIGHT,
    DENSITY_WEIGHT,
    EXCERPT_ELLIPSIS,
    EXCERPT_MAX_LENGTH,
    FUZZY_DISTANCE_RATIO,
    FUZZY_MATCH_WEIGHT,
)


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insertions, deletions, substitutions) between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def tokenize(text: str, *, case_sensitive: bool = False) -> list[str]:
    """Split on whitespace, case-folding unless ``case_sensitive``."""
    return (text if case_sensitive else text.lower()).split()


def fuzzy_tolerance(token: str) -> int:
    """Largest edit distance at which a word still matches ``token``."""
    return max(1, math.floor(FUZZY_DISTANCE_RATIO * len(token)))


def truncate(content: str, max_length: int = EXCERPT_MAX_LENGTH) -> str:
    if len(content) <= max_length:
        return content
    return content[: max_length - len(EXCERPT_ELLIPSIS)] + EXCERPT_ELLIPSIS


def _bare(word: str) -> str:
    return word.strip(string.punctuation + "¿¡")


class RelevanceScorer:
    """Scores how well a block of text matches a tokenized query.

    The score is ``0.7 * coverage + 0.3 * density`` capped at 1, where coverage
    is the share of query tokens found at least once and density is weighted
    match occurrences per content token. Fuzzy matches weigh 0.8.
    """

    def _normalize(
        self, content: str, query_tokens: Sequence[str], case_sensitive: bool
    ) -> tuple[str, list[str]]:
        if case_sensitive:
            return content, list(query_tokens)
        return content.lower(), [token.lower() for token in query_tokens]

    def fuzzy_matches(self, words: Sequence[str], token: str) -> list[str]:
        """Words within the token's edit-distance tolerance."""
        tolerance = fuzzy_tolerance(token)
        return [word for word in words if levenshtein(_bare(word), token) <= tolerance]

    def score(
        self,
        content: str,
        query_tokens: Sequence[str],
        *,
        fuzzy: bool = False,
        case_sensitive: bool = False,
    ) -> float:
        """Relevance of ``content`` to ``query_tokens``.

        Args:
            content: Text to score.
            query_tokens: Whitespace-split query terms.
            fuzzy: Count words within edit-distance tolerance as matches.
            case_sensitive: Disable case-folding.

        Returns:
            float: Score in [0, 1]; 0 for empty content or an empty query.
        """
        tokens = [token for token in query_tokens if token]
        if not content or not tokens:
            return 0.0

        normalized, tokens = self._normalize(content, tokens, case_sensitive)
        words = normalized.split()
        if not words:
            return 0.0

        matched_tokens = 0
        weighted_hits = 0.0
        for token in tokens:
            if fuzzy:
                hits = len(self.fuzzy_matches(words, token)) * FUZZY_MATCH_WEIGHT
            else:
                hits = normalized.count(token)
            if hits > 0:
                matched_tokens += 1
                weighted_hits += hits

        coverage = matched_tokens / len(tokens)
        density = weighted_hits / len(words)
        return min(1.0, coverage * COVERAGE_WEIGHT + density * DENSITY_WEIGHT)

    def extract_highlights(
        self,
        content: str,
        query_tokens: Sequence[str],
        *,
        fuzzy: bool = False,
        case_sensitive: bool = False,
    ) -> list[str]:
        """Distinct substrings of ``content`` that matched, in original casing."""
        highlights: list[str] = []
        flags = 0 if case_sensitive else re.IGNORECASE
        for token in query_tokens:
            if not token:
                continue
            pattern = re.compile(rf"\b{re.escape(token)}\b", flags)
            highlights.extend(match.group(0) for match in pattern.finditer(content))

        if fuzzy:
            original_words = content.split()
            _, tokens = self._normalize(content, query_tokens, case_sensitive)
            for token in tokens:
                if not token:
                    continue
                tolerance = fuzzy_tolerance(token)
                for word in original_words:
                    bare = _bare(word)
                    candidate = bare if case_sensitive else bare.lower()
                    if bare and levenshtein(candidate, token) <= tolerance:
                        highlights.append(bare)

        return list(dict.fromkeys(highlights))
