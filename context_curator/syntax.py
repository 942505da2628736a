"""Syntax signal: literal and fuzzy matching of the query against raw text."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .structural import compact, query_tokens

logger = logging.getLogger(__name__)

EXACT_BASE = 0.6
EXACT_STEP = 0.1
FUZZY_SCORE = 0.25
PHRASE_BONUS = 0.2
MAX_SNIPPETS = 5
FUZZY_WINDOW_FACTOR = 3
FUZZY_MIN_TOKEN = 3
_SNIPPET_WIDTH = 120


@dataclass
class SyntaxResult:
    score: float = 0.0
    snippets: List[str] = field(default_factory=list)


def fuzzy_contains(token: str, text: str, window_factor: int = FUZZY_WINDOW_FACTOR) -> bool:
    """True when *token*'s characters occur in order inside *text* within a
    window of at most ``window_factor * len(token)`` characters."""
    if not token or len(text) < len(token):
        return False
    limit = window_factor * len(token)
    first = token[0]
    start = text.find(first)
    while start != -1:
        pos = start
        matched = 1
        end = min(len(text), start + limit)
        while matched < len(token):
            pos = text.find(token[matched], pos + 1, end)
            if pos == -1:
                break
            matched += 1
        if matched == len(token):
            return True
        start = text.find(first, start + 1)
    return False


class SyntaxScorer:
    """Scores literal token occurrences in a file's path and content.

    Exact case-insensitive hits score ``0.6`` plus ``0.1`` per additional
    occurrence (capped at 1); a token with no literal hit can still score
    ``0.25`` through an ordered-subsequence match on the path or one line.
    """

    def score(self, query: str, path: str, content: str) -> SyntaxResult:
        tokens = query_tokens(query)
        result = SyntaxResult()
        if not tokens:
            return result

        content_lower = content.lower()
        path_lower = path.lower()
        lines = content.split("\n")
        lowered_lines = content_lower.split("\n")

        total = 0.0
        for token in tokens:
            occurrences = content_lower.count(token) + path_lower.count(token)
            if occurrences:
                total += min(1.0, EXACT_BASE + EXACT_STEP * (occurrences - 1))
                self._add_snippet(result, _exact_snippet(token, path, path_lower, lines, lowered_lines))
                continue
            fuzzy = _fuzzy_snippet(token, path, path_lower, lines, lowered_lines)
            if fuzzy is not None:
                total += FUZZY_SCORE
                self._add_snippet(result, fuzzy)

        score = total / len(tokens)
        if len(tokens) > 1:
            phrase = " ".join(query.lower().split())
            if phrase in content_lower or phrase in path_lower:
                score += PHRASE_BONUS
        result.score = min(1.0, score)
        return result

    @staticmethod
    def _add_snippet(result: SyntaxResult, snippet: Optional[str]) -> None:
        if snippet and snippet not in result.snippets and len(result.snippets) < MAX_SNIPPETS:
            result.snippets.append(snippet)


def _line_snippet(number: int, line: str) -> str:
    return f"L{number}: {line.strip()[:_SNIPPET_WIDTH]}"


def _exact_snippet(
    token: str, path: str, path_lower: str, lines: List[str], lowered_lines: List[str]
) -> Optional[str]:
    for index, lowered in enumerate(lowered_lines):
        if token in lowered:
            return _line_snippet(index + 1, lines[index])
    if token in path_lower:
        return f"path: {path}"
    return None


def _fuzzy_snippet(
    token: str, path: str, path_lower: str, lines: List[str], lowered_lines: List[str]
) -> Optional[str]:
    if len(token) < FUZZY_MIN_TOKEN:
        return None
    if fuzzy_contains(token, compact(path_lower)):
        return f"path: {path}"
    for index, lowered in enumerate(lowered_lines):
        if fuzzy_contains(token, compact(lowered)):
            return _line_snippet(index + 1, lines[index])
    return None
