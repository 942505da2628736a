"""Structural signal: query tokens matched against parsed symbol names."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from .models import ParsedFile, StructuralMatch, Symbol

logger = logging.getLogger(__name__)

SATURATION = 1.2
KIND_WEIGHTS = {"class": 1.0, "function": 0.8, "method": 0.8, "export": 0.5}
PATH_MATCH_WEIGHT = 0.6
IMPORT_MATCH_WEIGHT = 0.4
MULTI_TOKEN_BOOST = 0.25

_SPLIT_RE = re.compile(r"[^a-z0-9]+")
# checked in order; each keyword must start a path segment
_FILE_TYPE_MULTIPLIERS: Tuple[Tuple[re.Pattern, float], ...] = (
    (re.compile(r"(?:^|/)model"), 1.2),
    (re.compile(r"(?:^|/)(?:controller|service|component)"), 1.1),
    (re.compile(r"(?:^|/)job"), 1.0),
    (re.compile(r"(?:^|/)migrat"), 0.7),
    (re.compile(r"(?:^|/)config"), 0.6),
    (re.compile(r"(?:^|/)(?:spec|test|__tests__)"), 0.8),
)


def query_tokens(query: str) -> List[str]:
    """Lowercased alphanumeric tokens of *query*, 2+ characters, first-seen order."""
    seen: List[str] = []
    for token in _SPLIT_RE.split(query.lower()):
        if len(token) >= 2 and token not in seen:
            seen.append(token)
    return seen


def compact(text: str) -> str:
    return _SPLIT_RE.sub("", text.lower())


def file_type_multiplier(path: str) -> float:
    lowered = path.lower().replace("\\", "/")
    for pattern, multiplier in _FILE_TYPE_MULTIPLIERS:
        if pattern.search(lowered):
            return multiplier
    return 1.0


@dataclass
class StructuralResult:
    score: float = 0.0
    matches: List[StructuralMatch] = field(default_factory=list)
    function_matches: List[StructuralMatch] = field(default_factory=list)
    descriptions: List[str] = field(default_factory=list)
    matched_tokens: Set[str] = field(default_factory=set)


class StructuralScorer:
    """Scores a file by how well its functions, classes, exports, path and
    imports name the query.

    A symbol whose name equals a query token, or whose separator-free name
    equals the separator-free query, is an exact match (1.0); a query token
    inside the name is a partial match (0.5). Contributions are weighted by
    symbol kind, boosted when several distinct tokens matched, scaled by a
    path-based file-type multiplier and saturated into ``[0, 1]``.
    """

    def __init__(self, saturation: float = SATURATION) -> None:
        self.saturation = saturation

    def score(self, query: str, parsed: Optional[ParsedFile], path: str = "") -> StructuralResult:
        tokens = query_tokens(query)
        result = StructuralResult()
        if not tokens:
            return result
        compact_query = compact(query)
        parsed = parsed or ParsedFile.empty()
        total = 0.0

        groups: List[Tuple[str, List[Symbol]]] = [
            ("class", parsed.classes),
            ("function", parsed.functions),
            ("export", parsed.exports),
        ]
        for group, symbols in groups:
            for symbol in symbols:
                relevance, hit = _match_name(symbol.name, tokens, compact_query)
                if not relevance:
                    continue
                kind = symbol.kind if group == "function" and symbol.kind else group
                weight = KIND_WEIGHTS.get(kind, KIND_WEIGHTS["function"])
                total += relevance * weight
                result.matched_tokens.update(hit)
                reason = "exact name match" if relevance >= 1.0 else "partial match on " + ", ".join(sorted(hit))
                match = StructuralMatch(name=symbol.name, relevance=relevance, reason=reason)
                result.matches.append(match)
                if group == "function" or symbol.kind == "function":
                    result.function_matches.append(match)
                result.descriptions.append(f"{kind} {symbol.name} ({reason})")

        if path:
            lowered_path = path.lower()
            for token in tokens:
                if token in lowered_path:
                    total += PATH_MATCH_WEIGHT
                    result.matched_tokens.add(token)
                    result.descriptions.append(f"path contains '{token}'")

        import_names = [imp.name.lower() for imp in parsed.imports]
        for token in tokens:
            hit_import = next((name for name in import_names if token in name), None)
            if hit_import is not None:
                total += IMPORT_MATCH_WEIGHT
                result.matched_tokens.add(token)
                result.descriptions.append(f"imports '{hit_import}'")

        if total <= 0:
            return result

        if len(result.matched_tokens) > 1:
            total *= 1 + MULTI_TOKEN_BOOST * (len(result.matched_tokens) - 1)
        total *= file_type_multiplier(path)
        result.score = min(1.0, total / self.saturation)
        logger.debug("Structural score %.3f for %s (%d symbol matches)", result.score, path, len(result.matches))
        return result


def _match_name(name: str, tokens: List[str], compact_query: str) -> Tuple[float, Set[str]]:
    lowered = name.lower()
    if lowered in tokens:
        return 1.0, {lowered}
    if compact_query and compact(name) == compact_query:
        return 1.0, set(tokens)
    hit = {token for token in tokens if token in lowered}
    if hit:
        return 0.5, hit
    return 0.0, set()
