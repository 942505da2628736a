"""Weighted fusion of the per-file signals into ranked query results."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .classifier import UNRELATED, Classification
from .config_manager import EngineConfig
from .models import QueryResult, RelevantFunction, StructuralMatch

logger = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def relevant_functions(matches: Iterable[StructuralMatch], cutoff: float) -> List[RelevantFunction]:
    """Unique function matches at or above *cutoff*, strongest first (ties by name)."""
    best: Dict[str, StructuralMatch] = {}
    for match in matches:
        current = best.get(match.name)
        if current is None or match.relevance > current.relevance:
            best[match.name] = match
    kept = [m for m in best.values() if m.relevance >= cutoff]
    kept.sort(key=lambda m: (-m.relevance, m.name))
    return [RelevantFunction(name=m.name, relevance=_clamp(m.relevance), reason=m.reason or None) for m in kept]


class ScoreCombiner:
    """``final = w1*ast + w2*llm + w3*syntax + w4*flan``, with the classifier
    term dropped for files classified ``unrelated``."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()

    def combine(
        self,
        path: str,
        ast_score: float,
        llm_score: float,
        syntax_score: float,
        classification: Classification,
        function_matches: Iterable[StructuralMatch] = (),
        matches: Iterable[str] = (),
    ) -> QueryResult:
        cfg = self.config
        ast_score = _clamp(ast_score)
        llm_score = _clamp(llm_score)
        syntax_score = _clamp(syntax_score)
        flan_score = _clamp(classification.flan_score)

        final = cfg.ast_weight * ast_score + cfg.llm_weight * llm_score + cfg.syntax_weight * syntax_score
        if classification.classification != UNRELATED:
            final += cfg.flan_weight * flan_score
        final = _clamp(final)

        agreeing = sum(1 for s in (ast_score, llm_score, syntax_score) if s > cfg.agreement_threshold)
        return QueryResult(
            file=path,
            final_score=final,
            score_percentage=int(round(final * 100)),
            ast_score=ast_score,
            llm_score=llm_score,
            syntax_score=syntax_score,
            flan_score=flan_score,
            has_synergy=agreeing >= 2,
            matches=list(matches),
            classification=classification.classification,
            workflow_position=classification.workflow_position,
            relevant_functions=relevant_functions(function_matches, cfg.function_relevance_cutoff),
        )

    def rank(self, results: Iterable[QueryResult], limit: Optional[int] = None) -> List[QueryResult]:
        """Sort by descending final score, ties by ascending path, trimmed to *limit*."""
        limit = self.config.max_results if limit is None else limit
        ranked = sorted(results, key=lambda r: (-r.final_score, r.file))
        return ranked[:limit] if limit > 0 else ranked
