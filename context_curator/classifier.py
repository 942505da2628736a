"""Architectural role of a file: a priority-ordered rule cascade."""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from .config import RELEVANCE_FLOOR
from .graph import DependencyGraph
from .models import ParsedFile

logger = logging.getLogger(__name__)

FIRE_THRESHOLD = 0.5
WORKFLOW_RATIO = 2

ENTRY_POINT = "entry-point"
CONFIG = "config"
HELPER = "helper"
CORE_LOGIC = "core-logic"
UNRELATED = "unrelated"
UNKNOWN = "unknown"

RULE_ORDER = (ENTRY_POINT, CONFIG, HELPER, CORE_LOGIC, UNRELATED)

ENTRY_NAMES = {
    "main", "index", "app", "server", "cli", "__main__", "manage", "run", "start",
    "bootstrap", "program", "wsgi", "asgi",
}
CONFIG_EXTENSIONS = {
    ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".env", ".properties", ".xml",
}
HELPER_DIRS = {"utils", "util", "helpers", "helper", "lib", "common", "shared"}

_MAIN_GUARD_RE = re.compile(r"""if\s+__name__\s*==\s*['"]__main__['"]""")
_CONFIG_NAME_RE = re.compile(r"(?:^|[._-])(?:config|configuration|settings|constants|env)(?:[._-]|$)")


@dataclass
class Classification:
    classification: str = UNKNOWN
    strength: float = 0.0
    flan_score: float = 0.0
    workflow_position: str = UNKNOWN
    strengths: Dict[str, float] = field(default_factory=dict)


def workflow_position(graph: Optional[DependencyGraph], path: str) -> str:
    """``upstream`` for files that mostly import, ``downstream`` for files
    that are mostly imported."""
    if graph is None:
        return UNKNOWN
    in_deg = graph.in_degree(path)
    out_deg = graph.out_degree(path)
    if out_deg >= 1 and out_deg >= WORKFLOW_RATIO * in_deg:
        return "upstream"
    if in_deg >= 1 and in_deg >= WORKFLOW_RATIO * out_deg:
        return "downstream"
    return UNKNOWN


class Classifier:
    """Evaluates every rule, then picks the first (in priority order) whose
    strength reaches 0.5. ``flan_score`` is the winner's margin over the
    strongest other rule.
    """

    def __init__(self, relevance_floor: float = RELEVANCE_FLOOR) -> None:
        self.relevance_floor = relevance_floor

    def classify(
        self,
        path: str,
        parsed: Optional[ParsedFile],
        graph: Optional[DependencyGraph] = None,
        ast_score: float = 0.0,
        syntax_score: float = 0.0,
        llm_score: float = 0.0,
        entry_point: Optional[str] = None,
        content: str = "",
    ) -> Classification:
        parsed = parsed or ParsedFile.empty()
        in_deg = graph.in_degree(path) if graph is not None else 0
        out_deg = graph.out_degree(path) if graph is not None else 0

        strengths = {
            ENTRY_POINT: self._entry_point(path, entry_point, content),
            CONFIG: self._config(path, parsed),
            HELPER: self._helper(path, parsed, in_deg, out_deg),
            CORE_LOGIC: self._core_logic(parsed, in_deg, out_deg),
            UNRELATED: self._unrelated(ast_score, syntax_score, llm_score),
        }

        result = Classification(strengths=strengths, workflow_position=workflow_position(graph, path))
        winner = next((name for name in RULE_ORDER if strengths[name] >= FIRE_THRESHOLD), None)
        if winner is None:
            return result
        runner_up = max((s for name, s in strengths.items() if name != winner), default=0.0)
        result.classification = winner
        result.strength = strengths[winner]
        result.flan_score = max(0.0, min(1.0, strengths[winner] - runner_up))
        logger.debug("Classified %s as %s (margin %.2f)", path, winner, result.flan_score)
        return result

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @staticmethod
    def _entry_point(path: str, entry_point: Optional[str], content: str) -> float:
        if entry_point and _same_path(path, entry_point):
            return 1.0
        stem = posixpath.splitext(posixpath.basename(path.replace("\\", "/")))[0].lower()
        if stem in ENTRY_NAMES:
            return 0.9
        if content and _MAIN_GUARD_RE.search(content):
            return 0.8
        return 0.0

    @staticmethod
    def _config(path: str, parsed: ParsedFile) -> float:
        base = posixpath.basename(path.replace("\\", "/")).lower()
        ext = posixpath.splitext(base)[1]
        if ext in CONFIG_EXTENSIONS or base.startswith(".env") or _CONFIG_NAME_RE.search(base):
            return 0.85
        exports = parsed.exports
        if len(exports) >= 3:
            values = sum(1 for e in exports if e.kind == "value")
            ratio = values / len(exports)
            if ratio >= 0.7:
                return 0.5 + 0.3 * ratio
        return 0.0

    @staticmethod
    def _helper(path: str, parsed: ParsedFile, in_deg: int, out_deg: int) -> float:
        if in_deg < 1 or out_deg > in_deg or len(parsed.functions) <= len(parsed.classes):
            return 0.0
        strength = min(0.9, 0.4 + 0.1 * in_deg)
        segments = {s.lower() for s in path.replace("\\", "/").split("/")[:-1]}
        if segments & HELPER_DIRS:
            strength += 0.2
        return min(1.0, strength)

    @staticmethod
    def _core_logic(parsed: ParsedFile, in_deg: int, out_deg: int) -> float:
        strength = 0.0
        methods = sum(1 for f in parsed.functions if f.kind == "method")
        if parsed.classes and methods >= 2:
            strength = max(strength, 0.7)
        if len(parsed.functions) >= 3:
            strength = max(strength, 0.6)
        if in_deg + out_deg >= 2:
            strength = max(strength, 0.55)
        return strength

    def _unrelated(self, ast_score: float, syntax_score: float, llm_score: float) -> float:
        evidence = max(ast_score, syntax_score, max(0.0, 2 * llm_score - 1))
        if evidence >= self.relevance_floor:
            return 0.0
        return 0.5 + 0.5 * (1 - evidence / self.relevance_floor)


def _same_path(a: str, b: str) -> bool:
    norm_a = posixpath.normpath(a.replace("\\", "/")).lstrip("/")
    norm_b = posixpath.normpath(b.replace("\\", "/")).lstrip("/")
    return norm_a == norm_b or norm_a.endswith("/" + norm_b) or norm_b.endswith("/" + norm_a)
