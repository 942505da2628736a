"""Core data models shared by parsing, scoring, caching and ranking."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

CLASSIFICATIONS = ("entry-point", "core-logic", "helper", "config", "unrelated", "unknown")
WORKFLOW_POSITIONS = ("upstream", "downstream", "unknown")


def content_hash(content: str) -> str:
    """SHA-256 hex digest of *content*."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class SourceFile:
    path: str
    content: str
    content_hash: str = ""

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = content_hash(self.content)


@dataclass
class Symbol:
    name: str
    start_line: int
    end_line: int
    kind: str = ""


@dataclass
class ParsedFile:
    functions: List[Symbol] = field(default_factory=list)
    classes: List[Symbol] = field(default_factory=list)
    imports: List[Symbol] = field(default_factory=list)
    exports: List[Symbol] = field(default_factory=list)
    calls: List[Symbol] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "ParsedFile":
        return cls()

    def is_empty(self) -> bool:
        return not (self.functions or self.classes or self.imports or self.exports)


@dataclass
class CachedEmbedding:
    path: str
    hash: str
    embedding: List[float]
    timestamp: float
    model: str = ""
    name_embedding: Optional[List[float]] = None


@dataclass
class CachedProjectEmbeddings:
    project_hash: str
    file_embeddings: Dict[str, List[float]]
    timestamp: float
    model: str = ""
    name_embeddings: Dict[str, List[float]] = field(default_factory=dict)


@dataclass
class StructuralMatch:
    """A symbol whose name matched the query."""

    name: str
    relevance: float
    reason: str = ""


@dataclass
class RelevantFunction:
    name: str
    relevance: float
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "relevance": self.relevance}
        if self.reason:
            payload["reason"] = self.reason
        return payload


@dataclass
class QueryResult:
    file: str
    final_score: float
    score_percentage: int
    ast_score: float
    llm_score: float
    syntax_score: float
    flan_score: float
    has_synergy: bool
    matches: List[str] = field(default_factory=list)
    classification: str = "unknown"
    workflow_position: str = "unknown"
    relevant_functions: List[RelevantFunction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "finalScore": self.final_score,
            "scorePercentage": self.score_percentage,
            "astScore": self.ast_score,
            "llmScore": self.llm_score,
            "syntaxScore": self.syntax_score,
            "flanScore": self.flan_score,
            "hasSynergy": self.has_synergy,
            "matches": list(self.matches),
            "classification": self.classification,
            "workflowPosition": self.workflow_position,
            "relevantFunctions": [fn.to_dict() for fn in self.relevant_functions],
        }


@dataclass
class KeywordSearchResult:
    keyword: str
    files: List[QueryResult]
    type: str = "keywordSearch"

    @property
    def id(self) -> str:
        return "keyword-search-" + re.sub(r"[^a-zA-Z0-9]", "_", self.keyword)

    @property
    def title(self) -> str:
        return f'Hybrid Search Results for "{self.keyword}"'

    @property
    def description(self) -> str:
        return f"Found {len(self.files)} relevant files using structural, semantic and syntax analysis"

    @property
    def confidence(self) -> float:
        return min(len(self.files) * 0.1, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "data": {
                "keyword": self.keyword,
                "files": [r.to_dict() for r in self.files],
            },
        }
