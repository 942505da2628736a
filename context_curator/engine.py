"""Relevance engine: the asynchronous multi-signal search pipeline.

One call to :meth:`RelevanceEngine.search` runs:

1. **validate**: normalise the file set (entries without content are
   skipped) and reject an empty set with :class:`NoFilesError`.
2. **parse**: per-file structural facts through the parser registry.
3. **graph**: resolve imports into a :class:`~context_curator.graph.DependencyGraph`.
4. **score**: structural and syntax signals alongside the semantic signal.
5. **classify**: architectural role and workflow position per file.
6. **combine**: weighted fusion, ranking and trimming.

Each invocation that passes validation takes a new epoch. A search that finishes after a newer one
started is superseded: its result is dropped and :meth:`search` returns None.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .cache import EmbeddingCache
from .classifier import Classifier
from .combiner import ScoreCombiner
from .config_manager import EngineConfig
from .graph import build_graph
from .models import KeywordSearchResult, ParsedFile, QueryResult, SourceFile
from .parser import ParserRegistry, default_registry
from .semantic import SemanticScorer
from .structural import StructuralResult, StructuralScorer
from .syntax import SyntaxResult, SyntaxScorer

logger = logging.getLogger(__name__)

StageCallback = Callable[[str, int], None]
FileInput = Union[SourceFile, Mapping[str, Any]]

STAGES: Tuple[Tuple[str, int], ...] = (
    ("validate", 5),
    ("parse", 20),
    ("graph", 35),
    ("score", 70),
    ("classify", 85),
    ("combine", 95),
    ("done", 100),
)
_STAGE_PERCENT = dict(STAGES)


class NoFilesError(ValueError):
    """Raised when a search is started without any readable files."""


def normalize_files(files: Iterable[FileInput]) -> List[SourceFile]:
    """Convert dicts to :class:`SourceFile`, skipping unreadable and duplicate entries."""
    normalized: List[SourceFile] = []
    seen = set()
    for item in files:
        if isinstance(item, SourceFile):
            source: Optional[SourceFile] = item
        else:
            content = item.get("content")
            if content is None:
                logger.debug("Skipping %s: no content", item.get("path"))
                continue
            source = SourceFile(path=item["path"], content=content)
        if source.path in seen:
            logger.warning("Duplicate file path %s ignored", source.path)
            continue
        seen.add(source.path)
        normalized.append(source)
    return normalized


class RelevanceEngine:
    """Ranks project files against a natural-language query.

    Args:
        embedder: Embedding provider (``embed_text`` + ``status``), or None
            to run without the semantic signal.
        cache: Embedding cache; None disables caching.
        config: Weights, thresholds and limits.
        registry: Parser registry; defaults to the process-wide one.
        on_stage: ``on_stage(name, percent)`` progress callback.
    """

    def __init__(
        self,
        embedder: Any = None,
        cache: Optional[EmbeddingCache] = None,
        config: Optional[EngineConfig] = None,
        registry: Optional[ParserRegistry] = None,
        on_stage: Optional[StageCallback] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.cache = cache
        self.registry = registry or default_registry()
        self.on_stage = on_stage
        self.structural = StructuralScorer()
        self.syntax = SyntaxScorer()
        self.semantic = SemanticScorer(embedder, cache, concurrency=self.config.concurrency)
        self.classifier = Classifier(relevance_floor=self.config.relevance_floor)
        self.combiner = ScoreCombiner(self.config)
        self.latest: Optional[KeywordSearchResult] = None
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    def _stage(self, name: str) -> None:
        if self.on_stage is None:
            return
        try:
            self.on_stage(name, _STAGE_PERCENT[name])
        except Exception as exc:
            logger.warning("Progress callback failed at stage '%s': %s", name, exc)

    def _superseded(self, epoch: int) -> bool:
        if epoch != self._epoch:
            logger.info("Search epoch %d superseded by %d; dropping its results", epoch, self._epoch)
            return True
        return False

    async def search(
        self,
        query: str,
        files: Iterable[FileInput],
        entry_point_file: Optional[Union[str, FileInput]] = None,
    ) -> Optional[KeywordSearchResult]:
        """Run the full pipeline; None when a newer search superseded this one.

        Raises:
            NoFilesError: *files* holds no entry with content.
            ValueError: *query* is blank.
        """
        self._stage("validate")
        if not query or not query.strip():
            raise ValueError("Query must not be empty")
        sources = normalize_files(files)
        entry_path = self._entry_path(entry_point_file, sources)
        if not sources:
            raise NoFilesError("No files to analyze")

        # a rejected call never supersedes a search already in flight
        self._epoch += 1
        epoch = self._epoch
        logger.info("Search #%d: %r over %d files", epoch, query, len(sources))

        self._stage("parse")
        parsed = await self._parse_all(sources)

        self._stage("graph")
        graph = build_graph(sources, parsed)

        self._stage("score")
        (structural, syntax), semantic = await asyncio.gather(
            asyncio.to_thread(self._lexical_scores, query, sources, parsed),
            self.semantic.score_files(query, sources),
        )
        if self._superseded(epoch):
            return None

        self._stage("classify")
        results: List[QueryResult] = []
        for source in sources:
            path = source.path
            classification = self.classifier.classify(
                path,
                parsed.get(path),
                graph,
                ast_score=structural[path].score,
                syntax_score=syntax[path].score,
                llm_score=semantic.scores.get(path, 0.0),
                entry_point=entry_path,
                content=source.content,
            )
            results.append(self.combiner.combine(
                path,
                structural[path].score,
                semantic.scores.get(path, 0.0),
                syntax[path].score,
                classification,
                function_matches=structural[path].function_matches,
                matches=[f"AST: {d}" for d in structural[path].descriptions] + syntax[path].snippets,
            ))

        self._stage("combine")
        ranked = self.combiner.rank(results)
        outcome = KeywordSearchResult(keyword=query, files=ranked)

        if self._superseded(epoch):
            return None
        self.latest = outcome
        self._stage("done")
        logger.info("Search #%d complete: %d results", epoch, len(ranked))
        return outcome

    def search_sync(
        self,
        query: str,
        files: Iterable[FileInput],
        entry_point_file: Optional[Union[str, FileInput]] = None,
    ) -> Optional[KeywordSearchResult]:
        """Blocking wrapper around :meth:`search`."""
        return asyncio.run(self.search(query, files, entry_point_file))

    # ------------------------------------------------------------------
    # Pipeline pieces
    # ------------------------------------------------------------------

    @staticmethod
    def _entry_path(entry_point_file: Optional[Union[str, FileInput]], sources: List[SourceFile]) -> Optional[str]:
        """Path of the entry-point file; a supplied file missing from the set is added."""
        if entry_point_file is None:
            return None
        if isinstance(entry_point_file, str):
            return entry_point_file
        entry = normalize_files([entry_point_file])
        if not entry:
            return entry_point_file.path if isinstance(entry_point_file, SourceFile) else entry_point_file.get("path")
        if all(s.path != entry[0].path for s in sources):
            sources.append(entry[0])
        return entry[0].path

    async def _parse_all(self, sources: List[SourceFile]) -> Dict[str, ParsedFile]:
        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

        async def parse_one(source: SourceFile) -> ParsedFile:
            async with semaphore:
                return await asyncio.to_thread(self.registry.parse, source.path, source.content)

        facts = await asyncio.gather(*(parse_one(s) for s in sources))
        return {s.path: f for s, f in zip(sources, facts)}

    def _lexical_scores(
        self,
        query: str,
        sources: List[SourceFile],
        parsed: Dict[str, ParsedFile],
    ) -> Tuple[Dict[str, StructuralResult], Dict[str, SyntaxResult]]:
        structural: Dict[str, StructuralResult] = {}
        syntax: Dict[str, SyntaxResult] = {}
        for source in sources:
            structural[source.path] = self.structural.score(query, parsed.get(source.path), source.path)
            syntax[source.path] = self.syntax.score(query, source.path, source.content)
        return structural, syntax
