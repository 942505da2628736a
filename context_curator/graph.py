"""Dependency graph between project files, built from resolved import edges."""

from __future__ import annotations

import logging
import posixpath
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .models import ParsedFile, SourceFile

logger = logging.getLogger(__name__)

_SCRIPT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".vue", ".svelte")
_MODULE_EXTENSIONS = _SCRIPT_EXTENSIONS + (".py", ".rb", ".go", ".java", ".kt", ".rs", ".php", ".cs", ".scala", ".swift")
_PACKAGE_INDEXES = tuple(f"index{ext}" for ext in _SCRIPT_EXTENSIONS) + ("__init__.py", "mod.rs")


class DependencyGraph:
    """Directed graph of file paths; an edge ``a -> b`` means *a* imports *b*."""

    def __init__(self, nodes: Iterable[str] = ()) -> None:
        self._out: Dict[str, Set[str]] = {}
        self._in: Dict[str, Set[str]] = {}
        for node in nodes:
            self.add_node(node)

    def add_node(self, path: str) -> None:
        self._out.setdefault(path, set())
        self._in.setdefault(path, set())

    def add_edge(self, source: str, target: str) -> None:
        if source == target:
            return
        self.add_node(source)
        self.add_node(target)
        self._out[source].add(target)
        self._in[target].add(source)

    @property
    def nodes(self) -> List[str]:
        return sorted(self._out)

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self._out.values())

    def has_edge(self, source: str, target: str) -> bool:
        return target in self._out.get(source, ())

    def in_degree(self, path: str) -> int:
        return len(self._in.get(path, ()))

    def out_degree(self, path: str) -> int:
        return len(self._out.get(path, ()))

    def dependencies(self, path: str) -> List[str]:
        """Files that *path* imports."""
        return sorted(self._out.get(path, ()))

    def dependents(self, path: str) -> List[str]:
        """Files that import *path*."""
        return sorted(self._in.get(path, ()))


class DependencyGraphBuilder:
    """Resolve import specifiers against the project's own file set."""

    def __init__(self, paths: Iterable[str]) -> None:
        paths = list(paths)
        self._paths: Set[str] = {_normalize(p) for p in paths}
        self._original: Dict[str, str] = {_normalize(p): p for p in paths}
        # extension-less path -> real paths, for probing and suffix matching
        self._stems: Dict[str, List[str]] = {}
        for path in sorted(self._paths):
            stem, ext = posixpath.splitext(path)
            if ext in _MODULE_EXTENSIONS:
                self._stems.setdefault(stem, []).append(path)
            base = posixpath.basename(path)
            if base in _PACKAGE_INDEXES:
                self._stems.setdefault(posixpath.dirname(path), []).append(path)

    def build(self, files: Iterable[SourceFile], parsed: Mapping[str, ParsedFile]) -> DependencyGraph:
        files = list(files)
        graph = DependencyGraph(f.path for f in files)
        unresolved = 0
        for source in files:
            info = parsed.get(source.path)
            if info is None:
                continue
            for imp in info.imports:
                target = self.resolve(source.path, imp.name)
                if target is None:
                    unresolved += 1
                    continue
                if target != source.path:
                    graph.add_edge(source.path, target)
        logger.debug(
            "Dependency graph: %d nodes, %d edges, %d unresolved imports",
            len(graph.nodes), graph.edge_count, unresolved,
        )
        return graph

    def resolve(self, importer: str, specifier: str) -> Optional[str]:
        """Map *specifier* imported from *importer* to a project path, or None."""
        spec = specifier.strip()
        if not spec:
            return None
        importer_dir = posixpath.dirname(_normalize(importer))

        if spec.startswith(("./", "../")) or spec in (".", ".."):
            return self._probe(posixpath.normpath(posixpath.join(importer_dir, spec)))

        if spec.startswith("."):
            return self._resolve_python_relative(importer_dir, spec)

        if spec.startswith("@/") or spec.startswith("~/"):
            spec = spec[2:]
        elif spec.startswith("/"):
            spec = spec.lstrip("/")

        candidates = [spec]
        if "/" not in spec and "." in spec:
            candidates.insert(0, spec.replace(".", "/"))
        for candidate in candidates:
            found = self._probe(candidate) or self._suffix_match(candidate)
            if found is not None:
                return found
        return None

    def _resolve_python_relative(self, importer_dir: str, spec: str) -> Optional[str]:
        level = len(spec) - len(spec.lstrip("."))
        base = importer_dir
        for _ in range(level - 1):
            base = posixpath.dirname(base)
        rest = spec[level:].replace(".", "/")
        target = posixpath.join(base, rest) if rest else base
        return self._probe(posixpath.normpath(target) if target else "")

    def _probe(self, target: str) -> Optional[str]:
        if target.startswith("./"):
            target = target[2:]
        if target in self._paths:
            return self._original[target]
        matches = self._stems.get(target)
        if matches:
            return self._original[matches[0]]
        return None

    def _suffix_match(self, tail: str) -> Optional[str]:
        suffix = "/" + tail
        for stem in sorted(self._stems):
            if stem.endswith(suffix):
                return self._original[self._stems[stem][0]]
        return None


def _normalize(path: str) -> str:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    return normalized[2:] if normalized.startswith("./") else normalized


def build_graph(files: Iterable[SourceFile], parsed: Mapping[str, ParsedFile]) -> DependencyGraph:
    files = list(files)
    return DependencyGraphBuilder(f.path for f in files).build(files, parsed)
