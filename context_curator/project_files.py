"""Collect a project's analysable source files from disk."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

import pathspec

from .parser import ParserRegistry, default_registry

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git", "site-packages",
    ".tox", ".pytest_cache", "build", "dist", "coverage", ".next", ".nuxt",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs", ".idea", ".vscode",
    ".cache", "vendor", ".context_curator",
}
SKIP_SUFFIXES = (".min.js", ".bundle.js", ".d.ts", ".map")
MAX_FILE_BYTES = 1_000_000


@dataclass
class CollectResult:
    files: List[Dict[str, str]] = field(default_factory=list)
    skipped_ignored: int = 0
    skipped_unsupported: int = 0
    skipped_unreadable: int = 0


def _load_gitignore(root: Path) -> Optional[pathspec.PathSpec]:
    patterns: List[str] = []
    for gitignore in sorted(root.rglob(".gitignore")):
        if any(part in SKIP_DIRS for part in gitignore.relative_to(root).parts):
            continue
        prefix = gitignore.parent.relative_to(root).as_posix()
        try:
            lines = gitignore.read_text(encoding="utf-8", errors="ignore").splitlines()
        except OSError as exc:
            logger.warning("Could not read %s: %s", gitignore, exc)
            continue
        for line in lines:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if prefix != ".":
                negate = line.startswith("!")
                body = line[1:] if negate else line
                line = ("!" if negate else "") + f"{prefix}/{body.lstrip('/')}"
            patterns.append(line)
    if not patterns:
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def collect_files(
    root: Path,
    registry: Optional[ParserRegistry] = None,
    respect_gitignore: bool = True,
    max_file_bytes: int = MAX_FILE_BYTES,
) -> CollectResult:
    """Read every supported source file under *root*.

    Paths are returned relative to *root* in POSIX form. Files that cannot be
    read or decoded are logged and left out.
    """
    root = Path(root).resolve()
    registry = registry or default_registry()
    spec = _load_gitignore(root) if respect_gitignore else None
    result = CollectResult()

    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        rel = file_path.relative_to(root)
        rel_posix = rel.as_posix()
        if any(part in SKIP_DIRS for part in rel.parts[:-1]) or rel_posix.endswith(SKIP_SUFFIXES):
            result.skipped_ignored += 1
            continue
        if spec is not None and spec.match_file(rel_posix):
            result.skipped_ignored += 1
            continue
        if not registry.is_supported(rel_posix):
            result.skipped_unsupported += 1
            continue
        try:
            if file_path.stat().st_size > max_file_bytes:
                logger.info("Skipping large file %s", rel_posix)
                result.skipped_ignored += 1
                continue
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read %s: %s", rel_posix, exc)
            result.skipped_unreadable += 1
            continue
        result.files.append({"path": rel_posix, "content": content})

    logger.info(
        "Collected %d files from %s (%d ignored, %d unsupported, %d unreadable)",
        len(result.files), root, result.skipped_ignored,
        result.skipped_unsupported, result.skipped_unreadable,
    )
    return result
