"""Per-language structural parsers resolved through an extension lookup table.

Three backends produce the same :class:`~context_curator.models.ParsedFile`
facts (functions, classes, imports, exports, calls):

- **Tree-sitter** for Python, JavaScript and TypeScript; error tolerant, so a
  half-written file still yields its well-formed definitions.
- Python's built-in ``ast`` module when tree-sitter is not installed.
- A line-oriented regex scanner for every other supported language, and for
  JS/TS when the tree-sitter grammars are missing.

:class:`ParserRegistry` maps a file extension to the ``parse(content)``
callable of one backend. Unsupported extensions and parser failures both give
an empty :class:`ParsedFile`; nothing in this module raises to the caller.
"""

from __future__ import annotations

import ast
import importlib
import logging
import re
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import ParsedFile, Symbol

logger = logging.getLogger(__name__)

ParseFn = Callable[[str], ParsedFile]

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".tsx": "tsx",
}

# Handled by the regex scanner only
REGEX_EXTENSIONS = {
    ".rb", ".go", ".java", ".kt", ".kts", ".rs", ".c", ".h", ".cpp", ".cc",
    ".hpp", ".cs", ".php", ".swift", ".scala", ".vue", ".svelte", ".dart",
}


# ===================================================================
# Tree-sitter backend
# ===================================================================

class TreeSitterParser:
    """Tree-sitter parser for a single language.

    Grammars come from the per-language ``tree-sitter-*`` wheels. When the
    core package or the grammar is missing, :attr:`available` is False and the
    registry falls back to another backend.
    """

    # language -> (module, function returning the Language capsule)
    _GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
        "python": ("tree_sitter_python", "language"),
        "javascript": ("tree_sitter_javascript", "language"),
        "typescript": ("tree_sitter_typescript", "language_typescript"),
        "tsx": ("tree_sitter_typescript", "language_tsx"),
    }

    def __init__(self, language: str) -> None:
        self.language = language
        self._parser: Any = None
        self._init_parser()

    @property
    def available(self) -> bool:
        return self._parser is not None

    def _init_parser(self) -> None:
        try:
            from tree_sitter import Language, Parser as TSParser  # type: ignore[import-untyped]
        except ImportError:
            logger.debug("tree-sitter is not installed; %s uses a fallback parser", self.language)
            return

        mod_name, fn_name = self._GRAMMAR_MODULES[self.language]
        try:
            mod = importlib.import_module(mod_name)
            self._parser = TSParser(Language(getattr(mod, fn_name)()))
            logger.debug("Loaded tree-sitter parser for %s", self.language)
        except ImportError:
            logger.warning(
                "Grammar package '%s' not installed for language '%s'. Install with: pip install %s",
                mod_name, self.language, mod_name.replace("_", "-"),
            )
        except Exception as exc:
            logger.warning("Could not load tree-sitter grammar for %s: %s", self.language, exc)

    def parse(self, content: str) -> ParsedFile:
        tree = self._parser.parse(content.encode("utf-8"))
        info = ParsedFile()
        if self.language == "python":
            _walk_python(tree.root_node, info)
        else:
            _walk_javascript(tree.root_node, info)
        return info


def _text(node: Any) -> str:
    return node.text.decode("utf-8", errors="ignore")


def _symbol(name: str, node: Any, kind: str) -> Symbol:
    return Symbol(name=name, start_line=node.start_point[0] + 1, end_line=node.end_point[0] + 1, kind=kind)


def _strip_quotes(raw: str) -> str:
    return raw.strip().strip("'\"`")


def _walk_python(root: Any, info: ParsedFile) -> None:
    # (node, inside_class, top_level)
    stack: List[Tuple[Any, bool, bool]] = [(child, False, True) for child in reversed(root.children)]
    while stack:
        node, in_class, top_level = stack.pop()
        kind = node.type
        children_in_class = in_class
        children_top_level = False

        if kind == "decorated_definition":
            children_top_level = top_level
        elif kind == "function_definition":
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                name = _text(name_node)
                info.functions.append(_symbol(name, node, "method" if in_class else "function"))
                if top_level and not name.startswith("_"):
                    info.exports.append(_symbol(name, node, "function"))
            children_in_class = False
        elif kind == "class_definition":
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                name = _text(name_node)
                info.classes.append(_symbol(name, node, "class"))
                if top_level and not name.startswith("_"):
                    info.exports.append(_symbol(name, node, "class"))
            children_in_class = True
        elif kind == "import_statement":
            for sub in node.named_children:
                if sub.type == "dotted_name":
                    info.imports.append(_symbol(_text(sub), node, "module"))
                elif sub.type == "aliased_import":
                    name_n = sub.child_by_field_name("name")
                    if name_n is not None:
                        info.imports.append(_symbol(_text(name_n), node, "module"))
            continue
        elif kind == "import_from_statement":
            mod_node = node.child_by_field_name("module_name")
            if mod_node is not None:
                module = _text(mod_node)
                if module.strip(".") == "":
                    # from . import a, b
                    for name_n in node.children_by_field_name("name"):
                        target = name_n.child_by_field_name("name") if name_n.type == "aliased_import" else name_n
                        if target is not None:
                            info.imports.append(_symbol(module + _text(target), node, "module"))
                else:
                    info.imports.append(_symbol(module, node, "module"))
            continue
        elif kind == "call":
            func = node.child_by_field_name("function")
            if func is not None and func.type in ("identifier", "attribute"):
                info.calls.append(_symbol(_text(func), node, "call"))
        elif kind == "expression_statement" and top_level:
            for sub in node.named_children:
                if sub.type == "assignment":
                    left = sub.child_by_field_name("left")
                    if left is not None and left.type == "identifier" and not _text(left).startswith("_"):
                        info.exports.append(_symbol(_text(left), sub, "value"))

        for child in reversed(node.children):
            stack.append((child, children_in_class, children_top_level))


_JS_FUNCTION_VALUES = {"arrow_function", "function_expression", "function", "generator_function"}
_JS_CLASS_NODES = {"class_declaration", "abstract_class_declaration", "class"}


def _walk_javascript(root: Any, info: ParsedFile) -> None:
    stack: List[Tuple[Any, bool]] = [(root, False)]
    while stack:
        node, in_class = stack.pop()
        kind = node.type
        children_in_class = in_class

        if kind in ("function_declaration", "generator_function_declaration"):
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                info.functions.append(_symbol(_text(name_node), node, "function"))
            children_in_class = False
        elif kind == "method_definition":
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                info.functions.append(_symbol(_text(name_node), node, "method"))
            children_in_class = False
        elif kind in _JS_CLASS_NODES:
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                info.classes.append(_symbol(_text(name_node), node, "class"))
            children_in_class = True
        elif kind == "variable_declarator":
            name_node = node.child_by_field_name("name")
            value = node.child_by_field_name("value")
            if name_node is not None and value is not None and value.type in _JS_FUNCTION_VALUES:
                info.functions.append(_symbol(_text(name_node), node, "function"))
        elif kind == "import_statement":
            source = node.child_by_field_name("source")
            if source is not None:
                info.imports.append(_symbol(_strip_quotes(_text(source)), node, "module"))
            continue
        elif kind == "export_statement":
            _collect_js_exports(node, info)
        elif kind == "call_expression":
            func = node.child_by_field_name("function")
            if func is not None:
                name = _text(func)
                if name in ("require", "import"):
                    args = node.child_by_field_name("arguments")
                    first = args.named_children[0] if args is not None and args.named_children else None
                    if first is not None and first.type in ("string", "template_string"):
                        info.imports.append(_symbol(_strip_quotes(_text(first)), node, "module"))
                elif func.type in ("identifier", "member_expression"):
                    info.calls.append(_symbol(name, node, "call"))

        for child in reversed(node.children):
            stack.append((child, children_in_class))


def _collect_js_exports(node: Any, info: ParsedFile) -> None:
    declaration = node.child_by_field_name("declaration")
    if declaration is not None:
        if declaration.type in ("lexical_declaration", "variable_declaration"):
            for declarator in declaration.named_children:
                if declarator.type != "variable_declarator":
                    continue
                name_node = declarator.child_by_field_name("name")
                value = declarator.child_by_field_name("value")
                if name_node is None:
                    continue
                kind = "function" if value is not None and value.type in _JS_FUNCTION_VALUES else "value"
                info.exports.append(_symbol(_text(name_node), declarator, kind))
            return
        name_node = declaration.child_by_field_name("name")
        if name_node is not None:
            if declaration.type in _JS_CLASS_NODES:
                kind = "class"
            elif "function" in declaration.type:
                kind = "function"
            else:
                kind = "type"
            info.exports.append(_symbol(_text(name_node), declaration, kind))
        return

    for child in node.named_children:
        if child.type == "export_clause":
            for spec in child.named_children:
                if spec.type != "export_specifier":
                    continue
                alias = spec.child_by_field_name("alias")
                name_node = alias if alias is not None else spec.child_by_field_name("name")
                if name_node is not None:
                    info.exports.append(_symbol(_text(name_node), spec, "value"))
        elif child.type == "identifier":
            # export default someName
            info.exports.append(_symbol(_text(child), node, "value"))


# ===================================================================
# Python ``ast`` backend (when tree-sitter is not installed)
# ===================================================================

class PythonASTParser:
    """Pure-Python fallback using the built-in ``ast`` module."""

    language = "python"

    def parse(self, content: str) -> ParsedFile:
        tree = ast.parse(content)
        visitor = _ASTVisitor()
        visitor.visit(tree)
        info = visitor.info

        for stmt in tree.body:
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                if not stmt.name.startswith("_"):
                    kind = "class" if isinstance(stmt, ast.ClassDef) else "function"
                    info.exports.append(_ast_symbol(stmt.name, stmt, kind))
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name) and not target.id.startswith("_"):
                        info.exports.append(_ast_symbol(target.id, stmt, "value"))
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                if not stmt.target.id.startswith("_"):
                    info.exports.append(_ast_symbol(stmt.target.id, stmt, "value"))
        return info


def _ast_symbol(name: str, node: ast.AST, kind: str) -> Symbol:
    start = getattr(node, "lineno", 1)
    return Symbol(name=name, start_line=start, end_line=getattr(node, "end_lineno", start) or start, kind=kind)


class _ASTVisitor(ast.NodeVisitor):
    """Walks a Python AST and collects structural facts."""

    def __init__(self) -> None:
        self.info = ParsedFile()
        self._class_depth = 0

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.info.classes.append(_ast_symbol(node.name, node, "class"))
        self._class_depth += 1
        self.generic_visit(node)
        self._class_depth -= 1

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_function(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._visit_function(node)

    def _visit_function(self, node: ast.AST) -> None:
        assert isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))
        self.info.functions.append(_ast_symbol(node.name, node, "method" if self._class_depth else "function"))
        saved, self._class_depth = self._class_depth, 0
        self.generic_visit(node)
        self._class_depth = saved

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.info.imports.append(_ast_symbol(alias.name, node, "module"))

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        prefix = "." * (node.level or 0)
        if node.module:
            self.info.imports.append(_ast_symbol(prefix + node.module, node, "module"))
        else:
            for alias in node.names:
                self.info.imports.append(_ast_symbol(prefix + alias.name, node, "module"))

    def visit_Call(self, node: ast.Call) -> None:
        name = _ast_name_from_expr(node.func)
        if name:
            self.info.calls.append(_ast_symbol(name, node, "call"))
        self.generic_visit(node)


def _ast_name_from_expr(expr: ast.AST) -> Optional[str]:
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        parts: List[str] = []
        current: ast.AST = expr
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if isinstance(current, ast.Name):
            parts.append(current.id)
        return ".".join(reversed(parts)) if parts else None
    return None


# ===================================================================
# Regex backend (any brace / keyword language)
# ===================================================================

_CLASS_RE = re.compile(r"(?:^|\s)(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+([A-Za-z0-9_$]+)")
_FUNCTION_RE = re.compile(
    r"^\s*(?:(?:public|private|static|internal|protected|async|virtual|override|inline|tailrec|"
    r"extern|pure|impure|elemental|recursive|module)\s+)*?"
    r"(?:(?:function|def|fun|fn|func|sub|subroutine|procedure|declare|create(?:\s+or\s+replace)?\s+function|"
    r"perform|defun)\b\s*)?"
    r"(?:[\w.:<>\[\]*&\s]+\s+)?"
    r"([A-Za-z_@$][\w\-$]*[?!]?)\s*(?:<[^>]*>)?\s*\(",
    re.IGNORECASE,
)
_RUBY_DEF_RE = re.compile(r"^\s*def\s+(?:self\.)?([A-Za-z_][\w]*[?!=]?)")
_IMPORT_RES = (
    re.compile(r"^\s*import\s+.*?from\s+['\"]([^'\"]+)['\"]"),
    re.compile(r"^\s*import\s+['\"]([^'\"]+)['\"]"),
    re.compile(r"^\s*from\s+(\S+)\s+import\b"),
    re.compile(r"^\s*import\s+(?:static\s+)?([\w.]+(?:\.\*)?)\s*;"),
    re.compile(r"^\s*(?:use|using)\s+([\w:.\\]+)\s*;"),
    re.compile(r"^\s*require(?:_relative)?\s*\(?\s*['\"]([^'\"]+)['\"]"),
    re.compile(r"\brequire\(\s*['\"]([^'\"]+)['\"]\s*\)"),
)
_EXPORT_RE = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?(function\*?|class|const|let|var|interface|type|enum)\s+([A-Za-z0-9_$]+)"
    r"|^\s*export\s*\{\s*([^}]+)\s*\}"
)
_NOT_FUNCTIONS = {
    "if", "for", "while", "with", "try", "catch", "switch", "case", "return", "elif", "else",
    "foreach", "until", "unless", "await", "new", "throw", "typeof", "sizeof", "super", "print",
    "echo", "function", "func", "fn", "fun", "def", "sub", "import", "require", "assert", "yield",
    "delete", "void",
}
_STATEMENT_PREFIXES = ("return ", "await ", "throw ", "new ", "yield ", "else ", "case ", "echo ", "print ")
_MAX_SCAN_LINE = 400


class RegexParser:
    """Line-oriented scanner ported from the universal browser-side patterns.

    Block ends are found by brace counting, so languages that delimit blocks
    with indentation or ``end`` report the opening line as the end line.
    """

    def parse(self, content: str) -> ParsedFile:
        lines = content.split("\n")
        info = ParsedFile()

        for index, line in enumerate(lines):
            line_no = index + 1
            if len(line) > _MAX_SCAN_LINE:
                continue

            for pattern in _IMPORT_RES:
                match = pattern.search(line)
                if match:
                    info.imports.append(Symbol(match.group(1).strip(), line_no, line_no, "module"))
                    break

            export_match = _EXPORT_RE.match(line)
            if export_match:
                if export_match.group(2):
                    keyword = export_match.group(1)
                    if keyword.startswith("function"):
                        kind = "function"
                    elif keyword == "class":
                        kind = "class"
                    else:
                        kind = "value"
                    info.exports.append(Symbol(export_match.group(2), line_no, line_no, kind))
                elif export_match.group(3):
                    for item in export_match.group(3).split(","):
                        name = item.split(" as ")[-1].strip()
                        if name:
                            info.exports.append(Symbol(name, line_no, line_no, "value"))

            class_match = _CLASS_RE.search(line)
            if class_match:
                info.classes.append(Symbol(class_match.group(1), line_no, _block_end(lines, index) + 1, "class"))
                continue

            name = self._function_name(line)
            if name and not any(f.name == name and abs(f.start_line - line_no) <= 2 for f in info.functions):
                info.functions.append(Symbol(name, line_no, _block_end(lines, index) + 1, "function"))

        return info

    @staticmethod
    def _function_name(line: str) -> Optional[str]:
        stripped = line.lstrip()
        if not stripped or stripped.startswith(("//", "#", "*", "/*")):
            return None
        ruby = _RUBY_DEF_RE.match(line)
        if ruby:
            return ruby.group(1)
        if "(" not in line or stripped.startswith(_STATEMENT_PREFIXES):
            return None
        match = _FUNCTION_RE.match(line)
        if not match:
            return None
        name = match.group(1)
        if name.lower() in _NOT_FUNCTIONS:
            return None
        # `foo = bar(` and `a.b(` are calls, not definitions
        head = line[: match.start(1)]
        if "=" in head or "." in head:
            return None
        return name


def _block_end(lines: List[str], start: int) -> int:
    depth = 0
    opened = False
    for i in range(start, len(lines)):
        for char in lines[i]:
            if char == "{":
                depth += 1
                opened = True
            elif char == "}":
                depth -= 1
        if opened and depth <= 0:
            return i
        if not opened and i > start:
            # Signature without a brace on the next line: treat as single-line
            return start
    return start if not opened else len(lines) - 1


# ===================================================================
# Registry
# ===================================================================

class ParserRegistry:
    """Extension -> parse callable lookup table.

    Backends are chosen once at construction: tree-sitter where its grammar
    loads, the ``ast`` fallback for Python and the regex scanner otherwise.
    """

    def __init__(self, use_tree_sitter: bool = True) -> None:
        self._table: Dict[str, ParseFn] = {}
        self._backends: Dict[str, str] = {}

        regex = RegexParser()
        tree_sitter: Dict[str, TreeSitterParser] = {}
        if use_tree_sitter:
            for lang in sorted(set(LANGUAGE_MAP.values())):
                ts = TreeSitterParser(lang)
                if ts.available:
                    tree_sitter[lang] = ts

        for ext, lang in LANGUAGE_MAP.items():
            if lang in tree_sitter:
                self.register(ext, tree_sitter[lang].parse, "tree-sitter")
            elif lang == "python":
                self.register(ext, PythonASTParser().parse, "ast")
            else:
                self.register(ext, regex.parse, "regex")
        for ext in REGEX_EXTENSIONS:
            self.register(ext, regex.parse, "regex")

        logger.debug("Parser registry: %s", self._backends)

    def register(self, extension: str, parse_fn: ParseFn, backend: str = "custom") -> None:
        self._table[extension.lower()] = parse_fn
        self._backends[extension.lower()] = backend

    def backend_for(self, path: str) -> Optional[str]:
        return self._backends.get(_extension(path))

    def is_supported(self, path: str) -> bool:
        return _extension(path) in self._table

    def parse(self, path: str, content: str) -> ParsedFile:
        """Parse *content* with the parser registered for *path*'s extension.

        Returns an empty :class:`ParsedFile` for unsupported extensions or when
        the backend fails on this file.
        """
        parse_fn = self._table.get(_extension(path))
        if parse_fn is None:
            return ParsedFile.empty()
        try:
            return parse_fn(content)
        except Exception as exc:
            logger.warning("Failed to parse %s: %s", path, exc)
            return ParsedFile.empty()


def _extension(path: str) -> str:
    return PurePosixPath(path.replace("\\", "/")).suffix.lower()


_DEFAULT_REGISTRY: Optional[ParserRegistry] = None


def default_registry() -> ParserRegistry:
    """Process-wide registry; grammars are loaded on first use."""
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = ParserRegistry()
    return _DEFAULT_REGISTRY


def parse(path: str, content: str) -> ParsedFile:
    return default_registry().parse(path, content)
