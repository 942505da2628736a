"""Tests for the parser registry and its backends."""

import pytest

from context_curator.models import ParsedFile
from context_curator.parser import PythonASTParser, ParserRegistry, RegexParser, default_registry


def _names(symbols):
    return [s.name for s in symbols]


@pytest.fixture(params=["default", "fallback"])
def registry(request) -> ParserRegistry:
    """Registry with tree-sitter (when installed) and the pure-Python fallbacks."""
    if request.param == "default":
        return default_registry()
    return ParserRegistry(use_tree_sitter=False)


class TestPythonParsing:
    """Python facts must agree between tree-sitter and the ast fallback."""

    def test_functions_and_methods(self, registry: ParserRegistry, sample_python_code: str):
        info = registry.parse("pkg/sample.py", sample_python_code)
        assert _names(info.functions) == ["hello", "add", "multiply", "_internal"]
        kinds = {s.name: s.kind for s in info.functions}
        assert kinds["hello"] == "function"
        assert kinds["add"] == "method"
        assert kinds["multiply"] == "method"

    def test_classes(self, registry: ParserRegistry, sample_python_code: str):
        info = registry.parse("pkg/sample.py", sample_python_code)
        assert _names(info.classes) == ["Calculator"]
        calc = info.classes[0]
        assert calc.start_line < calc.end_line

    def test_imports_keep_relative_dots(self, registry: ParserRegistry, sample_python_code: str):
        info = registry.parse("pkg/sample.py", sample_python_code)
        assert _names(info.imports) == ["os", ".helpers", ".utils"]

    def test_exports_are_public_top_level_names(self, registry: ParserRegistry, sample_python_code: str):
        info = registry.parse("pkg/sample.py", sample_python_code)
        exports = {s.name: s.kind for s in info.exports}
        assert exports == {"MAX_ITEMS": "value", "hello": "function", "Calculator": "class"}

    def test_calls_recorded(self, registry: ParserRegistry, sample_python_code: str):
        info = registry.parse("pkg/sample.py", sample_python_code)
        calls = set(_names(info.calls))
        assert {"slugify", "self.add", "range", "os.getcwd"} <= calls

    def test_line_numbers_are_one_based(self, registry: ParserRegistry):
        info = registry.parse("a.py", "def first():\n    return 1\n")
        assert info.functions[0].start_line == 1
        assert info.functions[0].end_line == 2


class TestScriptParsing:
    def test_typescript_functions_and_exports(self, registry: ParserRegistry, login_ts: str):
        info = registry.parse("auth/login.ts", login_ts)
        assert _names(info.functions) == ["login", "validateToken"]
        exports = {s.name: s.kind for s in info.exports}
        assert exports == {"login": "function", "validateToken": "function"}

    def test_typescript_imports(self, registry: ParserRegistry):
        source = (
            "import { login } from './auth/login'\n"
            "import React from \"react\"\n"
            "const fs = require('fs')\n"
        )
        info = registry.parse("src/main.ts", source)
        assert _names(info.imports) == ["./auth/login", "react", "fs"]

    def test_typescript_class(self, registry: ParserRegistry):
        source = (
            "export class UserService {\n"
            "  find(id: string) {\n"
            "    return id\n"
            "  }\n"
            "}\n"
        )
        info = registry.parse("src/user.service.ts", source)
        assert _names(info.classes) == ["UserService"]
        assert any(e.name == "UserService" and e.kind == "class" for e in info.exports)

    def test_export_clause(self, registry: ParserRegistry):
        info = registry.parse("src/index.js", "const a = 1\nconst b = 2\nexport { a, b as bee }\n")
        assert {"a", "bee"} <= set(_names(info.exports))


class TestRegexParser:
    def test_java(self):
        source = (
            "import java.util.List;\n"
            "public class UserService {\n"
            "    public User findUser(String id) {\n"
            "        return repo.find(id);\n"
            "    }\n"
            "}\n"
        )
        info = RegexParser().parse(source)
        assert _names(info.imports) == ["java.util.List"]
        assert _names(info.classes) == ["UserService"]
        assert _names(info.functions) == ["findUser"]
        assert info.functions[0].start_line == 3
        assert info.functions[0].end_line == 5
        assert info.classes[0].end_line == 6

    def test_go(self):
        source = 'package main\n\nimport "fmt"\n\nfunc Add(a int, b int) int {\n\treturn a + b\n}\n'
        info = RegexParser().parse(source)
        assert _names(info.imports) == ["fmt"]
        assert _names(info.functions) == ["Add"]

    def test_ruby(self):
        source = "require 'json'\n\nclass Greeter\n  def greet(name)\n    \"hi #{name}\"\n  end\nend\n"
        info = RegexParser().parse(source)
        assert _names(info.imports) == ["json"]
        assert _names(info.classes) == ["Greeter"]
        assert _names(info.functions) == ["greet"]

    def test_statements_are_not_functions(self):
        source = "if (ready) {\n  return compute(x)\n}\nawait save(x)\nconst y = build(z)\n"
        info = RegexParser().parse(source)
        assert info.functions == []


class TestRegistry:
    def test_unsupported_extension_yields_empty(self):
        registry = default_registry()
        assert not registry.is_supported("README.md")
        assert registry.parse("README.md", "# def nothing():").is_empty()

    def test_supported_extensions(self):
        registry = default_registry()
        for path in ("a.py", "b.ts", "c.tsx", "d.js", "e.go", "f.rb", "G.JAVA"):
            assert registry.is_supported(path), path

    def test_fallback_backends(self):
        registry = ParserRegistry(use_tree_sitter=False)
        assert registry.backend_for("x.py") == "ast"
        assert registry.backend_for("x.ts") == "regex"
        assert registry.backend_for("x.go") == "regex"
        assert registry.backend_for("x.txt") is None

    def test_parser_failure_is_isolated(self):
        registry = ParserRegistry(use_tree_sitter=False)

        def broken(content: str) -> ParsedFile:
            raise RuntimeError("boom")

        registry.register(".weird", broken)
        assert registry.parse("x.weird", "anything").is_empty()

    def test_python_syntax_error_yields_empty_with_ast_backend(self):
        registry = ParserRegistry(use_tree_sitter=False)
        assert registry.parse("bad.py", "def broken(:\n").is_empty()

    def test_ast_parser_direct(self):
        info = PythonASTParser().parse("class A:\n    def m(self):\n        pass\n")
        assert _names(info.classes) == ["A"]
        assert info.functions[0].kind == "method"
