"""Tests for import resolution and the dependency graph."""

from context_curator.graph import DependencyGraph, DependencyGraphBuilder, build_graph
from context_curator.models import ParsedFile, SourceFile, Symbol


def _imports(*names: str) -> ParsedFile:
    return ParsedFile(imports=[Symbol(name=n, start_line=1, end_line=1, kind="module") for n in names])


PATHS = [
    "src/main.ts",
    "src/auth/login.ts",
    "src/utils/format.ts",
    "src/components/index.tsx",
    "app/__init__.py",
    "app/models.py",
    "app/billing.py",
    "app/services/payments.py",
]


class TestResolve:
    def setup_method(self):
        self.builder = DependencyGraphBuilder(PATHS)

    def test_relative_script_with_extension_probe(self):
        assert self.builder.resolve("src/main.ts", "./auth/login") == "src/auth/login.ts"

    def test_parent_relative(self):
        assert self.builder.resolve("src/auth/login.ts", "../utils/format") == "src/utils/format.ts"

    def test_index_probe(self):
        assert self.builder.resolve("src/main.ts", "./components") == "src/components/index.tsx"

    def test_explicit_extension(self):
        assert self.builder.resolve("src/main.ts", "./auth/login.ts") == "src/auth/login.ts"

    def test_python_relative(self):
        assert self.builder.resolve("app/billing.py", ".models") == "app/models.py"

    def test_python_parent_relative(self):
        assert self.builder.resolve("app/services/payments.py", "..models") == "app/models.py"

    def test_python_package_import(self):
        assert self.builder.resolve("app/services/payments.py", "..") == "app/__init__.py"

    def test_dotted_absolute(self):
        assert self.builder.resolve("app/billing.py", "app.services.payments") == "app/services/payments.py"

    def test_alias_prefix(self):
        assert self.builder.resolve("src/main.ts", "@/utils/format") == "src/utils/format.ts"

    def test_external_package_unresolved(self):
        assert self.builder.resolve("src/main.ts", "react") is None
        assert self.builder.resolve("app/billing.py", "os") is None

    def test_missing_relative_unresolved(self):
        assert self.builder.resolve("src/main.ts", "./nope") is None


class TestBuild:
    def test_edges_and_degrees(self):
        files = [SourceFile(path=p, content="") for p in PATHS]
        parsed = {
            "src/main.ts": _imports("./auth/login", "./utils/format", "react"),
            "src/auth/login.ts": _imports("../utils/format"),
            "app/billing.py": _imports(".models"),
            "app/services/payments.py": _imports("..models", "..billing"),
        }
        graph = build_graph(files, parsed)

        assert graph.has_edge("src/main.ts", "src/auth/login.ts")
        assert graph.out_degree("src/main.ts") == 2
        assert graph.in_degree("src/utils/format.ts") == 2
        assert graph.dependents("app/models.py") == ["app/billing.py", "app/services/payments.py"]
        assert graph.dependencies("app/services/payments.py") == ["app/billing.py", "app/models.py"]
        assert graph.edge_count == 6

    def test_self_import_skipped(self):
        files = [SourceFile(path="a.ts", content="")]
        graph = build_graph(files, {"a.ts": _imports("./a")})
        assert graph.edge_count == 0
        assert graph.in_degree("a.ts") == 0

    def test_unknown_path_degrees_are_zero(self):
        graph = DependencyGraph(["x.py"])
        assert graph.in_degree("missing.py") == 0
        assert graph.dependencies("missing.py") == []

    def test_duplicate_edges_counted_once(self):
        graph = DependencyGraph()
        graph.add_edge("a", "b")
        graph.add_edge("a", "b")
        assert graph.out_degree("a") == 1
        assert graph.nodes == ["a", "b"]
