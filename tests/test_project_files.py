"""Tests for collecting source files from a project directory."""

from pathlib import Path

from context_curator.project_files import collect_files


def test_sample_project(sample_project_path: Path):
    result = collect_files(sample_project_path)
    paths = sorted(f["path"] for f in result.files)
    assert paths == [
        "app/__init__.py",
        "app/billing.py",
        "app/models.py",
        "src/auth/login.ts",
        "src/config.ts",
        "src/main.ts",
        "src/utils/crypto.ts",
        "src/utils/format.ts",
    ]
    # node_modules and the gitignored file
    assert result.skipped_ignored == 2
    assert result.skipped_unsupported >= 1


def test_gitignore_can_be_disabled(sample_project_path: Path):
    paths = {f["path"] for f in collect_files(sample_project_path, respect_gitignore=False).files}
    assert "src/generated.ts" in paths
    assert not any(p.startswith("node_modules/") for p in paths)


def test_nested_gitignore_is_scoped_to_its_directory(temp_dir: Path):
    (temp_dir / "pkg").mkdir()
    (temp_dir / "other").mkdir()
    (temp_dir / "pkg" / ".gitignore").write_text("secret.py\n")
    (temp_dir / "pkg" / "secret.py").write_text("TOKEN = 1\n")
    (temp_dir / "pkg" / "ok.py").write_text("x = 1\n")
    (temp_dir / "other" / "secret.py").write_text("y = 2\n")

    paths = sorted(f["path"] for f in collect_files(temp_dir).files)
    assert paths == ["other/secret.py", "pkg/ok.py"]


def test_content_is_read(temp_dir: Path):
    (temp_dir / "a.py").write_text("def a():\n    return 1\n")
    files = collect_files(temp_dir).files
    assert files == [{"path": "a.py", "content": "def a():\n    return 1\n"}]


def test_unreadable_and_oversized_files_skipped(temp_dir: Path):
    (temp_dir / "bad.py").write_bytes(b"\xff\xfe\x00\x81 not utf-8")
    (temp_dir / "big.py").write_text("x = 1\n" * 100)
    (temp_dir / "small.py").write_text("y = 2\n")

    result = collect_files(temp_dir, max_file_bytes=100)

    assert [f["path"] for f in result.files] == ["small.py"]
    assert result.skipped_unreadable == 1


def test_minified_bundles_skipped(temp_dir: Path):
    (temp_dir / "app.min.js").write_text("function a(){}")
    (temp_dir / "types.d.ts").write_text("declare const x: number")
    (temp_dir / "app.js").write_text("function a() {}")
    assert [f["path"] for f in collect_files(temp_dir).files] == ["app.js"]
