from __future__ import annotations

from pathlib import Path

import pytest

from reviewgate.review.context import build_changeset_from_diff
from reviewgate.review.context import build_changeset_from_paths
from reviewgate.review.context import build_file_change_from_content
from reviewgate.review.context import infer_language_from_path
from reviewgate.review.models import Changeset


def test_infer_language_from_path() -> None:
    assert infer_language_from_path("src/app.py") == "python"
    assert infer_language_from_path("web/App.TSX") == "typescript"
    assert infer_language_from_path("deploy/Dockerfile") == "dockerfile"
    assert infer_language_from_path(".env.production") == "dotenv"
    assert infer_language_from_path("blob.bin") == "unknown"


def test_build_changeset_from_diff_sorts_files_and_reads_root(tmp_path: Path) -> None:
    (tmp_path / "b.py").write_text("import os\nimport sys\n", encoding="utf-8")
    diff = "\n".join(
        [
            "--- a/b.py",
            "+++ b/b.py",
            "@@ -1,1 +1,2 @@",
            " import os",
            "+import sys",
            "--- a/a.md",
            "+++ b/a.md",
            "@@ -1,1 +1,1 @@",
            "-old",
            "+new",
        ]
    )
    changeset = build_changeset_from_diff(diff, root=str(tmp_path))
    assert [f.path for f in changeset.files] == ["a.md", "b.py"]
    md, py = changeset.files
    assert md.content is None
    assert py.content == "import os\nimport sys\n"
    assert py.language == "python"
    assert py.changed_line_count == 1


def test_changeset_identity_tracks_content() -> None:
    one = Changeset(files=(build_file_change_from_content("a.py", "x = 1\n"),))
    same = Changeset(files=(build_file_change_from_content("a.py", "x = 1\n"),))
    other = Changeset(files=(build_file_change_from_content("a.py", "x = 2\n"),))
    assert one.identity == same.identity
    assert one.identity != other.identity


def test_changeset_rejects_duplicate_paths() -> None:
    change = build_file_change_from_content("a.py", "x = 1\n")
    with pytest.raises(ValueError):
        Changeset(files=(change, change))


def test_build_changeset_from_paths_marks_every_line_added(tmp_path: Path) -> None:
    (tmp_path / "notes.md").write_text("# Notes\n\nHello\n", encoding="utf-8")
    changeset = build_changeset_from_paths(["notes.md"], root=str(tmp_path))
    (change,) = changeset.files
    assert change.path == "notes.md"
    assert change.is_new_file
    assert [line_no for line_no, _ in change.added_lines()] == [1, 2, 3]


def test_build_changeset_from_paths_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        build_changeset_from_paths(["missing.py"], root=str(tmp_path))


def test_empty_file_has_no_hunks() -> None:
    change = build_file_change_from_content("empty.py", "")
    assert change.diff_hunks == ()
    assert change.changed_line_count == 0


def test_build_changeset_from_paths_normalizes_before_dedupe(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")
    changeset = build_changeset_from_paths(["a.py", "./a.py", "sub/../a.py"], root=str(tmp_path))
    assert [f.path for f in changeset.files] == ["a.py"]
