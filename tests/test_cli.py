from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from reviewgate.cli import app

runner = CliRunner()

CREDENTIALS_AND_SQL = "\n".join(
    [
        "import sqlite3",
        "",
        'DB_PASSWORD = "hunter2secret"',
        "",
        "",
        "def find_user(conn, name):",
        "    query = \"SELECT * FROM users WHERE name = '\" + name + \"'\"",
        "    return conn.execute(query).fetchall()",
        "",
    ]
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "LLM_BASE_URL",
        "LLM_API_KEY",
        "LLM_MODEL",
        "REVIEWGATE_MAX_PARALLEL",
        "REVIEWGATE_SESSION_TIMEOUT",
        "REVIEWGATE_GRACE_PERIOD",
        "REVIEWGATE_CACHE_DIR",
        "REVIEWGATE_POLICY_PATH",
        "REVIEWGATE_REGISTRY_PATH",
    ):
        monkeypatch.delenv(key, raising=False)


def test_review_blocking_change_exits_2(tmp_path: Path) -> None:
    path = tmp_path / "app.py"
    path.write_text(CREDENTIALS_AND_SQL, encoding="utf-8")
    result = runner.invoke(app, ["review", str(path), "--format", "json"])
    assert result.exit_code == 2
    data = json.loads(result.stdout)
    assert data["verdict"] == "block"
    assert data["summary"]["critical"] == 1
    assert data["summary"]["high"] == 1


def test_review_clean_docs_exits_0(tmp_path: Path) -> None:
    path = tmp_path / "README.md"
    path.write_text("# Project\n\nThis project reviews changes before they land.\n", encoding="utf-8")
    result = runner.invoke(app, ["review", str(path)])
    assert result.exit_code == 0
    assert "Review verdict: PASS" in result.stdout


def test_review_policy_can_downgrade_to_warn(tmp_path: Path) -> None:
    path = tmp_path / "app.py"
    path.write_text(CREDENTIALS_AND_SQL, encoding="utf-8")
    policy = tmp_path / "policy.yaml"
    policy.write_text("tiers:\n  critical: warning\n  high: warning\n", encoding="utf-8")
    result = runner.invoke(app, ["review", str(path), "--policy", str(policy)])
    assert result.exit_code == 1


def test_review_diff_from_stdin(tmp_path: Path) -> None:
    diff = "\n".join(
        [
            "diff --git a/app.py b/app.py",
            "--- a/app.py",
            "+++ b/app.py",
            "@@ -1,2 +1,3 @@",
            " import os",
            '+API_KEY = "sk-live-abcdef123456"',
            " print(os.name)",
            "",
        ]
    )
    result = runner.invoke(app, ["review", "--diff", "-", "--format", "json"], input=diff)
    assert result.exit_code == 2
    data = json.loads(result.stdout)
    assert data["findings"][0]["category"] == "security.hardcoded-credential"
    assert data["findings"][0]["line_range"] == [2, 2]


def test_review_explicit_analyzers(tmp_path: Path) -> None:
    path = tmp_path / "app.py"
    path.write_text(CREDENTIALS_AND_SQL, encoding="utf-8")
    result = runner.invoke(app, ["review", str(path), "--analyzers", "correctness", "--format", "json"])
    assert result.exit_code == 2
    data = json.loads(result.stdout)
    assert [a["analyzer_id"] for a in data["analyzers"]] == ["correctness"]
    assert data["summary"]["critical"] == 0


def test_review_unknown_analyzer_exits_3(tmp_path: Path) -> None:
    path = tmp_path / "app.py"
    path.write_text("x = 1\n", encoding="utf-8")
    result = runner.invoke(app, ["review", str(path), "--analyzers", "nope"])
    assert result.exit_code == 3


def test_review_without_applicable_analyzers_exits_3(tmp_path: Path) -> None:
    path = tmp_path / "logo.png"
    path.write_bytes(b"not really a png")
    result = runner.invoke(app, ["review", str(path), "--format", "json"])
    assert result.exit_code == 3


def test_review_requires_exactly_one_input(tmp_path: Path) -> None:
    assert runner.invoke(app, ["review"]).exit_code == 3
    path = tmp_path / "a.py"
    path.write_text("x = 1\n", encoding="utf-8")
    assert runner.invoke(app, ["review", str(path), "--diff", "-"], input="").exit_code == 3


def test_review_invalid_timeout_exits_3(tmp_path: Path) -> None:
    path = tmp_path / "a.py"
    path.write_text("x = 1\n", encoding="utf-8")
    assert runner.invoke(app, ["review", str(path), "--timeout", "soon"]).exit_code == 3


def test_review_invalid_registry_exits_3(tmp_path: Path) -> None:
    path = tmp_path / "a.py"
    path.write_text("x = 1\n", encoding="utf-8")
    registry = tmp_path / "analyzers.yaml"
    registry.write_text("analyzers:\n  - id: bad\n    kind: command\n    rule:\n      path_regex: '('\n", encoding="utf-8")
    assert runner.invoke(app, ["review", str(path), "--registry", str(registry)]).exit_code == 3


def test_review_missing_file_exits_3(tmp_path: Path) -> None:
    assert runner.invoke(app, ["review", str(tmp_path / "missing.py")]).exit_code == 3


def test_review_with_cache_dir_is_stable(tmp_path: Path) -> None:
    path = tmp_path / "app.py"
    path.write_text(CREDENTIALS_AND_SQL, encoding="utf-8")
    args = ["review", str(path), "--format", "json", "--cache-dir", str(tmp_path / "cache")]
    cold = runner.invoke(app, args)
    warm = runner.invoke(app, args)
    assert cold.exit_code == warm.exit_code == 2
    assert cold.stdout == warm.stdout


def test_analyzers_command_lists_registry() -> None:
    result = runner.invoke(app, ["analyzers"])
    assert result.exit_code == 0
    for analyzer_id in ("security", "correctness", "complexity", "maintainability", "documentation"):
        assert analyzer_id in result.stdout


def test_review_same_file_spelled_twice_is_reviewed_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "README.md").write_text("# Project\n\nThis project reviews changes before they land.\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["review", "README.md", "./README.md", "--format", "json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["file_count"] == 1
