from __future__ import annotations

from collections.abc import Iterator

from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.review.models import FileChange
from reviewgate.review.models import Finding
from reviewgate.review.models import Severity

CODE_EXTENSIONS: tuple[str, ...] = (
    ".py",
    ".js",
    ".jsx",
    ".ts",
    ".tsx",
    ".go",
    ".java",
    ".rb",
    ".php",
    ".rs",
    ".sql",
    ".sh",
    ".zsh",
    ".bash",
)
CONFIG_EXTENSIONS: tuple[str, ...] = (".yaml", ".yml", ".json", ".toml", ".ini", ".cfg", ".env", ".properties")
DOC_EXTENSIONS: tuple[str, ...] = (".md", ".rst", ".txt", ".adoc")


def iter_files(view: ChangesetView) -> Iterator[FileChange]:
    """逐文件迭代；每个文件之前检查一次取消信号。"""
    for change in view.file_list:
        view.check_cancelled()
        if change.is_deleted_file:
            continue
        yield change


def iter_added_lines(view: ChangesetView) -> Iterator[tuple[FileChange, int, str]]:
    for change in iter_files(view):
        for line_no, text in change.added_lines():
            yield change, line_no, text


def make_finding(
    analyzer_id: str,
    category: str,
    severity: Severity,
    change: FileChange,
    start: int,
    message: str,
    end: int | None = None,
    suggested_fix: str | None = None,
) -> Finding:
    return Finding(
        source_analyzer_id=analyzer_id,
        category=category,
        severity=severity,
        file_path=change.path,
        line_range=(start, end if end is not None else start),
        message=message,
        suggested_fix=suggested_fix,
    )


def changed_line_set(change: FileChange) -> set[int]:
    return {line_no for line_no, _ in change.added_lines()}


def int_option(view: ChangesetView, key: str, default: int) -> int:
    value = view.analyzer_config.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"analyzer option {key} must be a positive integer, got {value!r}")
    return value
