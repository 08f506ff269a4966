"""
可维护性检查（语言无关的文本启发式）。

- 函数长度：Python 按缩进、花括号语言按括号配对估算函数范围
- 新增行中的 TODO/FIXME 标记、超长行
"""

from __future__ import annotations

import re

from reviewgate.analyzers.builtin.common import changed_line_set
from reviewgate.analyzers.builtin.common import int_option
from reviewgate.analyzers.builtin.common import iter_files
from reviewgate.analyzers.builtin.common import make_finding
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.review.models import FileChange
from reviewgate.review.models import Finding
from reviewgate.review.models import Severity

ANALYZER_ID = "maintainability"

_PY_DEF = re.compile(r"^(\s*)(async\s+)?def\s+(\w+)")
_BRACE_FUNC = re.compile(r"^\s*(?:export\s+)?(?:async\s+)?(?:func|function|fn)\s+(?:\([^)]*\)\s*)?(\w+)")
_TODO = re.compile(r"\b(TODO|FIXME|XXX|HACK)\b")
_BRACE_LANGUAGES = frozenset({"javascript", "typescript", "go", "rust", "php", "java"})


def analyze(view: ChangesetView) -> list[Finding]:
    max_function_lines = int_option(view, "max_function_lines", 50)
    max_line_length = int_option(view, "max_line_length", 120)
    findings: list[Finding] = []
    for change in iter_files(view):
        if change.content is not None:
            findings.extend(_long_functions(change=change, content=change.content, max_function_lines=max_function_lines))
        for line_no, text in change.added_lines():
            if _TODO.search(text):
                findings.append(
                    make_finding(
                        ANALYZER_ID,
                        "maintainability.todo-marker",
                        Severity.LOW,
                        change,
                        line_no,
                        "New TODO/FIXME marker; track the follow-up in the issue tracker.",
                    )
                )
            if len(text) > max_line_length:
                findings.append(
                    make_finding(
                        ANALYZER_ID,
                        "maintainability.line-length",
                        Severity.LOW,
                        change,
                        line_no,
                        f"Line is {len(text)} characters long (limit {max_line_length}).",
                    )
                )
    return findings


def _long_functions(change: FileChange, content: str, max_function_lines: int) -> list[Finding]:
    lines = content.splitlines()
    if change.language == "python":
        spans = python_function_spans(lines)
    elif change.language in _BRACE_LANGUAGES:
        spans = brace_function_spans(lines)
    else:
        return []
    changed = changed_line_set(change)
    findings: list[Finding] = []
    for name, start, end in spans:
        length = end - start + 1
        if length <= max_function_lines:
            continue
        if not any(start <= line <= end for line in changed):
            continue
        findings.append(
            make_finding(
                ANALYZER_ID,
                "maintainability.function-length",
                Severity.LOW,
                change,
                start,
                f"`{name}` is {length} lines long; long functions are hard to review and test.",
                end=end,
            )
        )
    return findings


def python_function_spans(lines: list[str]) -> list[tuple[str, int, int]]:
    """按缩进估算 Python 函数范围，返回 (name, start, end)，行号从 1 开始。"""
    spans: list[tuple[str, int, int]] = []
    for idx, line in enumerate(lines):
        match = _PY_DEF.match(line)
        if not match:
            continue
        indent = len(match.group(1).expandtabs())
        end = idx
        for j in range(idx + 1, len(lines)):
            candidate = lines[j]
            if not candidate.strip():
                continue
            candidate_indent = len(candidate) - len(candidate.lstrip())
            if candidate_indent <= indent and not candidate.lstrip().startswith((")", "]", "}")):
                break
            end = j
        spans.append((match.group(3), idx + 1, end + 1))
    return spans


def brace_function_spans(lines: list[str]) -> list[tuple[str, int, int]]:
    """按花括号配对估算函数范围（忽略字符串里的括号，启发式即可）。"""
    spans: list[tuple[str, int, int]] = []
    for idx, line in enumerate(lines):
        match = _BRACE_FUNC.match(line)
        if not match:
            continue
        depth = 0
        opened = False
        end = idx
        for j in range(idx, len(lines)):
            depth += lines[j].count("{") - lines[j].count("}")
            if "{" in lines[j]:
                opened = True
            if opened and depth <= 0:
                end = j
                break
        else:
            end = len(lines) - 1
        spans.append((match.group(1), idx + 1, end + 1))
    return spans
