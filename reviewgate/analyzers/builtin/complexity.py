"""
复杂度分析（Python AST）。

说明：
- 有完整文件内容时解析全文；只有 diff 时，仅当文件是从第 1 行开始的全新文件才能解析（行号才对得上）
- 只报告与本次变更行有交集的函数
- 解析失败抛 AnalyzerError（上游记为 crashed），不返回“半截结果”
"""

from __future__ import annotations

import ast
import logging

from reviewgate.analyzers.builtin.common import changed_line_set
from reviewgate.analyzers.builtin.common import int_option
from reviewgate.analyzers.builtin.common import iter_files
from reviewgate.analyzers.builtin.common import make_finding
from reviewgate.analyzers.invocation import AnalyzerError
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.review.models import FileChange
from reviewgate.review.models import Finding
from reviewgate.review.models import Severity

logger = logging.getLogger(__name__)

ANALYZER_ID = "complexity"

_BRANCH_NODES = (
    ast.If,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.Try,
    ast.With,
    ast.AsyncWith,
    ast.Match,
    ast.BoolOp,
    ast.IfExp,
    ast.comprehension,
)


def analyze(view: ChangesetView) -> list[Finding]:
    max_branches = int_option(view, "max_branches", 10)
    max_function_lines = int_option(view, "max_function_lines", 50)
    findings: list[Finding] = []
    for change in iter_files(view):
        if change.language != "python":
            continue
        source = _source_for(change)
        if source is None:
            logger.debug(f"No full source for {change.path}; skipping complexity analysis")
            continue
        try:
            tree = ast.parse(source, filename=change.path)
        except SyntaxError as exc:
            raise AnalyzerError(f"cannot parse {change.path}: {exc.msg} (line {exc.lineno})") from exc

        changed = changed_line_set(change)
        for node in ast.walk(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            start = node.lineno
            end = node.end_lineno or node.lineno
            if not any(start <= line <= end for line in changed):
                continue
            branches = calc_branch_complexity(node)
            if branches > max_branches:
                findings.append(
                    make_finding(
                        ANALYZER_ID,
                        "complexity.cyclomatic",
                        Severity.MEDIUM,
                        change,
                        start,
                        f"Function `{node.name}` has cyclomatic complexity {branches} (limit {max_branches}).",
                        end=end,
                        suggested_fix="Split the function or replace nested branches with early returns.",
                    )
                )
            length = end - start + 1
            if length > max_function_lines:
                findings.append(
                    make_finding(
                        ANALYZER_ID,
                        "complexity.long-function",
                        Severity.MEDIUM,
                        change,
                        start,
                        f"Function `{node.name}` spans {length} lines (limit {max_function_lines}).",
                        end=end,
                        suggested_fix="Extract cohesive blocks into helper functions.",
                    )
                )
    return findings


def calc_branch_complexity(node: ast.AST) -> int:
    """近似圈复杂度：统计常见分支节点数量 + 1（不进入嵌套函数/类）。"""
    count = 1
    stack = list(ast.iter_child_nodes(node))
    while stack:
        child = stack.pop()
        if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)):
            continue
        if isinstance(child, _BRANCH_NODES):
            count += 1
        stack.extend(ast.iter_child_nodes(child))
    return count


def _source_for(change: FileChange) -> str | None:
    if change.content is not None:
        return change.content
    hunks = change.diff_hunks
    if change.is_new_file and len(hunks) == 1 and hunks[0].new_start == 1:
        return "\n".join(text for _, text in change.added_lines())
    return None
