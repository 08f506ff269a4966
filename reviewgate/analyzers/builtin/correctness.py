from __future__ import annotations

import re

from reviewgate.analyzers.builtin.common import iter_added_lines
from reviewgate.analyzers.builtin.common import make_finding
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.review.models import Finding
from reviewgate.review.models import Severity

ANALYZER_ID = "correctness"

_SQL_STATEMENT = re.compile(
    r"(?i)\b(select\s+.+?\s+from|insert\s+into|update\s+\w+\s+set|delete\s+from)\b"
)
# 字符串拼接 / f-string / % 格式化 / .format()
_STRING_BUILDING = re.compile(r"""(["']\s*\+)|(\+\s*["'])|(\bf["'])|(["']\s*%\s*[\w(])|(["']\s*\.format\s*\()""")
_BARE_EXCEPT = re.compile(r"^\s*except\s*:")
_NONE_COMPARISON = re.compile(r"[!=]=\s*None\b")


def analyze(view: ChangesetView) -> list[Finding]:
    findings: list[Finding] = []
    for change, line_no, text in iter_added_lines(view):
        if _SQL_STATEMENT.search(text) and _STRING_BUILDING.search(text):
            findings.append(
                make_finding(
                    ANALYZER_ID,
                    "correctness.sql-string-building",
                    Severity.HIGH,
                    change,
                    line_no,
                    "SQL query is assembled from string fragments; values are not escaped and the query "
                    "breaks (or is injectable) when they contain quotes.",
                    suggested_fix="Use a parameterized query and pass values as bind parameters.",
                )
            )
            continue
        if change.language == "python" and _BARE_EXCEPT.search(text):
            findings.append(
                make_finding(
                    ANALYZER_ID,
                    "correctness.bare-except",
                    Severity.MEDIUM,
                    change,
                    line_no,
                    "Bare `except:` also catches KeyboardInterrupt and SystemExit.",
                    suggested_fix="Catch the specific exception types (or at least `Exception`).",
                )
            )
            continue
        if change.language == "python" and _NONE_COMPARISON.search(text):
            findings.append(
                make_finding(
                    ANALYZER_ID,
                    "correctness.none-comparison",
                    Severity.LOW,
                    change,
                    line_no,
                    "Comparison to None with ==/!=.",
                    suggested_fix="Use `is None` / `is not None`.",
                )
            )
    return findings
