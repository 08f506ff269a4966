"""
安全/风险模式扫描（基于新增行的正则匹配）。

特点：
- 确定性：只看 diff 中新增的行
- 同一行同一类问题只报一次
"""

from __future__ import annotations

import re

from reviewgate.analyzers.builtin.common import iter_added_lines
from reviewgate.analyzers.builtin.common import make_finding
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.review.models import Finding
from reviewgate.review.models import Severity

ANALYZER_ID = "security"

_CREDENTIAL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"""(?i)\b[\w.-]*(password|passwd|pwd|secret|api[_-]?key|access[_-]?key|auth[_-]?token|token)\b"""
        r"""["']?\s*[:=]\s*["'][^"'\s]{4,}["']"""
    ),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b"),
)
_PRIVATE_KEY = re.compile(r"-----BEGIN (?:RSA |EC |OPENSSH |DSA |PGP )?PRIVATE KEY( BLOCK)?-----")
_DANGEROUS_CALLS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?<![\w.])(eval|exec)\s*\("), "dynamic code execution via eval/exec"),
    (re.compile(r"\bpickle\.loads?\s*\("), "unpickling data that may be untrusted"),
    (re.compile(r"\bshell\s*=\s*True\b"), "subprocess call with shell=True"),
    (re.compile(r"\byaml\.load\s*\((?![^)]*Loader)"), "yaml.load without an explicit safe Loader"),
)
# 明显是占位符的值不报
_PLACEHOLDER_VALUES = re.compile(r"""[:=]\s*["'](changeme|example|dummy|xxx+|\*+|<[^>]+>|\$\{[^}]+\})["']""", re.I)


def analyze(view: ChangesetView) -> list[Finding]:
    findings: list[Finding] = []
    for change, line_no, text in iter_added_lines(view):
        if _PRIVATE_KEY.search(text):
            findings.append(
                make_finding(
                    ANALYZER_ID,
                    "security.private-key",
                    Severity.CRITICAL,
                    change,
                    line_no,
                    "Private key material committed to the repository.",
                    suggested_fix="Remove the key, rotate it, and load it from a secret store.",
                )
            )
            continue
        if any(p.search(text) for p in _CREDENTIAL_PATTERNS) and not _PLACEHOLDER_VALUES.search(text):
            findings.append(
                make_finding(
                    ANALYZER_ID,
                    "security.hardcoded-credential",
                    Severity.CRITICAL,
                    change,
                    line_no,
                    "Hard-coded credential literal; anyone with read access to the code can use it.",
                    suggested_fix="Read the value from the environment or a secret manager and rotate the exposed secret.",
                )
            )
        for pattern, description in _DANGEROUS_CALLS:
            if pattern.search(text):
                findings.append(
                    make_finding(
                        ANALYZER_ID,
                        "security.dangerous-call",
                        Severity.HIGH,
                        change,
                        line_no,
                        f"Potentially unsafe construct: {description}.",
                    )
                )
                break
    return findings
