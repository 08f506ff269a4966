from __future__ import annotations

import re

from reviewgate.analyzers.builtin.common import iter_files
from reviewgate.analyzers.builtin.common import make_finding
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.review.models import Finding
from reviewgate.review.models import Severity

ANALYZER_ID = "documentation"

_PLACEHOLDER = re.compile(r"(?i)\b(TBD|lorem ipsum|TODO|FIXME)\b")
_EMPTY_LINK = re.compile(r"\[[^\]]+\]\(\s*\)")
_FENCE = re.compile(r"^\s*(```|~~~)(.*)$")


def analyze(view: ChangesetView) -> list[Finding]:
    findings: list[Finding] = []
    for change in iter_files(view):
        in_fence = False
        for line_no, text in change.added_lines():
            fence = _FENCE.match(text)
            if fence:
                if not in_fence and change.language == "markdown" and not fence.group(2).strip():
                    findings.append(
                        make_finding(
                            ANALYZER_ID,
                            "documentation.unlabeled-code-fence",
                            Severity.LOW,
                            change,
                            line_no,
                            "Code block without a language tag renders without highlighting.",
                            suggested_fix="Add the language after the opening fence, e.g. ```python.",
                        )
                    )
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            if _PLACEHOLDER.search(text):
                findings.append(
                    make_finding(
                        ANALYZER_ID,
                        "documentation.placeholder",
                        Severity.LOW,
                        change,
                        line_no,
                        "Placeholder text left in documentation.",
                    )
                )
            if _EMPTY_LINK.search(text):
                findings.append(
                    make_finding(
                        ANALYZER_ID,
                        "documentation.empty-link",
                        Severity.LOW,
                        change,
                        line_no,
                        "Link with an empty target.",
                    )
                )
    return findings
