from __future__ import annotations

import random
from typing import Any

from reviewgate.review.aggregator import aggregate
from reviewgate.review.aggregator import normalize_path
from reviewgate.review.models import AnalyzerOutcome
from reviewgate.review.models import OutcomeStatus
from reviewgate.review.models import Severity


def _finding(
    category: str = "security.sql",
    severity: str = "medium",
    path: str = "app.py",
    lines: tuple[int, int] = (10, 10),
    message: str = "problem",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "category": category,
        "severity": severity,
        "file_path": path,
        "line_range": list(lines),
        "message": message,
        **extra,
    }


def _ok(analyzer_id: str, *findings: Any) -> AnalyzerOutcome:
    return AnalyzerOutcome(analyzer_id=analyzer_id, status=OutcomeStatus.OK, findings=tuple(findings))


def test_overlapping_findings_merge_with_max_severity() -> None:
    result = aggregate(
        [
            _ok("alpha", _finding(severity="medium", lines=(10, 12))),
            _ok("beta", _finding(severity="high", lines=(12, 14))),
        ]
    )
    assert len(result.merged) == 1
    merged = result.merged[0]
    assert merged.severity == Severity.HIGH
    assert merged.line_range == (10, 14)
    assert merged.contributing_sources == ("alpha", "beta")
    assert len(merged.contributing_ids) == 2
    assert merged.dedupe_key == "app.py::security.sql::10-14"


def test_overlap_is_transitive() -> None:
    result = aggregate(
        [
            _ok("a", _finding(lines=(1, 5))),
            _ok("b", _finding(lines=(5, 9))),
            _ok("c", _finding(lines=(9, 12))),
        ]
    )
    assert len(result.merged) == 1
    assert result.merged[0].line_range == (1, 12)


def test_disjoint_ranges_and_categories_stay_separate() -> None:
    result = aggregate(
        [
            _ok("a", _finding(lines=(1, 2)), _finding(lines=(20, 21))),
            _ok("b", _finding(category="style.naming", lines=(1, 2))),
        ]
    )
    assert len(result.merged) == 3


def test_category_family_merges_aliases() -> None:
    result = aggregate(
        [
            _ok("complexity", _finding(category="complexity.long-function", lines=(40, 97), message="long")),
            _ok(
                "maintainability",
                _finding(category="maintainability.function-length", severity="low", lines=(40, 97), message="longer"),
            ),
        ]
    )
    assert len(result.merged) == 1
    assert result.merged[0].contributing_sources == ("complexity", "maintainability")
    assert result.merged[0].severity == Severity.MEDIUM


def test_custom_category_family() -> None:
    result = aggregate(
        [
            _ok("a", _finding(category="lint.sqli")),
            _ok("b", _finding(category="security.sql")),
        ],
        category_families={"lint.sqli": "security.sql"},
    )
    assert len(result.merged) == 1


def test_message_tie_break_prefers_authoritative_then_longest_then_id() -> None:
    authoritative = aggregate(
        [
            _ok("a", _finding(message="a much longer description of the issue")),
            _ok("b", _finding(message="short", authoritative=True)),
        ]
    )
    assert authoritative.merged[0].message == "short"

    longest = aggregate([_ok("a", _finding(message="short")), _ok("b", _finding(message="the longest one"))])
    assert longest.merged[0].message == "the longest one"

    by_id = aggregate([_ok("zed", _finding(message="same-size-x")), _ok("abe", _finding(message="same-size-y"))])
    assert by_id.merged[0].message == "same-size-y"


def test_suggested_fix_falls_back_to_any_contributor() -> None:
    result = aggregate(
        [
            _ok("a", _finding(message="the chosen, longest message")),
            _ok("b", _finding(message="short", suggested_fix="use bind parameters")),
        ]
    )
    assert result.merged[0].message == "the chosen, longest message"
    assert result.merged[0].suggested_fix == "use bind parameters"


def test_malformed_findings_are_dropped_with_diagnostics() -> None:
    result = aggregate(
        [
            _ok(
                "noisy",
                _finding(),
                {"category": "x"},
                _finding(severity="catastrophic"),
                _finding(lines=(9, 3)),
                "not an object",
            )
        ]
    )
    assert len(result.merged) == 1
    assert len(result.diagnostics) == 4
    assert all(d.analyzer_id == "noisy" for d in result.diagnostics)
    assert all(d.message.startswith("dropped malformed finding #") for d in result.diagnostics)


def test_only_ok_outcomes_contribute() -> None:
    result = aggregate(
        [
            AnalyzerOutcome(analyzer_id="dead", status=OutcomeStatus.CRASHED, diagnostic_message="boom"),
            AnalyzerOutcome(analyzer_id="slow", status=OutcomeStatus.TIMEOUT),
            _ok("alive", _finding()),
        ]
    )
    assert len(result.merged) == 1
    assert result.merged[0].contributing_sources == ("alive",)


def test_paths_are_normalized_before_grouping() -> None:
    result = aggregate([_ok("a", _finding(path="./src/app.py")), _ok("b", _finding(path="src/app.py"))])
    assert len(result.merged) == 1
    assert result.merged[0].file_path == "src/app.py"
    assert normalize_path("src\\pkg\\..\\app.py") == "src/app.py"


def test_output_is_sorted_by_severity_then_location() -> None:
    result = aggregate(
        [
            _ok(
                "a",
                _finding(severity="low", path="a.py", lines=(1, 1), category="c1"),
                _finding(severity="critical", path="z.py", lines=(5, 5), category="c2"),
                _finding(severity="critical", path="b.py", lines=(9, 9), category="c3"),
                _finding(severity="high", path="a.py", lines=(3, 3), category="c4"),
            )
        ]
    )
    assert [(m.severity.value, m.file_path) for m in result.merged] == [
        ("critical", "b.py"),
        ("critical", "z.py"),
        ("high", "a.py"),
        ("low", "a.py"),
    ]


def test_aggregation_is_independent_of_completion_order() -> None:
    outcomes = [
        _ok("a", _finding(lines=(1, 3)), _finding(category="c.other", lines=(7, 7), severity="high")),
        _ok("b", _finding(lines=(2, 4), severity="low", message="b says"), _finding(path="x.py")),
        _ok("c", _finding(lines=(3, 3), severity="critical", message="c says something longer")),
        _ok("d", {"broken": True}),
    ]
    expected = aggregate(outcomes)
    rng = random.Random(7)
    for _ in range(10):
        shuffled = [o.model_copy(update={"findings": tuple(rng.sample(o.findings, len(o.findings)))}) for o in outcomes]
        rng.shuffle(shuffled)
        actual = aggregate(shuffled)
        assert [m.model_dump() for m in actual.merged] == [m.model_dump() for m in expected.merged]
        assert [d.model_dump() for d in actual.diagnostics] == [d.model_dump() for d in expected.diagnostics]


def test_aggregate_empty() -> None:
    result = aggregate([])
    assert result.merged == []
    assert result.diagnostics == []
