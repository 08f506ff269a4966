"""
Result Aggregator（确定性合并）。

流程：
1. 只展开 status=ok 的 outcome；每条原始 payload 校验为 Finding，不合法的丢弃并记录 Diagnostic
2. 按 (file_path, category family) 分组，组内行范围有交集（可传递）的 finding 视为同一个问题
3. 每簇合成一个 MergedFinding：severity 取最大；message 选 authoritative > 最长 > analyzer id 字典序
4. 排序：severity（critical -> low）、file_path、起始行、dedupe_key

输出与 analyzer 完成顺序无关（输入先排序，tie-break 全部显式）。
"""

from __future__ import annotations

import hashlib
import json
import logging
import posixpath
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from reviewgate.review.models import AnalyzerOutcome
from reviewgate.review.models import Diagnostic
from reviewgate.review.models import Finding
from reviewgate.review.models import MergedFinding
from reviewgate.review.models import OutcomeStatus
from reviewgate.review.models import max_severity

logger = logging.getLogger(__name__)

# 不同 analyzer 对同一类问题的不同叫法
DEFAULT_CATEGORY_FAMILIES: dict[str, str] = {
    "complexity.long-function": "function-size",
    "maintainability.function-length": "function-size",
}

MAX_DIAGNOSTIC_PAYLOAD_CHARS = 500


@dataclass(frozen=True)
class AggregationResult:
    merged: list[MergedFinding] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


def aggregate(
    outcomes: Iterable[AnalyzerOutcome],
    category_families: Mapping[str, str] | None = None,
) -> AggregationResult:
    families = {**DEFAULT_CATEGORY_FAMILIES, **(category_families or {})}
    findings, diagnostics = collect_findings(outcomes)

    groups: dict[tuple[str, str], list[Finding]] = {}
    for finding in findings:
        group_key = (finding.file_path, category_family(finding.category, families))
        groups.setdefault(group_key, []).append(finding)

    merged: list[MergedFinding] = []
    for (path, family), group in groups.items():
        for cluster in _cluster_overlapping(group):
            merged.append(_merge_cluster(path=path, family=family, cluster=cluster))

    merged.sort(key=lambda m: (m.severity.rank, m.file_path, m.line_range[0], m.dedupe_key))
    logger.info(
        f"Aggregated {len(findings)} finding(s) into {len(merged)} merged finding(s); "
        f"{len(diagnostics)} dropped"
    )
    return AggregationResult(merged=merged, diagnostics=diagnostics)


def collect_findings(outcomes: Iterable[AnalyzerOutcome]) -> tuple[list[Finding], list[Diagnostic]]:
    """展开并校验 ok outcome 的 finding；crashed/timeout/skipped 不贡献 finding。"""
    findings: list[Finding] = []
    diagnostics: list[Diagnostic] = []
    for outcome in sorted(outcomes, key=lambda o: o.analyzer_id):
        if outcome.status != OutcomeStatus.OK:
            continue
        for index, item in enumerate(outcome.findings):
            try:
                finding = _parse_finding(analyzer_id=outcome.analyzer_id, item=item)
            except (ValidationError, TypeError) as exc:
                diagnostics.append(
                    Diagnostic(
                        analyzer_id=outcome.analyzer_id,
                        message=f"dropped malformed finding #{index}: {_describe_error(exc)}",
                        payload=_payload_preview(item),
                    )
                )
                continue
            findings.append(finding)
    for diagnostic in diagnostics:
        logger.warning(f"Analyzer {diagnostic.analyzer_id}: {diagnostic.message}")
    return findings, diagnostics


def category_family(category: str, families: Mapping[str, str]) -> str:
    normalized = category.strip().lower()
    return families.get(normalized, normalized)


def normalize_path(path: str) -> str:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    if normalized.startswith("./"):
        return normalized[2:]
    return normalized


def _parse_finding(analyzer_id: str, item: Any) -> Finding:
    if not isinstance(item, dict):
        raise TypeError(f"expected an object, got {type(item).__name__}")
    data = {k: v for k, v in item.items() if k not in ("id", "dedupe_key")}
    data["source_analyzer_id"] = analyzer_id
    finding = Finding.model_validate(data)
    path = normalize_path(finding.file_path)
    return finding.model_copy(update={"file_path": path, "id": _finding_id(finding, path)})


def _finding_id(finding: Finding, path: str) -> str:
    signature = json.dumps(
        [
            finding.source_analyzer_id,
            finding.category,
            finding.severity.value,
            path,
            list(finding.line_range),
            finding.message,
        ]
    )
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()[:16]


def _cluster_overlapping(group: list[Finding]) -> list[list[Finding]]:
    ordered = sorted(group, key=lambda f: (f.line_range[0], f.line_range[1], f.source_analyzer_id, f.id))
    clusters: list[list[Finding]] = []
    current: list[Finding] = []
    current_end = 0
    for finding in ordered:
        start, end = finding.line_range
        if current and start <= current_end:
            current.append(finding)
            current_end = max(current_end, end)
            continue
        if current:
            clusters.append(current)
        current = [finding]
        current_end = end
    if current:
        clusters.append(current)
    return clusters


def _merge_cluster(path: str, family: str, cluster: list[Finding]) -> MergedFinding:
    start = min(f.line_range[0] for f in cluster)
    end = max(f.line_range[1] for f in cluster)
    dedupe_key = f"{path}::{family}::{start}-{end}"

    # 最具体的描述：authoritative 优先，其次最长，最后按 analyzer id / 文本字典序
    chosen = sorted(cluster, key=lambda f: (not f.authoritative, -len(f.message), f.source_analyzer_id, f.message))[0]
    suggested_fix = chosen.suggested_fix
    if suggested_fix is None:
        for f in sorted(cluster, key=lambda f: (f.source_analyzer_id, f.message)):
            if f.suggested_fix:
                suggested_fix = f.suggested_fix
                break

    return MergedFinding(
        id=hashlib.sha256(dedupe_key.encode("utf-8")).hexdigest()[:16],
        dedupe_key=dedupe_key,
        category=chosen.category,
        severity=max_severity([f.severity for f in cluster]),
        file_path=path,
        line_range=(start, end),
        message=chosen.message,
        suggested_fix=suggested_fix,
        contributing_sources=tuple(sorted({f.source_analyzer_id for f in cluster})),
        contributing_ids=tuple(sorted({f.id for f in cluster})),
    )


def _describe_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors())
    return str(exc)


def _payload_preview(item: Any) -> str:
    try:
        text = json.dumps(item, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = repr(item)
    if len(text) > MAX_DIAGNOSTIC_PAYLOAD_CHARS:
        return text[:MAX_DIAGNOSTIC_PAYLOAD_CHARS] + "..."
    return text
