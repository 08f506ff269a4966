"""
Report（汇总输出）。

注意：
- 这里是**确定性输出**：不包含耗时/时间戳，同样的 outcome 得到逐字节相同的 JSON
- JSON 与文本两种编码都是同一个 `Report` 值的视图，不会各自重新计算
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from reviewgate.review.models import SEVERITY_ORDER
from reviewgate.review.models import OutcomeStatus
from reviewgate.review.models import ReportFormat
from reviewgate.review.models import ReviewSession


class ReportFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    severity: str
    category: str
    file_path: str
    line_range: tuple[int, int]
    message: str
    suggested_fix: str | None = None
    sources: tuple[str, ...]

    @property
    def location(self) -> str:
        start, end = self.line_range
        if start == end:
            return f"{self.file_path}:{start}"
        return f"{self.file_path}:{start}-{end}"


class AnalyzerStatusLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyzer_id: str
    status: str
    findings: int


class Caveat(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyzer_id: str
    status: str
    reason: str


class DiagnosticLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyzer_id: str
    message: str


class Report(BaseModel):
    model_config = ConfigDict(frozen=True)

    changeset_id: str
    file_count: int
    verdict: str
    gate_verdict: str
    degraded: bool
    summary: dict[str, int]
    blocking_count: int
    warning_count: int
    findings: tuple[ReportFinding, ...] = ()
    analyzers: tuple[AnalyzerStatusLine, ...] = ()
    caveats: tuple[Caveat, ...] = ()
    diagnostics: tuple[DiagnosticLine, ...] = ()
    format: ReportFormat = "json"

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, exclude={"format"})

    def to_text(self) -> str:
        lines: list[str] = []
        lines.append(f"Review verdict: {self.verdict.upper()} (changeset {self.changeset_id[:12]}, {self.file_count} file(s))")
        lines.append("")
        counts = ", ".join(f"{severity}: {count}" for severity, count in self.summary.items())
        lines.append(f"- Findings: {counts}")
        lines.append(f"- Blocking: {self.blocking_count}, warnings: {self.warning_count}")
        if self.analyzers:
            ran = ", ".join(f"{a.analyzer_id} ({a.status})" for a in self.analyzers)
            lines.append(f"- Analyzers: {ran}")
        else:
            lines.append("- Analyzers: none selected")
        lines.append("")

        if self.caveats:
            lines.append("### Caveats (degraded review)")
            for c in self.caveats:
                lines.append(f"- {c.analyzer_id} [{c.status}]: {c.reason}")
            lines.append("")

        if not self.findings:
            lines.append("No findings.")
        else:
            lines.append("### Findings")
            for f in self.findings:
                sources = ", ".join(f.sources)
                lines.append(f"- **[{f.severity}]** `{f.location}` {f.category}: {f.message} (from {sources})")
                if f.suggested_fix:
                    lines.append(f"  fix: {f.suggested_fix}")

        if self.diagnostics:
            lines.append("")
            lines.append("### Dropped findings")
            for d in self.diagnostics:
                lines.append(f"- {d.analyzer_id}: {d.message}")

        return "\n".join(lines)

    def encode(self) -> str:
        if self.format == "text":
            return self.to_text()
        return self.to_json()


def render(session: ReviewSession, fmt: ReportFormat = "json") -> Report:
    """
    把 ReviewSession 渲染为结构化 Report。

    - summary：每个 severity 都出现（没有则为 0），顺序 critical -> low
    - caveats：只有降级会话才有，列出失败/超时的 analyzer 及原因
    """
    if fmt not in ("json", "text"):
        raise ValueError(f"Unsupported report format: {fmt}")

    summary = {severity.value: 0 for severity in SEVERITY_ORDER}
    for merged in session.merged_findings:
        summary[merged.severity.value] += 1

    findings = tuple(
        ReportFinding(
            id=m.id,
            severity=m.severity.value,
            category=m.category,
            file_path=m.file_path,
            line_range=m.line_range,
            message=m.message,
            suggested_fix=m.suggested_fix,
            sources=m.contributing_sources,
        )
        for m in session.merged_findings
    )
    outcomes = sorted(session.outcomes, key=lambda o: o.analyzer_id)
    analyzers = tuple(
        AnalyzerStatusLine(analyzer_id=o.analyzer_id, status=o.status.value, findings=len(o.findings)) for o in outcomes
    )

    caveats: tuple[Caveat, ...] = ()
    if session.degraded:
        caveats = tuple(
            Caveat(
                analyzer_id=o.analyzer_id,
                status=o.status.value,
                reason=o.diagnostic_message or o.status.value,
            )
            for o in outcomes
            if o.status != OutcomeStatus.OK
        )
        if not session.selected_analyzers:
            caveats = caveats + (
                Caveat(analyzer_id="*", status="none-selected", reason="no analyzer applies to this changeset"),
            )

    return Report(
        changeset_id=session.changeset.identity,
        file_count=len(session.changeset.files),
        verdict=session.verdict.value,
        gate_verdict=session.gate.verdict.value,
        degraded=session.degraded,
        summary=summary,
        blocking_count=len(session.gate.blocking_findings),
        warning_count=len(session.gate.warning_findings),
        findings=findings,
        analyzers=analyzers,
        caveats=caveats,
        diagnostics=tuple(DiagnosticLine(analyzer_id=d.analyzer_id, message=d.message) for d in session.diagnostics),
        format=fmt,
    )
