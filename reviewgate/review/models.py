"""
Review 领域模型（Pydantic）。

用途：
- 明确 pipeline 各阶段（select -> dispatch -> aggregate -> gate -> report）的输入/输出结构
- 作为 analyzer 输出（finding payload）的 schema 校验
"""

from __future__ import annotations

import hashlib
import posixpath
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, computed_field, field_validator, model_validator


class Severity(str, Enum):
    """全局共享的 severity 枚举（analyzer 输出边界必须使用它）。"""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """越严重 rank 越小，用于排序（critical -> low）。"""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}

SEVERITY_ORDER: tuple[Severity, ...] = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)


def max_severity(severities: list[Severity]) -> Severity:
    if not severities:
        raise ValueError("severities must not be empty")
    return min(severities, key=lambda s: s.rank)


class OutcomeStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    CRASHED = "crashed"
    SKIPPED = "skipped"


class Verdict(str, Enum):
    PASS = "pass"
    WARN = "warn"
    BLOCK = "block"


class Tier(str, Enum):
    BLOCKING = "blocking"
    WARNING = "warning"
    ADVISORY = "advisory"


class SessionStage(str, Enum):
    """ReviewSession 的显式状态机。"""

    SELECTED = "selected"
    DISPATCHED = "dispatched"
    AGGREGATED = "aggregated"
    GATED = "gated"
    REPORTED = "reported"


class DiffHunk(BaseModel):
    """unified diff 中的一个 hunk（`@@ -a,b +c,d @@` 以及其后的行）。"""

    model_config = ConfigDict(frozen=True)

    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: tuple[str, ...] = ()

    def added_lines(self) -> list[tuple[int, str]]:
        """返回 (新文件行号, 内容) 列表，只包含 `+` 行。"""
        added: list[tuple[int, str]] = []
        new_line = self.new_start
        for line in self.lines:
            if line.startswith("+"):
                added.append((new_line, line[1:]))
                new_line += 1
            elif line.startswith("-"):
                continue
            elif line.startswith("\\"):
                # "\ No newline at end of file"
                continue
            else:
                new_line += 1
        return added

    def changed_line_count(self) -> int:
        return sum(1 for line in self.lines if line[:1] in ("+", "-"))

    def to_text(self) -> str:
        header = f"@@ -{self.old_start},{self.old_lines} +{self.new_start},{self.new_lines} @@"
        return "\n".join([header, *self.lines])


class FileChange(BaseModel):
    """单个文件的变更（从 unified diff 或完整文件内容归一化而来）。"""

    model_config = ConfigDict(frozen=True)

    path: str
    language: str
    content_hash: str
    diff_hunks: tuple[DiffHunk, ...] = ()
    # 变更后的完整内容（可得时才有，例如直接审查文件或工作区 diff）
    content: str | None = None
    is_new_file: bool = False
    is_deleted_file: bool = False

    @field_validator("path")
    @classmethod
    def _path_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("path must be non-empty")
        return value

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.path)[1].lower()

    @property
    def changed_line_count(self) -> int:
        return sum(h.changed_line_count() for h in self.diff_hunks)

    def added_lines(self) -> list[tuple[int, str]]:
        added: list[tuple[int, str]] = []
        for hunk in self.diff_hunks:
            added.extend(hunk.added_lines())
        return added

    def diff_text(self) -> str:
        if not self.diff_hunks:
            return ""
        header = [f"--- a/{self.path}", f"+++ b/{self.path}"]
        return "\n".join(header + [h.to_text() for h in self.diff_hunks])


class Changeset(BaseModel):
    """
    审查单元：有序的 FileChange 集合。

    - 构造后不可变
    - identity = 所有 content_hash 的组合哈希（用于缓存/幂等）
    """

    model_config = ConfigDict(frozen=True)

    files: tuple[FileChange, ...] = ()

    @model_validator(mode="after")
    def _unique_paths(self) -> Changeset:
        paths = [f.path for f in self.files]
        if len(paths) != len(set(paths)):
            raise ValueError("Changeset contains duplicate paths")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def identity(self) -> str:
        h = hashlib.sha256()
        for f in self.files:
            h.update(f.content_hash.encode("utf-8"))
            h.update(b"\0")
        return h.hexdigest()

    def is_empty(self) -> bool:
        return not self.files

    def diff_text(self) -> str:
        return "\n".join(f.diff_text() for f in self.files if f.diff_hunks)


class Finding(BaseModel):
    """
    单个 analyzer 报告的单条问题（analyzer 输出的固定 schema）。

    `id` / `dedupe_key` 由 aggregator 填充，analyzer 不需要提供。
    """

    model_config = ConfigDict(frozen=True)

    source_analyzer_id: str
    category: str
    severity: Severity
    file_path: str
    line_range: tuple[int, int]
    message: str
    suggested_fix: str | None = None
    authoritative: bool = False
    id: str = ""
    dedupe_key: str = ""

    @field_validator("category", "file_path", "message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be non-empty")
        return value

    @field_validator("line_range")
    @classmethod
    def _valid_range(cls, value: tuple[int, int]) -> tuple[int, int]:
        start, end = value
        if start < 1:
            raise ValueError(f"line_range start must be >= 1, got {start}")
        if end < start:
            raise ValueError(f"line_range end ({end}) must be >= start ({start})")
        return value


class MergedFinding(BaseModel):
    """一个或多个 Finding（同一 dedupe_key）合并后的结果；severity 取最大值。"""

    model_config = ConfigDict(frozen=True)

    id: str
    dedupe_key: str
    category: str
    severity: Severity
    file_path: str
    line_range: tuple[int, int]
    message: str
    suggested_fix: str | None = None
    contributing_sources: tuple[str, ...]
    contributing_ids: tuple[str, ...] = ()

    @field_validator("contributing_sources")
    @classmethod
    def _at_least_one_source(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("contributing_sources must not be empty")
        return value


class AnalyzerOutcome(BaseModel):
    """单个 analyzer 一次 dispatch 的结果。findings 保持原始 payload，由 aggregator 校验。"""

    model_config = ConfigDict(frozen=True)

    analyzer_id: str
    status: OutcomeStatus
    # 原始 payload（通常是 dict）；逐条校验在 aggregator 中完成
    findings: tuple[Any, ...] = ()
    duration: float = 0.0
    diagnostic_message: str | None = None
    cached_files: int = 0


class Diagnostic(BaseModel):
    """被丢弃的单条 finding（解析失败）必须留下的记录。"""

    model_config = ConfigDict(frozen=True)

    analyzer_id: str
    message: str
    payload: str | None = None


class QualityGateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    blocking_findings: tuple[MergedFinding, ...] = ()
    warning_findings: tuple[MergedFinding, ...] = ()


class ReviewSession(BaseModel):
    """一次 review 请求的完整记录；完成后不可变。"""

    model_config = ConfigDict(frozen=True)

    changeset: Changeset
    selected_analyzers: tuple[str, ...] = ()
    outcomes: tuple[AnalyzerOutcome, ...] = ()
    merged_findings: tuple[MergedFinding, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()
    degraded: bool = False
    gate: QualityGateResult
    verdict: Verdict
    stage: SessionStage = SessionStage.GATED

    def failed_outcomes(self) -> list[AnalyzerOutcome]:
        return [o for o in self.outcomes if o.status != OutcomeStatus.OK]


ReportFormat = Literal["json", "text"]
