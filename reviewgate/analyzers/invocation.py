"""
Analyzer 调用契约。

- 输入：`ChangesetView`（file_list + diff_context + analyzer_config + 取消信号）
- 输出：固定 schema 的 finding payload 列表（dict，由 aggregator 逐条校验）
- 失败：抛 `AnalyzerError`（类型化错误），不允许“部分成功”
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import anyio

from reviewgate.review.models import FileChange
from reviewgate.review.models import Finding


class AnalyzerError(RuntimeError):
    """analyzer 无法完成本次调用（输入无法解析、进程非零退出、输出格式错误等）。"""

    pass


class AnalyzerCancelledError(AnalyzerError):
    """analyzer 观察到取消信号后主动退出。"""

    pass


@dataclass(frozen=True)
class ChangesetView:
    """
    传给单个 analyzer 的只读视图。

    - file_list：该 analyzer 适用的文件（已去掉命中缓存的文件）
    - diff_context：file_list 的 unified diff 文本
    - cancel_event：协作式取消信号（超时/会话截止时由 dispatcher 置位）
    """

    file_list: tuple[FileChange, ...]
    diff_context: str
    analyzer_config: Mapping[str, Any] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @classmethod
    def for_files(
        cls,
        files: Sequence[FileChange],
        analyzer_config: Mapping[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> ChangesetView:
        diff_context = "\n".join(f.diff_text() for f in files if f.diff_hunks)
        return cls(
            file_list=tuple(files),
            diff_context=diff_context,
            analyzer_config=dict(analyzer_config),
            cancel_event=cancel_event or threading.Event(),
        )

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise AnalyzerCancelledError("analyzer cancelled")

    def to_payload(self) -> dict[str, Any]:
        """外部 analyzer（子进程/HTTP）使用的 JSON 输入。"""
        return {
            "file_list": [
                {
                    "path": f.path,
                    "language": f.language,
                    "content_hash": f.content_hash,
                    "is_new_file": f.is_new_file,
                    "is_deleted_file": f.is_deleted_file,
                    "changed_lines": [line_no for line_no, _ in f.added_lines()],
                }
                for f in self.file_list
            ],
            "diff_context": self.diff_context,
            "analyzer_config": dict(self.analyzer_config),
        }


class Analyzer(Protocol):
    """analyzer 调用接口（依赖倒置：dispatcher 不关心具体实现）。"""

    async def invoke(self, view: ChangesetView) -> list[dict[str, Any]]: ...


AnalyzeFn = Callable[[ChangesetView], list[Finding]]


class BuiltinAnalyzer:
    """
    把同步、确定性的 `analyze(view) -> list[Finding]` 包装成 Analyzer。

    - 在 worker thread 中运行，避免阻塞事件循环
    - 取消时放弃线程（abandon），线程内通过 cancel_event 协作退出
    """

    def __init__(self, analyzer_id: str, analyze: AnalyzeFn) -> None:
        self._analyzer_id = analyzer_id
        self._analyze = analyze

    async def invoke(self, view: ChangesetView) -> list[dict[str, Any]]:
        findings = await anyio.to_thread.run_sync(self._analyze, view, abandon_on_cancel=True)
        return [_to_payload(analyzer_id=self._analyzer_id, finding=f) for f in findings]


def _to_payload(analyzer_id: str, finding: Finding) -> dict[str, Any]:
    payload = finding.model_dump(mode="json", exclude={"id", "dedupe_key"})
    payload["source_analyzer_id"] = analyzer_id
    return payload
