"""
Concurrent Dispatcher（并发调度 analyzer）。

关键约束：
- **有界并发**：总并发不超过 `max_parallel`（按 concurrency_weight 计），其余排队
- **单 analyzer 超时**：到期置位取消信号，记为 timeout
- **故障隔离**：任何调用失败只记为 crashed，绝不影响兄弟 analyzer
- **会话截止**：到期取消所有仍在跑的 analyzer，立即带着已收集的结果返回
- **唯一共享可变状态**：结果收集器（加锁）；analyzer 之间不共享任何状态
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import anyio

from reviewgate.analyzers.invocation import AnalyzerError
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.analyzers.registry import AnalyzerDescriptor
from reviewgate.analyzers.selector import files_for
from reviewgate.config import DispatchConfig
from reviewgate.infra.cache import AnalyzerResultCache
from reviewgate.review.models import AnalyzerOutcome
from reviewgate.review.models import Changeset
from reviewgate.review.models import FileChange
from reviewgate.review.models import OutcomeStatus

logger = logging.getLogger(__name__)


class OutcomeSink:
    """结果收集器：所有 analyzer task 只通过这里写结果（同一 analyzer 只保留第一次写入）。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcomes: dict[str, AnalyzerOutcome] = {}

    def record(self, outcome: AnalyzerOutcome) -> None:
        with self._lock:
            if outcome.analyzer_id in self._outcomes:
                logger.warning(f"Duplicate outcome for {outcome.analyzer_id} ignored")
                return
            self._outcomes[outcome.analyzer_id] = outcome

    def snapshot(self) -> dict[str, AnalyzerOutcome]:
        with self._lock:
            return dict(self._outcomes)


class WeightedLimiter:
    """
    带权重的并发限制：一个 analyzer 占用 `weight` 个名额。

    获取名额在一把锁内完成，避免两个“重” analyzer 各拿一半名额互相死等。
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._limiter = anyio.CapacityLimiter(capacity)
        self._acquire_lock = anyio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @asynccontextmanager
    async def hold(self, weight: int) -> AsyncIterator[None]:
        weight = min(max(weight, 1), self._capacity)
        tokens = [object() for _ in range(weight)]
        acquired: list[object] = []
        try:
            async with self._acquire_lock:
                for token in tokens:
                    await self._limiter.acquire_on_behalf_of(token)
                    acquired.append(token)
            yield
        finally:
            for token in acquired:
                self._limiter.release_on_behalf_of(token)


async def dispatch(
    changeset: Changeset,
    analyzers: Sequence[AnalyzerDescriptor],
    config: DispatchConfig,
    cache: AnalyzerResultCache | None = None,
    forced: bool = False,
) -> list[AnalyzerOutcome]:
    """
    并发调用选中的 analyzer，返回无序语义的 outcome 集合（按 analyzer_id 排序只为输出稳定）。

    - forced：analyzer 是被显式指定的（CLI `--analyzers`），能看到全部文件
    - 会话截止后仍未完成的 analyzer 记为 timeout
    """
    unique: dict[str, AnalyzerDescriptor] = {}
    for descriptor in analyzers:
        unique.setdefault(descriptor.id, descriptor)

    sink = OutcomeSink()
    limiter = WeightedLimiter(config.max_parallel)
    logger.info(
        f"Dispatching {len(unique)} analyzer(s), max_parallel={config.max_parallel}, "
        f"session_timeout={config.session_timeout}s"
    )

    with anyio.move_on_after(config.session_timeout) as deadline:
        async with anyio.create_task_group() as tg:
            for descriptor in unique.values():
                files = files_for(descriptor, changeset, forced=forced)
                tg.start_soon(_run_analyzer, descriptor, files, limiter, sink, cache, name=f"analyzer:{descriptor.id}")

    collected = sink.snapshot()
    if deadline.cancelled_caught:
        logger.warning(f"Session deadline of {config.session_timeout}s exceeded; {len(unique) - len(collected)} analyzer(s) pending")
    for analyzer_id in unique:
        if analyzer_id not in collected:
            collected[analyzer_id] = AnalyzerOutcome(
                analyzer_id=analyzer_id,
                status=OutcomeStatus.TIMEOUT,
                duration=config.session_timeout,
                diagnostic_message=f"session deadline of {config.session_timeout:g}s exceeded before completion",
            )
    return [collected[k] for k in sorted(collected)]


async def _run_analyzer(
    descriptor: AnalyzerDescriptor,
    files: list[FileChange],
    limiter: WeightedLimiter,
    sink: OutcomeSink,
    cache: AnalyzerResultCache | None,
) -> None:
    if not files and not descriptor.always_run:
        sink.record(
            AnalyzerOutcome(
                analyzer_id=descriptor.id,
                status=OutcomeStatus.SKIPPED,
                diagnostic_message="no applicable files in changeset",
            )
        )
        return
    async with limiter.hold(descriptor.concurrency_weight):
        outcome = await _invoke(descriptor=descriptor, files=files, cache=cache)
    log = logger.info if outcome.status == OutcomeStatus.OK else logger.warning
    log(
        f"Analyzer {descriptor.id}: status={outcome.status.value} findings={len(outcome.findings)} "
        f"cached_files={outcome.cached_files} duration={outcome.duration:.3f}s"
    )
    sink.record(outcome)


async def _invoke(
    descriptor: AnalyzerDescriptor,
    files: list[FileChange],
    cache: AnalyzerResultCache | None,
) -> AnalyzerOutcome:
    started = time.monotonic()
    use_cache = cache is not None and descriptor.cacheable
    cached: list[Any] = []
    pending: list[FileChange] = []
    for change in files:
        hit = cache.get(descriptor.id, cache_input_key(descriptor, change)) if use_cache and cache is not None else None
        if hit is None:
            pending.append(change)
        else:
            cached.extend(hit)
    cached_count = len(files) - len(pending)

    if files and not pending:
        return AnalyzerOutcome(
            analyzer_id=descriptor.id,
            status=OutcomeStatus.OK,
            findings=tuple(cached),
            duration=time.monotonic() - started,
            cached_files=cached_count,
        )

    cancel_event = threading.Event()
    view = ChangesetView.for_files(pending, descriptor.config, cancel_event=cancel_event)
    raw: Any = None
    try:
        # 只有自己的 scope 到期才算 timeout；analyzer 内部抛出的 TimeoutError 按 crashed 处理
        with anyio.move_on_after(descriptor.timeout) as scope:
            raw = await descriptor.invoker.invoke(view)
    except AnalyzerError as exc:
        return _failed(descriptor, OutcomeStatus.CRASHED, str(exc) or type(exc).__name__, started)
    except Exception as exc:  # noqa: BLE001
        logger.exception(f"Analyzer {descriptor.id} raised an uncaught exception")
        return _failed(descriptor, OutcomeStatus.CRASHED, f"{type(exc).__name__}: {exc}", started)
    finally:
        # 协作式取消：超时/会话取消/正常结束都置位，线程里的 analyzer 会在下一个检查点退出
        cancel_event.set()

    if scope.cancelled_caught:
        return _failed(descriptor, OutcomeStatus.TIMEOUT, f"analyzer timed out after {descriptor.timeout:g}s", started)
    if not isinstance(raw, list):
        return _failed(
            descriptor,
            OutcomeStatus.CRASHED,
            f"malformed payload: expected a list of findings, got {type(raw).__name__}",
            started,
        )

    fresh = [_stamp(item, descriptor.id) for item in raw]
    if use_cache and cache is not None:
        _write_cache(cache=cache, descriptor=descriptor, files=pending, findings=fresh)

    return AnalyzerOutcome(
        analyzer_id=descriptor.id,
        status=OutcomeStatus.OK,
        findings=tuple(cached + fresh),
        duration=time.monotonic() - started,
        cached_files=cached_count,
    )


def cache_input_key(descriptor: AnalyzerDescriptor, change: FileChange) -> str:
    """
    单文件缓存条目的输入摘要。

    analyzer 的输出取决于 path、变更后的内容、本次 diff 的 hunk 以及 analyzer 配置，
    只用 content_hash 会让同内容不同路径、同内容不同 diff 的文件命中同一条目。
    """
    payload = {
        "path": change.path,
        "language": change.language,
        "content_hash": change.content_hash,
        "is_new_file": change.is_new_file,
        "is_deleted_file": change.is_deleted_file,
        "hunks": [hunk.model_dump(mode="json") for hunk in change.diff_hunks],
        "config": dict(descriptor.config),
    }
    encoded = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _stamp(item: Any, analyzer_id: str) -> Any:
    """finding 的来源由 dispatcher 决定，analyzer 自报的 source 不可信。"""
    if isinstance(item, dict):
        return {**item, "source_analyzer_id": analyzer_id}
    return item


def _write_cache(
    cache: AnalyzerResultCache,
    descriptor: AnalyzerDescriptor,
    files: list[FileChange],
    findings: list[Any],
) -> None:
    by_path: dict[str, list[Any]] = {f.path: [] for f in files}
    for item in findings:
        path = item.get("file_path") if isinstance(item, dict) else None
        if not isinstance(path, str) or path not in by_path:
            # 无法归属到单个文件的结果不能按文件缓存
            logger.debug(f"Not caching {descriptor.id} results: finding outside view ({path!r})")
            return
        by_path[path].append(item)
    for change in files:
        cache.set(descriptor.id, cache_input_key(descriptor, change), by_path[change.path])


def _failed(descriptor: AnalyzerDescriptor, status: OutcomeStatus, message: str, started: float) -> AnalyzerOutcome:
    return AnalyzerOutcome(
        analyzer_id=descriptor.id,
        status=status,
        duration=time.monotonic() - started,
        diagnostic_message=message,
    )
