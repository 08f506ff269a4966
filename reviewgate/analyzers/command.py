"""
子进程 analyzer。

约定：
- stdin：`ChangesetView.to_payload()` 的 JSON
- stdout：finding 列表 JSON（`[...]` 或 `{"findings": [...]}`）
- 非零退出 / 非 JSON 输出 / 结构不对：抛 AnalyzerError
- 被取消：先 terminate，等待 grace_period，仍未退出再 kill
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

import anyio
from anyio.abc import ByteReceiveStream
from anyio.abc import Process

from reviewgate.analyzers.invocation import AnalyzerError
from reviewgate.analyzers.invocation import ChangesetView

logger = logging.getLogger(__name__)

MAX_DIAGNOSTIC_CHARS = 2000


class CommandAnalyzer:
    def __init__(self, analyzer_id: str, command: list[str], grace_period: float = 5.0) -> None:
        if not command:
            raise ValueError("command must be non-empty")
        if grace_period < 0:
            raise ValueError("grace_period must be >= 0")
        self._analyzer_id = analyzer_id
        self._command = command
        self._grace_period = grace_period

    async def invoke(self, view: ChangesetView) -> list[Any]:
        payload = json.dumps(view.to_payload()).encode("utf-8")
        try:
            process = await anyio.open_process(
                self._command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise AnalyzerError(f"cannot start {' '.join(self._command)}: {exc}") from exc

        stdout = bytearray()
        stderr = bytearray()
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(_drain, process.stdout, stdout)
                tg.start_soon(_drain, process.stderr, stderr)
                await _feed(process=process, payload=payload)
            returncode = await process.wait()
        except BaseException:
            # 取消/异常：协作式终止 + 宽限期 + 强杀；必须屏蔽外层取消才能等子进程退出
            with anyio.CancelScope(shield=True):
                await _terminate(process=process, grace_period=self._grace_period)
            raise
        finally:
            with anyio.CancelScope(shield=True):
                await process.aclose()

        if returncode != 0:
            tail = _tail(stderr.decode("utf-8", errors="replace"))
            logger.warning(f"Analyzer {self._analyzer_id} exited with {returncode}: {tail}")
            raise AnalyzerError(f"exit code {returncode}: {tail}")
        return parse_findings_output(raw=stdout.decode("utf-8", errors="replace"))


def parse_findings_output(raw: str) -> list[Any]:
    """解析外部 analyzer 的 stdout；整体结构不对直接抛 AnalyzerError（不接受模糊的“部分成功”）。"""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AnalyzerError(f"malformed output (not JSON): {_tail(raw)}") from exc
    if isinstance(parsed, dict):
        if "findings" not in parsed:
            raise AnalyzerError("malformed output: object without 'findings'")
        parsed = parsed["findings"]
    if not isinstance(parsed, list):
        raise AnalyzerError(f"malformed output: expected a list, got {type(parsed).__name__}")
    return parsed


async def _drain(stream: ByteReceiveStream | None, sink: bytearray) -> None:
    if stream is None:
        return
    async for chunk in stream:
        sink.extend(chunk)


async def _feed(process: Process, payload: bytes) -> None:
    if process.stdin is None:
        return
    try:
        await process.stdin.send(payload)
    except (anyio.BrokenResourceError, anyio.ClosedResourceError):
        # 进程没读完就退出了；交给退出码判断
        logger.debug("analyzer process closed stdin early")
    finally:
        await process.stdin.aclose()


async def _terminate(process: Process, grace_period: float) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    with anyio.move_on_after(grace_period):
        await process.wait()
        return
    logger.warning(f"Analyzer process {process.pid} ignored SIGTERM for {grace_period}s; killing")
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


def _tail(text: str) -> str:
    text = text.strip()
    if len(text) <= MAX_DIAGNOSTIC_CHARS:
        return text
    return "..." + text[-MAX_DIAGNOSTIC_CHARS:]
