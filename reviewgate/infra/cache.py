"""
analyzer 结果缓存（纯加速层，可以随时丢弃）。

当前提供：
- `Cache` Protocol：定义 get/set 接口
- `InMemoryCache`：进程内缓存（加锁，允许 worker thread 并发读写）
- `FileCache`：按 key 落盘的 JSON 文件（原子替换写入）
- `AnalyzerResultCache`：按 (analyzer_id, input_key) 存取单文件 findings
  （input_key 由调用方给出，必须覆盖 analyzer 输出依赖的全部输入）

正确性约束：读到的条目必须与请求的 key 完全一致，否则视为未命中。
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 2


class Cache(Protocol):
    """缓存接口协议（用于依赖倒置，方便替换内存/文件实现）。"""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


@dataclass
class InMemoryCache:
    """内存缓存：不提供过期机制。"""

    store: MutableMapping[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self.store.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self.store[key] = value


class FileCache:
    """每个 key 一个文件；写入先写临时文件再 os.replace，读者永远看不到半截内容。"""

    def __init__(self, directory: str) -> None:
        self._directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self._directory, digest[:2], f"{digest}.json")

    def get(self, key: str) -> str | None:
        try:
            with open(self._path(key), encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class AnalyzerResultCache:
    """
    单文件 analyzer 结果缓存，key = (analyzer_id, input_key)。

    - input_key 只当作不透明的摘要使用，如何计算由 dispatcher 决定
    - 条目里同时保存 analyzer_id 与 input_key，读取时逐项核对
    - 条目损坏/不匹配一律当作未命中（冷缓存与热缓存结果必须一致）
    """

    def __init__(self, backend: Cache) -> None:
        self._backend = backend

    @staticmethod
    def make_key(analyzer_id: str, input_key: str) -> str:
        return f"v{CACHE_SCHEMA_VERSION}:{analyzer_id}:{input_key}"

    def get(self, analyzer_id: str, input_key: str) -> list[Any] | None:
        raw = self._backend.get(self.make_key(analyzer_id, input_key))
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Corrupt cache entry for {analyzer_id}:{input_key[:12]}; ignoring")
            return None
        if (
            not isinstance(entry, dict)
            or entry.get("analyzer_id") != analyzer_id
            or entry.get("input_key") != input_key
            or not isinstance(entry.get("findings"), list)
        ):
            logger.warning(f"Cache entry mismatch for {analyzer_id}:{input_key[:12]}; ignoring")
            return None
        return entry["findings"]

    def set(self, analyzer_id: str, input_key: str, findings: list[Any]) -> None:
        entry = {"analyzer_id": analyzer_id, "input_key": input_key, "findings": findings}
        self._backend.set(self.make_key(analyzer_id, input_key), json.dumps(entry, sort_keys=True))


def build_result_cache(cache_dir: str | None) -> AnalyzerResultCache:
    if cache_dir:
        return AnalyzerResultCache(FileCache(cache_dir))
    return AnalyzerResultCache(InMemoryCache())
