"""
Analyzer 注册表。

为什么需要 registry：
- 启动时一次性登记所有 analyzer 描述（适用规则、优先级、超时、并发权重）
- 规则非法（例如正则写错）必须在加载阶段直接失败，而不是在某次 review 中途才炸
- 注册完成后只读（freeze），会话期间不会被修改
"""

from __future__ import annotations

import fnmatch
import logging
import posixpath
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from reviewgate.analyzers.command import CommandAnalyzer
from reviewgate.analyzers.invocation import Analyzer
from reviewgate.analyzers.llm import LLMAnalyzer
from reviewgate.llm.client import OpenAICompatLLMClient
from reviewgate.review.models import FileChange

logger = logging.getLogger(__name__)


class RegistryError(ValueError):
    """registry 加载/查询失败（非法描述、重复 id、未知 id）。"""

    pass


class ApplicabilityRule(BaseModel):
    """
    纯函数式的适用规则：只依赖文件扩展名、路径、语言与变更规模。

    - 正向过滤（extensions / path_patterns / path_regex / languages）任一命中即可；都为空表示全部命中
    - exclude_patterns 命中则排除
    - 变更行数必须落在 [min_changed_lines, max_changed_lines]
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    extensions: tuple[str, ...] = ()
    path_patterns: tuple[str, ...] = ()
    path_regex: str | None = None
    languages: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()
    min_changed_lines: int = 0
    max_changed_lines: int | None = None

    @field_validator("extensions")
    @classmethod
    def _normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        normalized: list[str] = []
        for ext in value:
            if not ext:
                raise ValueError("extension must be non-empty")
            ext = ext.lower()
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return tuple(normalized)

    @field_validator("path_regex")
    @classmethod
    def _compile_regex(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid path_regex {value!r}: {exc}") from exc
        return value

    @model_validator(mode="after")
    def _valid_bounds(self) -> ApplicabilityRule:
        if self.min_changed_lines < 0:
            raise ValueError("min_changed_lines must be >= 0")
        if self.max_changed_lines is not None and self.max_changed_lines < self.min_changed_lines:
            raise ValueError("max_changed_lines must be >= min_changed_lines")
        return self

    def matches(self, change: FileChange) -> bool:
        path = change.path
        if any(fnmatch.fnmatchcase(path, p) for p in self.exclude_patterns):
            return False
        size = change.changed_line_count
        if size < self.min_changed_lines:
            return False
        if self.max_changed_lines is not None and size > self.max_changed_lines:
            return False
        if not (self.extensions or self.path_patterns or self.path_regex or self.languages):
            return True
        if self.extensions and change.extension in self.extensions:
            return True
        basename = posixpath.basename(path)
        if any(fnmatch.fnmatchcase(path, p) or fnmatch.fnmatchcase(basename, p) for p in self.path_patterns):
            return True
        if self.path_regex is not None and re.search(self.path_regex, path):
            return True
        return change.language in self.languages


@dataclass(frozen=True)
class AnalyzerDescriptor:
    """单个 analyzer 的静态描述（注册后只读）。"""

    id: str
    invoker: Analyzer = field(compare=False, repr=False)
    rule: ApplicabilityRule = field(default_factory=ApplicabilityRule)
    priority: int = 0
    timeout: float = 60.0
    concurrency_weight: int = 1
    always_run: bool = False
    cacheable: bool = True
    description: str = ""
    config: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.id or not re.fullmatch(r"[A-Za-z0-9_.\-]+", self.id):
            raise RegistryError(f"Invalid analyzer id: {self.id!r}")
        if self.timeout <= 0:
            raise RegistryError(f"Analyzer {self.id}: timeout must be > 0")
        if self.concurrency_weight < 1:
            raise RegistryError(f"Analyzer {self.id}: concurrency_weight must be >= 1")

    def applies_to(self, change: FileChange) -> bool:
        return self.rule.matches(change)


class AnalyzerRegistry:
    """静态 analyzer 目录：按 id 索引，freeze 之后拒绝修改。"""

    def __init__(self) -> None:
        self._descriptors: dict[str, AnalyzerDescriptor] = {}
        self._frozen = False

    def register(self, descriptor: AnalyzerDescriptor) -> None:
        if self._frozen:
            raise RegistryError("Registry is frozen; register analyzers at process start")
        if descriptor.id in self._descriptors:
            raise RegistryError(f"Duplicate analyzer id: {descriptor.id}")
        self._descriptors[descriptor.id] = descriptor
        logger.debug(f"Registered analyzer {descriptor.id} (priority={descriptor.priority})")

    def freeze(self) -> AnalyzerRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, analyzer_id: str) -> AnalyzerDescriptor:
        if analyzer_id not in self._descriptors:
            raise RegistryError(f"Unknown analyzer id: {analyzer_id}")
        return self._descriptors[analyzer_id]

    def ids(self) -> list[str]:
        return sorted(self._descriptors)

    def __iter__(self) -> Iterator[AnalyzerDescriptor]:
        return iter([self._descriptors[k] for k in sorted(self._descriptors)])

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, analyzer_id: object) -> bool:
        return analyzer_id in self._descriptors


class AnalyzerEntry(BaseModel):
    """registry YAML 中的一条 analyzer 声明。"""

    model_config = ConfigDict(extra="forbid")

    id: str
    kind: Literal["command", "llm"]
    description: str = ""
    rule: ApplicabilityRule = Field(default_factory=ApplicabilityRule)
    priority: int = 0
    timeout: float = Field(default=60.0, gt=0)
    concurrency_weight: int = Field(default=1, ge=1)
    always_run: bool = False
    cacheable: bool = True
    config: dict[str, Any] = Field(default_factory=dict)
    command: list[str] | None = None
    focus: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _kind_fields(self) -> AnalyzerEntry:
        if self.kind == "command" and not self.command:
            raise ValueError(f"analyzer {self.id}: kind=command requires a non-empty 'command'")
        return self


class RegistryFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    analyzers: list[AnalyzerEntry] = Field(default_factory=list)


def load_registry_file(
    registry: AnalyzerRegistry,
    path: str | Path,
    llm_client: OpenAICompatLLMClient | None = None,
    grace_period: float = 5.0,
) -> AnalyzerRegistry:
    """
    从 YAML 加载额外的 analyzer 并登记到 registry。

    - 任何一条声明不合法都会抛 RegistryError（fail fast，在任何 session 开始之前）
    - kind=llm 需要已配置 LLM client
    """
    p = Path(path)
    try:
        with open(p, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as exc:
        raise RegistryError(f"Cannot read registry file {p}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise RegistryError(f"Invalid YAML in registry file {p}: {exc}") from exc

    try:
        parsed = RegistryFile.model_validate(raw)
    except ValidationError as exc:
        raise RegistryError(f"Invalid registry file {p}: {exc}") from exc

    for entry in parsed.analyzers:
        registry.register(_descriptor_from_entry(entry=entry, llm_client=llm_client, grace_period=grace_period))
    logger.info(f"Loaded {len(parsed.analyzers)} analyzer(s) from {p}")
    return registry


def _descriptor_from_entry(
    entry: AnalyzerEntry,
    llm_client: OpenAICompatLLMClient | None,
    grace_period: float,
) -> AnalyzerDescriptor:
    invoker: Analyzer
    if entry.kind == "command":
        invoker = CommandAnalyzer(analyzer_id=entry.id, command=list(entry.command or []), grace_period=grace_period)
    else:
        if llm_client is None:
            raise RegistryError(f"Analyzer {entry.id}: kind=llm requires LLM_* configuration")
        invoker = LLMAnalyzer(analyzer_id=entry.id, llm_client=llm_client, focus=entry.focus)
    return AnalyzerDescriptor(
        id=entry.id,
        invoker=invoker,
        rule=entry.rule,
        priority=entry.priority,
        timeout=entry.timeout,
        concurrency_weight=entry.concurrency_weight,
        always_run=entry.always_run,
        cacheable=entry.cacheable,
        description=entry.description,
        config=entry.config,
    )
