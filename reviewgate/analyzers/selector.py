"""
Analyzer Selector。

只做一件事：给定 changeset，确定性地算出要跑哪些 analyzer。
- 纯函数：只依赖 changeset 内容与 registry，不依赖时间、历史运行
- 结果按 (-priority, id) 排序，同时也是 dispatch 的排队顺序
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from reviewgate.analyzers.registry import AnalyzerDescriptor
from reviewgate.analyzers.registry import AnalyzerRegistry
from reviewgate.analyzers.registry import RegistryError
from reviewgate.review.models import Changeset
from reviewgate.review.models import FileChange

logger = logging.getLogger(__name__)


def select(
    changeset: Changeset,
    registry: AnalyzerRegistry,
    only: Sequence[str] | None = None,
) -> list[AnalyzerDescriptor]:
    """
    - always_run 的 analyzer 跳过规则，始终入选
    - 其余 analyzer 只要有一个文件命中规则即入选
    - only（CLI `--analyzers` 覆盖）：直接使用指定 id，未知 id 抛 RegistryError
    - 空 changeset 只会选出 always_run 子集（可能为空），不报错
    """
    if only is not None:
        selected = [registry.get(analyzer_id) for analyzer_id in dict.fromkeys(only)]
    else:
        selected = [
            d for d in registry if d.always_run or any(d.applies_to(change) for change in changeset.files)
        ]
    selected.sort(key=lambda d: (-d.priority, d.id))
    logger.info(f"Selected analyzers for changeset {changeset.identity[:12]}: {[d.id for d in selected]}")
    return selected


def files_for(descriptor: AnalyzerDescriptor, changeset: Changeset, forced: bool = False) -> list[FileChange]:
    """analyzer 实际能看到的文件：always_run/强制选择时是全部文件，否则是命中规则的文件。"""
    if forced or descriptor.always_run:
        return list(changeset.files)
    return [change for change in changeset.files if descriptor.applies_to(change)]


def parse_analyzer_ids(raw: str | None) -> list[str] | None:
    """解析 `--analyzers=a,b`；空字符串视为未指定。"""
    if raw is None:
        return None
    ids = [part.strip() for part in raw.split(",") if part.strip()]
    if not ids:
        return None
    for analyzer_id in ids:
        if " " in analyzer_id:
            raise RegistryError(f"Invalid analyzer id: {analyzer_id!r}")
    return ids
