"""
Quality Gate（纯函数分类）。

- 策略 = severity -> tier（blocking / warning / advisory）映射，外部配置提供
- 缺省映射：critical/high -> blocking，medium -> warning，low -> advisory
- 相同的 merged findings + 相同策略，永远得到相同结论（没有随机、没有时间依赖）
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from reviewgate.review.models import MergedFinding
from reviewgate.review.models import QualityGateResult
from reviewgate.review.models import Severity
from reviewgate.review.models import Tier
from reviewgate.review.models import Verdict

logger = logging.getLogger(__name__)

DEFAULT_TIERS: dict[Severity, Tier] = {
    Severity.CRITICAL: Tier.BLOCKING,
    Severity.HIGH: Tier.BLOCKING,
    Severity.MEDIUM: Tier.WARNING,
    Severity.LOW: Tier.ADVISORY,
}


class GatePolicy(BaseModel):
    """
    门禁策略。

    - tiers：severity -> tier；未出现的 severity 回落到缺省映射
    - category_families：聚合时的 category 归并表（同一 family 的问题会合并）
    - escalate_degraded：降级会话（有 analyzer 失败/超时）即便没有问题也至少给 warn
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tiers: dict[Severity, Tier] = Field(default_factory=lambda: dict(DEFAULT_TIERS))
    category_families: dict[str, str] = Field(default_factory=dict)
    escalate_degraded: bool = True

    @field_validator("tiers")
    @classmethod
    def _fill_defaults(cls, value: dict[Severity, Tier]) -> dict[Severity, Tier]:
        return {**DEFAULT_TIERS, **value}

    @field_validator("category_families")
    @classmethod
    def _normalize_families(cls, value: dict[str, str]) -> dict[str, str]:
        return {k.strip().lower(): v.strip().lower() for k, v in value.items()}

    def tier_for(self, severity: Severity) -> Tier:
        return self.tiers[severity]


def evaluate(merged_findings: Sequence[MergedFinding], policy: GatePolicy) -> QualityGateResult:
    blocking = tuple(f for f in merged_findings if policy.tier_for(f.severity) == Tier.BLOCKING)
    warning = tuple(f for f in merged_findings if policy.tier_for(f.severity) == Tier.WARNING)
    if blocking:
        verdict = Verdict.BLOCK
    elif warning:
        verdict = Verdict.WARN
    else:
        verdict = Verdict.PASS
    return QualityGateResult(verdict=verdict, blocking_findings=blocking, warning_findings=warning)


def apply_degraded_policy(verdict: Verdict, degraded: bool, policy: GatePolicy) -> Verdict:
    """会话级规则：降级会话不能以干净的 pass 结束。"""
    if degraded and policy.escalate_degraded and verdict == Verdict.PASS:
        return Verdict.WARN
    return verdict


def load_policy(raw: Mapping[str, Any] | None) -> GatePolicy:
    if not raw:
        return GatePolicy()
    try:
        return GatePolicy.model_validate(dict(raw))
    except ValidationError as exc:
        raise ValueError(f"Invalid gate policy: {exc}") from exc


def load_policy_file(path: str | Path | None) -> GatePolicy:
    """
    从 YAML 加载门禁策略；path 为 None 时使用缺省策略。

    文件格式：
      tiers: {critical: blocking, high: warning, ...}
      category_families: {lint.long-func: function-size}
      escalate_degraded: true
    """
    if path is None:
        logger.info("No gate policy supplied; using default severity mapping")
        return GatePolicy()
    p = Path(path)
    try:
        with open(p, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ValueError(f"Cannot read policy file {p}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in policy file {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"Policy file {p} must contain a mapping")
    return load_policy(raw)
