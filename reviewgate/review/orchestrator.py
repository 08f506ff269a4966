"""
Review Orchestrator（核心流程编排）。

关键思想：
- **流程由工程代码控制**：显式状态机 selected -> dispatched -> aggregated -> gated -> reported
- **analyzer 是外部能力**：这里只负责选择、调用、超时、合并、门禁
- **永远产出 ReviewSession**：即使没有任何 analyzer 成功，也返回 degraded 会话而不是抛错
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from reviewgate.analyzers.registry import AnalyzerRegistry
from reviewgate.analyzers.selector import select
from reviewgate.config import DispatchConfig
from reviewgate.infra.cache import AnalyzerResultCache
from reviewgate.review.aggregator import aggregate
from reviewgate.review.dispatcher import dispatch
from reviewgate.review.gate import GatePolicy
from reviewgate.review.gate import apply_degraded_policy
from reviewgate.review.gate import evaluate
from reviewgate.review.models import AnalyzerOutcome
from reviewgate.review.models import Changeset
from reviewgate.review.models import OutcomeStatus
from reviewgate.review.models import ReportFormat
from reviewgate.review.models import ReviewSession
from reviewgate.review.models import SessionStage
from reviewgate.review.report import Report
from reviewgate.review.report import render

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOrchestrator:
    """Orchestrator 运行时依赖集合（registry 必须已 freeze）。"""

    registry: AnalyzerRegistry
    dispatch_config: DispatchConfig
    policy: GatePolicy
    cache: AnalyzerResultCache | None = None


def build_review_orchestrator(
    registry: AnalyzerRegistry,
    dispatch_config: DispatchConfig | None = None,
    policy: GatePolicy | None = None,
    cache: AnalyzerResultCache | None = None,
) -> ReviewOrchestrator:
    """创建 orchestrator；registry 在这里被冻结，之后只读。"""
    return ReviewOrchestrator(
        registry=registry.freeze(),
        dispatch_config=dispatch_config or DispatchConfig(),
        policy=policy or GatePolicy(),
        cache=cache,
    )


async def run_review(
    orchestrator: ReviewOrchestrator,
    changeset: Changeset,
    analyzer_ids: Sequence[str] | None = None,
) -> ReviewSession:
    """
    跑一次完整 review，返回不可变的 ReviewSession。

    - analyzer_ids：显式指定要跑的 analyzer（覆盖规则选择）；未知 id 抛 RegistryError
    - degraded：任一 analyzer 非 ok，或根本没有 analyzer 入选
    """
    stage = SessionStage.SELECTED
    selected = select(changeset=changeset, registry=orchestrator.registry, only=analyzer_ids)
    logger.info(f"[{changeset.identity[:12]}] stage={stage.value} analyzers={len(selected)}")

    outcomes: list[AnalyzerOutcome] = []
    if selected:
        outcomes = await dispatch(
            changeset=changeset,
            analyzers=selected,
            config=orchestrator.dispatch_config,
            cache=orchestrator.cache,
            forced=analyzer_ids is not None,
        )
    else:
        logger.warning(f"[{changeset.identity[:12]}] no analyzer selected; session is degraded")
    stage = SessionStage.DISPATCHED

    aggregation = aggregate(outcomes, category_families=orchestrator.policy.category_families)
    stage = SessionStage.AGGREGATED

    gate = evaluate(aggregation.merged, orchestrator.policy)
    degraded = not selected or any(o.status != OutcomeStatus.OK for o in outcomes)
    verdict = apply_degraded_policy(verdict=gate.verdict, degraded=degraded, policy=orchestrator.policy)
    stage = SessionStage.GATED
    logger.info(
        f"[{changeset.identity[:12]}] stage={stage.value} verdict={verdict.value} "
        f"findings={len(aggregation.merged)} degraded={degraded}"
    )

    return ReviewSession(
        changeset=changeset,
        selected_analyzers=tuple(d.id for d in selected),
        outcomes=tuple(outcomes),
        merged_findings=tuple(aggregation.merged),
        diagnostics=tuple(aggregation.diagnostics),
        degraded=degraded,
        gate=gate,
        verdict=verdict,
        stage=stage,
    )


async def review_and_render(
    orchestrator: ReviewOrchestrator,
    changeset: Changeset,
    fmt: ReportFormat = "json",
    analyzer_ids: Sequence[str] | None = None,
) -> tuple[ReviewSession, Report]:
    """完整流水线，包括最后的 reported 阶段。"""
    session = await run_review(orchestrator=orchestrator, changeset=changeset, analyzer_ids=analyzer_ids)
    report = render(session, fmt)
    session = session.model_copy(update={"stage": SessionStage.REPORTED})
    return session, report
