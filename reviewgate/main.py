"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量）
- 组装外部依赖（HTTP Client / LLM Client / analyzer registry / 缓存）
- 装配路由（health + review）

注意：
- 业务流程不写在这里（由 `review/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接）
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

import httpx
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from reviewgate.analyzers.catalog import build_default_registry
from reviewgate.analyzers.registry import RegistryError
from reviewgate.analyzers.registry import load_registry_file
from reviewgate.analyzers.selector import parse_analyzer_ids
from reviewgate.config import AppConfig
from reviewgate.config import load_config_from_env
from reviewgate.infra.cache import build_result_cache
from reviewgate.infra.log import configure_logging
from reviewgate.llm.client import build_llm_client
from reviewgate.review.context import build_changeset_from_diff
from reviewgate.review.gate import load_policy_file
from reviewgate.review.orchestrator import build_review_orchestrator
from reviewgate.review.orchestrator import review_and_render

logger = logging.getLogger(__name__)


class ReviewRequest(BaseModel):
    diff: str = Field(min_length=1)
    analyzers: str | None = None
    format: Literal["json", "text"] = "json"


def build_app(config: AppConfig | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：缺失/不合法会直接抛错，启动失败（这是期望行为）
    config = config or load_config_from_env(os.environ)
    configure_logging(config.log_level)

    # 2) 可复用的 HTTP client：供 LLM analyzer 使用
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(60.0))
    llm_client = build_llm_client(config.llm, http_client=http_client)

    # 3) registry 在启动时组装并冻结，请求之间只读共享
    registry = build_default_registry(llm_client=llm_client)
    if config.registry_path:
        load_registry_file(
            registry, config.registry_path, llm_client=llm_client, grace_period=config.dispatch.grace_period
        )
    orchestrator = build_review_orchestrator(
        registry=registry,
        dispatch_config=config.dispatch,
        policy=load_policy_file(config.policy_path),
        cache=build_result_cache(config.cache_dir) if config.cache_dir else None,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await http_client.aclose()

    app = FastAPI(title="Review Gate", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    @app.post("/review")
    async def review(req: ReviewRequest) -> dict[str, Any]:
        try:
            changeset = build_changeset_from_diff(diff=req.diff)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid diff: {exc}") from exc
        try:
            session, report = await review_and_render(
                orchestrator=orchestrator,
                changeset=changeset,
                fmt=req.format,
                analyzer_ids=parse_analyzer_ids(req.analyzers),
            )
        except RegistryError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        logger.info(f"Reviewed changeset {changeset.identity[:12]}: verdict={session.verdict.value}")
        if req.format == "text":
            return {"verdict": report.verdict, "report": report.to_text()}
        return report.model_dump(mode="json", exclude={"format"})

    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()
