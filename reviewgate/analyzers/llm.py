"""
LLM analyzer（单次 JSON 输出，不 loop）。

为什么这里只调用一次：
- analyzer 的输入输出必须稳定、可超时、可取消
- 每条 finding 的 schema 校验交给 aggregator（单条不合法只丢弃该条）

注意：
- 这里只基于 diff（没有完整仓库上下文），所以建议描述要保守、可验证。
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from openai import OpenAIError
from pydantic import BaseModel, Field

from reviewgate.analyzers.invocation import AnalyzerError
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.llm.client import ChatMessage
from reviewgate.llm.client import OpenAICompatLLMClient

logger = logging.getLogger(__name__)

MAX_DIFF_CHARS = 12000


class LLMReviewResult(BaseModel):
    """LLM 输出 schema：findings 逐条保持原样，由 aggregator 校验。"""

    findings: list[Any] = Field(default_factory=list)


def _truncate_text(text: str, max_chars: int) -> str:
    """控制 diff 输入长度，避免超出模型上下文/预算。"""
    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n...TRUNCATED..."


def _system_prompt() -> str:
    """system prompt：强制 JSON-only 输出。"""
    return (
        "你是资深代码审查工程师。"
        "你必须输出严格 JSON（不要 markdown、不要解释），内容是本次变更中发现的问题列表。"
    )


def _user_prompt(view: ChangesetView, focus: list[str]) -> str:
    """user prompt：给 diff + 关注点 + 固定的 finding schema。"""
    files = "\n".join([f"- {f.path} ({f.language})" for f in view.file_list])
    focus_text = ", ".join(focus) if focus else "correctness, security, maintainability"
    diff = _truncate_text(text=view.diff_context, max_chars=MAX_DIFF_CHARS)
    return (
        "请只基于 diff 做代码审查，输出 JSON：\n"
        '{"findings":[{"category":"...","severity":"critical|high|medium|low",'
        '"file_path":"...","line_range":[start,end],"message":"...","suggested_fix":"..."}]}\n'
        "要求：\n"
        "- file_path 必须是下面变更文件之一\n"
        "- line_range 使用变更后文件的行号\n"
        "- message 要具体、可执行，必要时指出风险与修复建议\n"
        f"- 重点关注：{focus_text}\n\n"
        f"变更文件：\n{files}\n\n"
        f"diff:\n{diff}\n"
    )


class LLMAnalyzer:
    def __init__(self, analyzer_id: str, llm_client: OpenAICompatLLMClient, focus: list[str] | None = None) -> None:
        self._analyzer_id = analyzer_id
        self._llm_client = llm_client
        self._focus = list(focus or [])

    async def invoke(self, view: ChangesetView) -> list[Any]:
        if not view.file_list:
            return []
        messages = [
            ChatMessage(role="system", content=_system_prompt()),
            ChatMessage(role="user", content=_user_prompt(view=view, focus=self._focus)),
        ]
        try:
            result = await self._llm_client.complete_json(messages=messages, schema=LLMReviewResult)
        except (OpenAIError, httpx.HTTPError, RuntimeError, ValueError) as exc:
            raise AnalyzerError(f"LLM analyzer {self._analyzer_id} failed: {exc}") from exc
        if not isinstance(result, LLMReviewResult):
            raise AnalyzerError("LLM review did not validate to LLMReviewResult")

        logger.info(f"LLM analyzer {self._analyzer_id} returned {len(result.findings)} finding(s)")
        return list(result.findings)
