"""
LLM Client（基于 OpenAI SDK，对接任意 OpenAI-compatible 网关，例如 LiteLLM Proxy）。

目标：
- **尽量薄**：只做协议适配与错误处理
- **严格 JSON**：LLM analyzer 的输出必须是可机读的 JSON，并做 schema 校验
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from reviewgate.config import LLMConfig

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


class OpenAICompatLLMClient:
    def __init__(self, api_key: str, base_url: str, http_client: httpx.AsyncClient, model: str) -> None:
        """
        - api_key: LLM API key
        - base_url: OpenAI-compatible base URL（自动补 `/v1`）
        - http_client: 复用 httpx.AsyncClient 连接池
        - model: 模型名（由网关路由）
        """
        self._base_url = _normalize_base_url(base_url=base_url)
        self._model = model
        self._client = AsyncOpenAI(api_key=api_key, base_url=self._base_url, http_client=http_client)

    @property
    def model(self) -> str:
        return self._model

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[BaseModel]) -> BaseModel:
        """
        约定：让模型输出"纯 JSON"，然后做严格 schema 校验。

        - **失败策略**：请求失败直接抛原始异常；解析/校验失败抛 ValueError
        - **JSON mode**：使用 response_format 确保返回纯 JSON（不包含 markdown 代码块）
        """
        try:
            logger.info(f"LLM JSON request: model={self._model}, schema={schema.__name__}")
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise

        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned None content")
            raise RuntimeError("LLM returned None content")

        logger.info(f"LLM JSON response: {len(content)} chars")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            logger.error(f"Invalid JSON from LLM. Raw content: {content}")
            raise ValueError(f"LLM did not return valid JSON. Raw: {content}") from exc

        try:
            validated = schema.model_validate(parsed)
        except ValidationError as exc:
            logger.error(f"Schema validation failed: {exc}")
            raise ValueError(f"LLM JSON does not match schema {schema.__name__}: {exc}") from exc

        return validated


def build_llm_client(config: LLMConfig | None, http_client: httpx.AsyncClient) -> OpenAICompatLLMClient | None:
    """未配置 LLM 时返回 None（LLM analyzer 不会被注册）。"""
    if config is None:
        return None
    return OpenAICompatLLMClient(
        api_key=config.api_key,
        base_url=str(config.base_url),
        http_client=http_client,
        model=config.model,
    )
