from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import anyio
import pytest
from pydantic import BaseModel

from reviewgate.analyzers.invocation import AnalyzerError
from reviewgate.analyzers.invocation import ChangesetView
from reviewgate.analyzers.llm import LLMAnalyzer
from reviewgate.analyzers.llm import LLMReviewResult
from reviewgate.llm.client import ChatMessage
from reviewgate.review.context import build_file_change_from_content


class _FakeLLMClient:
    model = "fake-model"

    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.messages: list[ChatMessage] = []

    async def complete_json(self, messages: Sequence[ChatMessage], schema: type[BaseModel]) -> BaseModel:
        self.messages.extend(messages)
        if self.error is not None:
            raise self.error
        return schema.model_validate(self.result)


def _view() -> ChangesetView:
    change = build_file_change_from_content("a.py", "x = 1\n")
    return ChangesetView.for_files([change], {})


def test_llm_analyzer_returns_raw_findings() -> None:
    raw = {"findings": [{"category": "bug", "severity": "high"}, "junk"]}
    client = _FakeLLMClient(result=raw)
    analyzer = LLMAnalyzer(analyzer_id="llm-review", llm_client=client, focus=["security"])  # type: ignore[arg-type]
    findings = anyio.run(analyzer.invoke, _view())
    # 逐条校验交给 aggregator，这里原样返回
    assert findings == raw["findings"]
    assert "a.py (python)" in client.messages[1].content
    assert "security" in client.messages[1].content


def test_llm_analyzer_wraps_client_errors() -> None:
    client = _FakeLLMClient(error=ValueError("LLM did not return valid JSON"))
    analyzer = LLMAnalyzer(analyzer_id="llm-review", llm_client=client)  # type: ignore[arg-type]
    with pytest.raises(AnalyzerError):
        anyio.run(analyzer.invoke, _view())


def test_llm_analyzer_skips_empty_view() -> None:
    client = _FakeLLMClient(result={"findings": []})
    analyzer = LLMAnalyzer(analyzer_id="llm-review", llm_client=client)  # type: ignore[arg-type]
    assert anyio.run(analyzer.invoke, ChangesetView.for_files([], {})) == []
    assert client.messages == []


def test_llm_review_result_defaults() -> None:
    assert LLMReviewResult.model_validate({}).findings == []
