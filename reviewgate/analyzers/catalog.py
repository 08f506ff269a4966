"""
内置 analyzer 目录。

把 analyzer id 映射到具体的确定性实现 + 适用规则；LLM analyzer 只有在配置了 LLM 时才注册。
"""

from __future__ import annotations

from reviewgate.analyzers.builtin import complexity
from reviewgate.analyzers.builtin import correctness
from reviewgate.analyzers.builtin import documentation
from reviewgate.analyzers.builtin import maintainability
from reviewgate.analyzers.builtin import security
from reviewgate.analyzers.builtin.common import CODE_EXTENSIONS
from reviewgate.analyzers.builtin.common import CONFIG_EXTENSIONS
from reviewgate.analyzers.builtin.common import DOC_EXTENSIONS
from reviewgate.analyzers.invocation import BuiltinAnalyzer
from reviewgate.analyzers.llm import LLMAnalyzer
from reviewgate.analyzers.registry import AnalyzerDescriptor
from reviewgate.analyzers.registry import AnalyzerRegistry
from reviewgate.analyzers.registry import ApplicabilityRule
from reviewgate.llm.client import OpenAICompatLLMClient

LLM_ANALYZER_ID = "llm-review"


def build_default_registry(llm_client: OpenAICompatLLMClient | None = None) -> AnalyzerRegistry:
    """注册内置 analyzer；返回的 registry 尚未 freeze（调用方可以继续加载 YAML 中的声明）。"""
    registry = AnalyzerRegistry()
    registry.register(
        AnalyzerDescriptor(
            id=security.ANALYZER_ID,
            invoker=BuiltinAnalyzer(security.ANALYZER_ID, security.analyze),
            rule=ApplicabilityRule(
                extensions=CODE_EXTENSIONS + CONFIG_EXTENSIONS,
                path_patterns=("Dockerfile", ".env*", "*.pem", "*.key"),
            ),
            priority=100,
            timeout=30.0,
            description="Hard-coded credentials, key material and unsafe calls",
        )
    )
    registry.register(
        AnalyzerDescriptor(
            id=correctness.ANALYZER_ID,
            invoker=BuiltinAnalyzer(correctness.ANALYZER_ID, correctness.analyze),
            rule=ApplicabilityRule(extensions=CODE_EXTENSIONS),
            priority=80,
            timeout=30.0,
            description="SQL string building, bare except, None comparisons",
        )
    )
    registry.register(
        AnalyzerDescriptor(
            id=complexity.ANALYZER_ID,
            invoker=BuiltinAnalyzer(complexity.ANALYZER_ID, complexity.analyze),
            rule=ApplicabilityRule(extensions=(".py",)),
            priority=50,
            timeout=30.0,
            description="Cyclomatic complexity and function length (Python AST)",
            config={"max_branches": 10, "max_function_lines": 50},
        )
    )
    registry.register(
        AnalyzerDescriptor(
            id=maintainability.ANALYZER_ID,
            invoker=BuiltinAnalyzer(maintainability.ANALYZER_ID, maintainability.analyze),
            rule=ApplicabilityRule(extensions=CODE_EXTENSIONS),
            priority=40,
            timeout=30.0,
            description="Function length, TODO markers, long lines",
            config={"max_function_lines": 50, "max_line_length": 120},
        )
    )
    registry.register(
        AnalyzerDescriptor(
            id=documentation.ANALYZER_ID,
            invoker=BuiltinAnalyzer(documentation.ANALYZER_ID, documentation.analyze),
            rule=ApplicabilityRule(extensions=DOC_EXTENSIONS),
            priority=10,
            timeout=30.0,
            description="Placeholders, empty links, unlabeled code fences",
        )
    )
    if llm_client is not None:
        registry.register(
            AnalyzerDescriptor(
                id=LLM_ANALYZER_ID,
                invoker=LLMAnalyzer(analyzer_id=LLM_ANALYZER_ID, llm_client=llm_client),
                rule=ApplicabilityRule(extensions=CODE_EXTENSIONS, max_changed_lines=2000),
                priority=60,
                timeout=120.0,
                concurrency_weight=2,
                description=f"LLM review via {llm_client.model}",
            )
        )
    return registry
