"""
应用配置加载。

设计目标：
- **严格**：配置值非法、LLM 配置只填一半，直接报错（避免“看起来跑了其实没配置好”）
- **类型安全**：使用 Pydantic 校验 URL/数值等，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from pydantic import BaseModel, Field, HttpUrl

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS: dict[str, float] = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class LLMConfig(BaseModel):
    base_url: HttpUrl
    api_key: str
    model: str


class DispatchConfig(BaseModel):
    """dispatcher 运行参数：并发上限、会话截止时间、取消宽限期。"""

    max_parallel: int = Field(default=4, ge=1)
    session_timeout: float = Field(default=120.0, gt=0)
    grace_period: float = Field(default=5.0, ge=0)


class AppConfig(BaseModel):
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    llm: LLMConfig | None = None
    cache_dir: str | None = None
    policy_path: str | None = None
    registry_path: str | None = None
    log_level: str = "WARNING"


def parse_duration(value: str) -> float:
    """
    把 `30s` / `2m` / `500ms` / `1.5` 解析为秒数。

    - 无单位按秒处理
    - 非法或 <= 0 抛 ValueError
    """
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"]
    if seconds <= 0:
        raise ValueError(f"Duration must be > 0: {value!r}")
    return seconds


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`（全部有默认值，空环境也能跑）
    - **失败**：数值/时长非法，或 LLM_* 只配置了一部分，抛 `ValueError`
    """
    dispatch = DispatchConfig(
        max_parallel=_int_env(environ, "REVIEWGATE_MAX_PARALLEL", 4),
        session_timeout=_duration_env(environ, "REVIEWGATE_SESSION_TIMEOUT", 120.0),
        grace_period=_grace_env(environ, "REVIEWGATE_GRACE_PERIOD", 5.0),
    )
    return AppConfig(
        dispatch=dispatch,
        llm=_load_llm_config(environ),
        cache_dir=environ.get("REVIEWGATE_CACHE_DIR") or None,
        policy_path=environ.get("REVIEWGATE_POLICY_PATH") or None,
        registry_path=environ.get("REVIEWGATE_REGISTRY_PATH") or None,
        log_level=(environ.get("REVIEWGATE_LOG_LEVEL") or "WARNING").upper(),
    )


def _load_llm_config(environ: Mapping[str, str]) -> LLMConfig | None:
    keys: tuple[str, ...] = ("LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL")
    present = [key for key in keys if environ.get(key)]
    if not present:
        return None
    missing = [key for key in keys if key not in present]
    if missing:
        raise ValueError(f"Missing required env vars: {', '.join(missing)}")

    # 交给 Pydantic 做类型校验（例如 URL 合法性）
    return LLMConfig(
        base_url=environ["LLM_BASE_URL"],
        api_key=environ["LLM_API_KEY"],
        model=environ["LLM_MODEL"],
    )


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ValueError(f"{key} must be >= 1")
    return value


def _duration_env(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if not raw:
        return default
    try:
        return parse_duration(raw)
    except ValueError as exc:
        raise ValueError(f"{key}: {exc}") from exc


def _grace_env(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if not raw:
        return default
    if raw.strip() in ("0", "0s"):
        return 0.0
    return _duration_env(environ, key, default)
