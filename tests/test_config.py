from __future__ import annotations

import pytest

from reviewgate.config import load_config_from_env
from reviewgate.config import parse_duration


def test_load_config_defaults_from_empty_env() -> None:
    cfg = load_config_from_env(environ={})
    assert cfg.llm is None
    assert cfg.dispatch.max_parallel == 4
    assert cfg.dispatch.session_timeout == 120.0
    assert cfg.dispatch.grace_period == 5.0
    assert cfg.log_level == "WARNING"


def test_load_config_reads_dispatch_settings() -> None:
    environ = {
        "REVIEWGATE_MAX_PARALLEL": "2",
        "REVIEWGATE_SESSION_TIMEOUT": "2m",
        "REVIEWGATE_GRACE_PERIOD": "0",
        "REVIEWGATE_CACHE_DIR": "/tmp/rg-cache",
        "REVIEWGATE_LOG_LEVEL": "debug",
    }
    cfg = load_config_from_env(environ=environ)
    assert cfg.dispatch.max_parallel == 2
    assert cfg.dispatch.session_timeout == 120.0
    assert cfg.dispatch.grace_period == 0.0
    assert cfg.cache_dir == "/tmp/rg-cache"
    assert cfg.log_level == "DEBUG"


def test_load_config_llm_ok() -> None:
    environ = {"LLM_BASE_URL": "https://llm.example.com", "LLM_API_KEY": "k", "LLM_MODEL": "m"}
    cfg = load_config_from_env(environ=environ)
    assert cfg.llm is not None
    assert cfg.llm.model == "m"


def test_load_config_rejects_partial_llm() -> None:
    environ = {"LLM_BASE_URL": "https://llm.example.com", "LLM_API_KEY": "k"}
    with pytest.raises(ValueError):
        load_config_from_env(environ=environ)


def test_load_config_rejects_invalid_max_parallel() -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ={"REVIEWGATE_MAX_PARALLEL": "zero"})
    with pytest.raises(ValueError):
        load_config_from_env(environ={"REVIEWGATE_MAX_PARALLEL": "0"})


def test_parse_duration() -> None:
    assert parse_duration("30s") == 30.0
    assert parse_duration("2m") == 120.0
    assert parse_duration("500ms") == 0.5
    assert parse_duration("1.5") == 1.5
    assert parse_duration("1h") == 3600.0


@pytest.mark.parametrize("raw", ["", "abc", "-1s", "0", "10x"])
def test_parse_duration_rejects_invalid(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_duration(raw)
