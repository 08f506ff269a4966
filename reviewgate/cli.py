"""
命令行入口：`reviewgate review ...`。

退出码：
- 0 pass / 1 warn / 2 block
- 3 内部/调度错误（没有任何 analyzer 可用、registry/policy 加载失败、输入不可读）
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from typing import NoReturn

import anyio
import httpx
import typer

from reviewgate.analyzers.catalog import build_default_registry
from reviewgate.analyzers.registry import AnalyzerRegistry
from reviewgate.analyzers.registry import RegistryError
from reviewgate.analyzers.registry import load_registry_file
from reviewgate.analyzers.selector import parse_analyzer_ids
from reviewgate.config import AppConfig
from reviewgate.config import load_config_from_env
from reviewgate.config import parse_duration
from reviewgate.infra.cache import build_result_cache
from reviewgate.infra.log import configure_logging
from reviewgate.llm.client import OpenAICompatLLMClient
from reviewgate.llm.client import build_llm_client
from reviewgate.review.context import build_changeset_from_diff
from reviewgate.review.context import build_changeset_from_paths
from reviewgate.review.gate import GatePolicy
from reviewgate.review.gate import load_policy_file
from reviewgate.review.models import Changeset
from reviewgate.review.models import Verdict
from reviewgate.review.orchestrator import build_review_orchestrator
from reviewgate.review.orchestrator import review_and_render

app = typer.Typer(add_completion=False, help="Run several analyzers over a change and gate the result")
logger = logging.getLogger(__name__)

EXIT_PASS = 0
EXIT_WARN = 1
EXIT_BLOCK = 2
EXIT_ERROR = 3

_VERDICT_EXIT_CODES: dict[Verdict, int] = {
    Verdict.PASS: EXIT_PASS,
    Verdict.WARN: EXIT_WARN,
    Verdict.BLOCK: EXIT_BLOCK,
}


@app.command()
def review(
    paths: list[str] | None = typer.Argument(None, help="Files to review as a whole"),
    diff: str | None = typer.Option(None, "--diff", help="Unified diff file to review ('-' for stdin)"),
    git_range: str | None = typer.Option(None, "--git-range", help="Revision range passed to `git diff`"),
    root: str | None = typer.Option(None, "--root", help="Working tree used to read full file contents"),
    analyzers: str | None = typer.Option(None, "--analyzers", help="Comma-separated analyzer ids to run"),
    fmt: str = typer.Option("text", "--format", help="Report format: json|text"),
    max_parallel: int | None = typer.Option(None, "--max-parallel", min=1, help="Concurrent analyzer limit"),
    timeout: str | None = typer.Option(None, "--timeout", help="Session deadline, e.g. 90s, 2m"),
    policy: str | None = typer.Option(None, "--policy", help="Gate policy YAML"),
    registry: str | None = typer.Option(None, "--registry", help="Extra analyzer declarations (YAML)"),
    cache_dir: str | None = typer.Option(None, "--cache-dir", help="Directory for the on-disk result cache"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr"),
) -> None:
    """Review a change and exit with the gate verdict."""
    if fmt not in ("json", "text"):
        _fail(f"Unsupported format: {fmt}")

    try:
        config = load_config_from_env(os.environ)
    except ValueError as exc:
        _fail(f"Invalid configuration: {exc}")
    configure_logging("INFO" if verbose else config.log_level)

    try:
        config = _apply_overrides(
            config=config,
            max_parallel=max_parallel,
            timeout=timeout,
            policy=policy,
            registry=registry,
            cache_dir=cache_dir,
        )
        analyzer_ids = parse_analyzer_ids(analyzers)
        changeset = _load_changeset(paths=paths or [], diff=diff, git_range=git_range, root=root)
        gate_policy = load_policy_file(config.policy_path)
    except (ValueError, OSError, RuntimeError) as exc:
        _fail(str(exc))

    try:
        exit_code, body = anyio.run(_review_async, config, changeset, gate_policy, analyzer_ids, fmt)
    except RegistryError as exc:
        _fail(f"Analyzer registry error: {exc}")

    typer.echo(body)
    raise typer.Exit(code=exit_code)


@app.command("analyzers")
def list_analyzers(
    registry: str | None = typer.Option(None, "--registry", help="Extra analyzer declarations (YAML)"),
) -> None:
    """List registered analyzers."""
    try:
        config = load_config_from_env(os.environ)
        reg = _build_registry(config=config, registry_path=registry or config.registry_path, llm_client=None)
    except (ValueError, RegistryError) as exc:
        _fail(str(exc))
    for d in reg:
        flags = " always-run" if d.always_run else ""
        typer.echo(f"{d.id:<20} priority={d.priority:<4} timeout={d.timeout:g}s weight={d.concurrency_weight}{flags}")
        if d.description:
            typer.echo(f"    {d.description}")


async def _review_async(
    config: AppConfig,
    changeset: Changeset,
    gate_policy: GatePolicy,
    analyzer_ids: list[str] | None,
    fmt: str,
) -> tuple[int, str]:
    async with httpx.AsyncClient(timeout=httpx.Timeout(60.0)) as http_client:
        llm_client = build_llm_client(config.llm, http_client=http_client)
        reg = _build_registry(config=config, registry_path=config.registry_path, llm_client=llm_client)
        orchestrator = build_review_orchestrator(
            registry=reg,
            dispatch_config=config.dispatch,
            policy=gate_policy,
            cache=build_result_cache(config.cache_dir) if config.cache_dir else None,
        )
        session, report = await review_and_render(
            orchestrator=orchestrator,
            changeset=changeset,
            fmt="json" if fmt == "json" else "text",
            analyzer_ids=analyzer_ids,
        )

    if not session.selected_analyzers:
        logger.error("No analyzer available for this changeset")
        return EXIT_ERROR, report.encode()
    return _VERDICT_EXIT_CODES[session.verdict], report.encode()


def _build_registry(
    config: AppConfig,
    registry_path: str | None,
    llm_client: OpenAICompatLLMClient | None,
) -> AnalyzerRegistry:
    reg = build_default_registry(llm_client=llm_client)
    if registry_path:
        load_registry_file(reg, registry_path, llm_client=llm_client, grace_period=config.dispatch.grace_period)
    return reg


def _apply_overrides(
    config: AppConfig,
    max_parallel: int | None,
    timeout: str | None,
    policy: str | None,
    registry: str | None,
    cache_dir: str | None,
) -> AppConfig:
    dispatch = config.dispatch
    if max_parallel is not None:
        dispatch = dispatch.model_copy(update={"max_parallel": max_parallel})
    if timeout is not None:
        dispatch = dispatch.model_copy(update={"session_timeout": parse_duration(timeout)})
    return config.model_copy(
        update={
            "dispatch": dispatch,
            "policy_path": policy or config.policy_path,
            "registry_path": registry or config.registry_path,
            "cache_dir": cache_dir or config.cache_dir,
        }
    )


def _load_changeset(paths: list[str], diff: str | None, git_range: str | None, root: str | None) -> Changeset:
    sources = sum(1 for s in (paths, diff, git_range) if s)
    if sources != 1:
        raise ValueError("Specify exactly one of: PATHS, --diff, --git-range")
    if paths:
        return build_changeset_from_paths(paths=paths, root=root)
    if diff is not None:
        if diff == "-":
            text = sys.stdin.read()
        else:
            with open(diff, encoding="utf-8", errors="replace") as f:
                text = f.read()
        return build_changeset_from_diff(diff=text, root=root)
    if git_range is None:
        raise ValueError("--git-range is required when no PATHS or --diff is given")
    text = _run_git_diff(git_range=git_range)
    # `git diff <rev>` 对比的是工作区，此时可以从工作区读全文
    if root is None and ".." not in git_range:
        root = "."
    return build_changeset_from_diff(diff=text, root=root)


def _run_git_diff(git_range: str) -> str:
    cmd = ["git", "diff", "--no-color", "--no-ext-diff", git_range]
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        logger.error(f"git failed: {' '.join(cmd)}\nstdout={result.stdout}\nstderr={result.stderr}")
        raise RuntimeError(f"git command failed: {' '.join(cmd)}")
    return result.stdout


def _fail(message: str) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=EXIT_ERROR)


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
