"""
Context Builder（非 AI）。

职责：
- 把 unified diff / 文件列表转换为内部的 `Changeset`
- 做最少量的工程推断（例如通过扩展名推断语言、计算 content_hash）
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Sequence

from reviewgate.review.diff_parser import FileDiff
from reviewgate.review.diff_parser import split_unified_diff
from reviewgate.review.models import Changeset
from reviewgate.review.models import DiffHunk
from reviewgate.review.models import FileChange

logger = logging.getLogger(__name__)

_LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".go": "go",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
    ".rs": "rust",
    ".sql": "sql",
    ".sh": "shell",
    ".zsh": "shell",
    ".bash": "shell",
    ".md": "markdown",
    ".rst": "restructuredtext",
    ".adoc": "asciidoc",
    ".txt": "text",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
}


def infer_language_from_path(path: str) -> str:
    """
    通过文件扩展名推断语言。

    这是一个非常“工程”的步骤：不需要 LLM，且必须确定性。
    """
    lowered = path.lower()
    if os.path.basename(lowered) in ("dockerfile", "makefile"):
        return os.path.basename(lowered)
    if os.path.basename(lowered).startswith(".env"):
        return "dotenv"
    ext = os.path.splitext(lowered)[1]
    return _LANGUAGE_BY_EXTENSION.get(ext, "unknown")


def compute_content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def build_changeset_from_diff(diff: str, root: str | None = None) -> Changeset:
    """
    将 unified diff 转为 Changeset。

    - root：工作区根目录；给出时会读取变更后的完整文件内容（供需要全文的 analyzer 使用）
    - content_hash：有全文时对全文求哈希，否则对该文件的 diff 片段求哈希
    - 文件按 path 排序，保证 identity 稳定
    """
    file_diffs = split_unified_diff(diff)
    changes = [_file_change_from_diff(file_diff=fd, root=root) for fd in file_diffs]
    changes.sort(key=lambda c: c.path)
    logger.info(f"Built changeset from diff: {len(changes)} file(s)")
    return Changeset(files=tuple(changes))


def build_changeset_from_paths(paths: Sequence[str], root: str | None = None) -> Changeset:
    """
    把若干完整文件当作“全新增”的变更来审查。

    - 每个文件生成一个覆盖全部行的 hunk
    - 读取失败直接抛 OSError（上游决定退出码）
    - 先归一化再去重：`a.py` 与 `./a.py` 是同一个文件
    """
    changes: list[FileChange] = []
    for path in sorted({_normalize_path(p) for p in paths}):
        full_path = os.path.join(root, path) if root else path
        with open(full_path, encoding="utf-8", errors="replace") as f:
            content = f.read()
        changes.append(build_file_change_from_content(path=path, content=content))
    logger.info(f"Built changeset from paths: {len(changes)} file(s)")
    return Changeset(files=tuple(changes))


def build_file_change_from_content(path: str, content: str) -> FileChange:
    lines = content.splitlines()
    hunks: tuple[DiffHunk, ...] = ()
    if lines:
        hunks = (
            DiffHunk(
                old_start=0,
                old_lines=0,
                new_start=1,
                new_lines=len(lines),
                lines=tuple("+" + line for line in lines),
            ),
        )
    return FileChange(
        path=path,
        language=infer_language_from_path(path=path),
        content_hash=compute_content_hash(content),
        diff_hunks=hunks,
        content=content,
        is_new_file=True,
    )


def _file_change_from_diff(file_diff: FileDiff, root: str | None) -> FileChange:
    content: str | None = None
    if root is not None and not file_diff.is_deleted_file:
        full_path = os.path.join(root, file_diff.path)
        if os.path.isfile(full_path):
            with open(full_path, encoding="utf-8", errors="replace") as f:
                content = f.read()
    content_hash = compute_content_hash(content if content is not None else file_diff.raw)
    return FileChange(
        path=file_diff.path,
        language=infer_language_from_path(path=file_diff.path),
        content_hash=content_hash,
        diff_hunks=tuple(file_diff.hunks),
        content=content,
        is_new_file=file_diff.is_new_file,
        is_deleted_file=file_diff.is_deleted_file,
    )


def _normalize_path(path: str) -> str:
    normalized = os.path.normpath(path).replace(os.sep, "/")
    if normalized.startswith("./"):
        return normalized[2:]
    return normalized
