from __future__ import annotations

from dataclasses import dataclass, field

from reviewgate.review.models import DiffHunk


@dataclass
class FileDiff:
    """unified diff 中单个文件的片段（尚未归一化为 FileChange）。"""

    path: str
    hunks: list[DiffHunk] = field(default_factory=list)
    is_new_file: bool = False
    is_deleted_file: bool = False
    raw_lines: list[str] = field(default_factory=list)

    @property
    def raw(self) -> str:
        return "\n".join(self.raw_lines)


def extract_changed_line_numbers(diff: str) -> list[int]:
    lines = diff.splitlines()
    changed: list[int] = []
    new_line = 0
    old_line = 0
    for line in lines:
        if line.startswith("@@"):
            old_line, _, new_line, _ = _parse_hunk_header(header=line)
            continue
        if line.startswith("+") and not line.startswith("+++"):
            changed.append(new_line)
            new_line += 1
            continue
        if line.startswith("-") and not line.startswith("---"):
            old_line += 1
            continue
        if line.startswith(" "):
            old_line += 1
            new_line += 1
            continue
    return changed


class _HunkBuilder:
    """按 hunk 头声明的行数收集行，行数耗尽即结束。"""

    def __init__(self, header: tuple[int, int, int, int]) -> None:
        self.old_start, self.old_lines, self.new_start, self.new_lines = header
        self._old_left = self.old_lines
        self._new_left = self.new_lines
        self.lines: list[str] = []

    @property
    def complete(self) -> bool:
        return self._old_left <= 0 and self._new_left <= 0

    def feed(self, line: str) -> bool:
        """吃掉一行 hunk 内容；不属于 hunk 时返回 False。"""
        if line.startswith("\\"):
            self.lines.append(line)
            return True
        if self.complete:
            return False
        if line.startswith("+"):
            self._new_left -= 1
        elif line.startswith("-"):
            self._old_left -= 1
        elif line.startswith(" ") or line == "":
            # 某些工具会把上下文空行的前导空格吃掉
            line = line or " "
            self._old_left -= 1
            self._new_left -= 1
        else:
            return False
        self.lines.append(line)
        return True

    def build(self) -> DiffHunk:
        return DiffHunk(
            old_start=self.old_start,
            old_lines=self.old_lines,
            new_start=self.new_start,
            new_lines=self.new_lines,
            lines=tuple(self.lines),
        )


def split_unified_diff(diff: str) -> list[FileDiff]:
    """
    把多文件 unified diff（`git diff` 输出）拆成逐文件的 FileDiff。

    - 支持 `diff --git` 头，也支持只有 `---/+++` 的普通 diff
    - 删除文件的 path 取 `--- a/...`，其余取 `+++ b/...`
    - hunk 头非法、hunk 出现在文件头之前，直接抛 ValueError（不要猜）
    """
    files: list[FileDiff] = []
    current: FileDiff | None = None
    hunk: _HunkBuilder | None = None
    old_path: str | None = None
    pending_header: list[str] = []

    def close_hunk() -> None:
        nonlocal hunk
        if current is not None and hunk is not None:
            current.hunks.append(hunk.build())
        hunk = None

    def close_file() -> None:
        nonlocal current
        close_hunk()
        if current is not None:
            files.append(current)
        current = None

    for line in diff.splitlines():
        if hunk is not None and hunk.feed(line):
            current.raw_lines.append(line)  # type: ignore[union-attr]
            continue
        close_hunk()

        if line.startswith("diff --git "):
            close_file()
            old_path = None
            pending_header = [line]
            continue
        if line.startswith("--- "):
            close_file()
            old_path = _strip_prefix(line[4:])
            pending_header.append(line)
            continue
        if line.startswith("+++ "):
            new_path = _strip_prefix(line[4:])
            if new_path is None and old_path is None:
                raise ValueError(f"Invalid diff file header: {line}")
            current = FileDiff(
                path=new_path or old_path or "",
                is_new_file=old_path is None,
                is_deleted_file=new_path is None,
                raw_lines=[*pending_header, line],
            )
            pending_header = []
            continue
        if line.startswith("@@"):
            if current is None:
                raise ValueError(f"Hunk without file header: {line}")
            hunk = _HunkBuilder(_parse_hunk_header(header=line))
            current.raw_lines.append(line)
            continue
        # 其他元信息行（index/mode/rename...）
        if current is None:
            pending_header.append(line)
        else:
            current.raw_lines.append(line)

    close_file()
    return files


def _strip_prefix(path_part: str) -> str | None:
    path = path_part.split("\t")[0].strip()
    if path == "/dev/null":
        return None
    if path.startswith("a/") or path.startswith("b/"):
        return path[2:]
    return path


def _parse_hunk_header(header: str) -> tuple[int, int, int, int]:
    # @@ -a,b +c,d @@
    try:
        parts = header.split(" ")
        old_start, old_count = _split_range(parts[1].lstrip("-"))
        new_start, new_count = _split_range(parts[2].lstrip("+"))
        return old_start, old_count, new_start, new_count
    except Exception as exc:
        raise ValueError(f"Invalid diff hunk header: {header}") from exc


def _split_range(part: str) -> tuple[int, int]:
    if "," in part:
        start, count = part.split(",", 1)
        return int(start), int(count)
    return int(part), 1
