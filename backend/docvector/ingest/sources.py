"""File-system and git collaborators used by the indexer."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import re
import subprocess
from pathlib import Path
from typing import Sequence

from docvector.models.entities import Commit

logger = logging.getLogger(__name__)

_BRACE_RE = re.compile(r"\{([^{}]*)\}")

LANGUAGES = {
    ".py": "python",
    ".pyi": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".md": "markdown",
    ".mdx": "markdown",
    ".rst": "rst",
    ".txt": "text",
}

DOC_EXTENSIONS = frozenset({".md", ".mdx", ".rst", ".txt"})


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives, innermost group first."""
    match = _BRACE_RE.search(pattern)
    if match is None:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        for candidate in expand_braces(f"{head}{option}{tail}"):
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded


def is_excluded(path: Path, ignore: Sequence[str]) -> bool:
    posix = path.as_posix()
    return any(fnmatch.fnmatch(posix, pattern) for pattern in ignore)


class LocalFileSystem:
    """Reads files under ``root``; paths handed out are root-relative posix strings."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser().resolve()

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    def relative(self, path: Path | str) -> str:
        absolute = Path(path).resolve()
        try:
            return absolute.relative_to(self.root).as_posix()
        except ValueError:
            return absolute.as_posix()

    async def glob(self, patterns: Sequence[str], ignore: Sequence[str] = ()) -> list[str]:
        return await asyncio.to_thread(self._glob_sync, list(patterns), list(ignore))

    def _glob_sync(self, patterns: list[str], ignore: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for raw in patterns:
            for pattern in expand_braces(raw):
                matches = sorted(p for p in self.root.glob(pattern) if p.is_file())
                for match in matches:
                    if is_excluded(match, ignore):
                        continue
                    seen.setdefault(self.relative(match), None)
        return list(seen)

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self.resolve(path).read_text, encoding="utf-8", errors="replace")

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).exists)

    async def mtime(self, path: str) -> float:
        stat = await asyncio.to_thread(self.resolve(path).stat)
        return stat.st_mtime

    def lang(self, path: str) -> str | None:
        return LANGUAGES.get(Path(path).suffix.lower())


class GitRepository:
    """Shells out to ``git`` inside ``root``."""

    def __init__(self, root: Path | str, max_diff_chars: int = 20_000) -> None:
        self.root = Path(root).expanduser()
        self.max_diff_chars = max_diff_chars

    def _git(self, *args: str) -> str:
        proc = subprocess.run(
            ["git", *args],
            cwd=self.root,
            capture_output=True,
            text=True,
            check=True,
        )
        return proc.stdout

    async def is_repo(self) -> bool:
        try:
            out = await asyncio.to_thread(self._git, "rev-parse", "--is-inside-work-tree")
        except (OSError, subprocess.CalledProcessError):
            return False
        return out.strip() == "true"

    async def branch(self) -> str:
        return (await asyncio.to_thread(self._git, "rev-parse", "--abbrev-ref", "HEAD")).strip()

    async def commits(self, n: int) -> list[Commit]:
        if n <= 0:
            return []
        log = await asyncio.to_thread(self._git, "log", f"-n{n}", "--format=%H%x1f%an%x1f%at%x1f%B%x1e")
        commits: list[Commit] = []
        for record in log.split("\x1e"):
            record = record.strip("\n")
            if not record:
                continue
            sha, author, timestamp, message = record.split("\x1f", 3)
            diff = await asyncio.to_thread(self._git, "show", "--format=", "--patch", sha)
            commits.append(
                Commit(
                    sha=sha,
                    msg=message.strip(),
                    author=author,
                    time=int(timestamp) * 1000,
                    diff=diff[: self.max_diff_chars],
                )
            )
        return commits


__all__ = [
    "LANGUAGES",
    "DOC_EXTENSIONS",
    "LocalFileSystem",
    "GitRepository",
    "expand_braces",
    "is_excluded",
]
