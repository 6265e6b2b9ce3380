"""Tests for chunker."""

from __future__ import annotations

from docvector.ingest.chunker import Chunker, ChunkerOptions
from docvector.models.entities import Commit

PY_SOURCE = '''"""Configuration helpers."""

import os

__all__ = ["load_config", "Parser"]


def load_config(path, strict=False):
    """Load the configuration file from disk."""
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    return open(path).read()


def _helper():
    return 1


class Parser:
    """Parse configuration text into tokens."""

    def parse(self, text):
        return text.split()

    def _internal(self):
        pass
'''

MD_SOURCE = """Intro paragraph text here.

# Guide

Some guide text that is long enough.

## `load_config()`

Loads config from a path.
"""

JS_SOURCE = """/**
 * Adds two numbers together.
 */
export function add(a, b) {
  return a + b;
}
"""


def _by_symbol(chunks, type="code"):
    return {chunk.symbol: chunk for chunk in chunks if chunk.type == type and chunk.level == "symbol"}


def test_python_symbols_and_metadata() -> None:
    chunks = Chunker().code(PY_SOURCE, "src/config.py", "python", "config")
    file_chunk = chunks[0]
    assert file_chunk.level == "file"
    assert file_chunk.meta["is_exported"] is True
    assert file_chunk.meta["module_path"] == "config"
    assert "import os" in file_chunk.content

    symbols = _by_symbol(chunks)
    assert set(symbols) == {"load_config", "_helper", "Parser", "Parser.parse", "Parser._internal"}

    load = symbols["load_config"]
    assert load.kind == "function"
    assert load.lines == (8, 12)
    assert load.parent == file_chunk.id
    assert load.meta["signature"] == "def load_config(path, strict=False)"
    assert load.meta["params"] == ["path", "strict"]
    assert load.meta["returns"] is True
    assert load.meta["raises"] == ["FileNotFoundError"]
    assert load.meta["visibility"] == "public"
    assert load.meta["is_exported"] is True
    assert load.meta["complexity"] == 2

    helper = symbols["_helper"]
    assert helper.meta["visibility"] == "protected"
    assert helper.meta["is_exported"] is False

    parser = symbols["Parser"]
    assert parser.kind == "class"
    method = symbols["Parser.parse"]
    assert method.kind == "method"
    assert method.parent == parser.id
    assert method.meta["params"] == ["text"]
    assert method.meta["is_exported"] is True
    assert method.content.startswith("# In Parser\n")
    assert symbols["Parser._internal"].meta["is_exported"] is False


def test_python_docstrings_become_comment_chunks() -> None:
    chunks = Chunker().code(PY_SOURCE, "src/config.py", "python")
    comments = _by_symbol(chunks, type="comments")
    assert set(comments) == {"load_config", "Parser"}
    assert comments["load_config"].content == "Load the configuration file from disk."
    assert comments["load_config"].lines == (9, 9)


def test_chunk_ids_are_stable_across_runs() -> None:
    first = [chunk.id for chunk in Chunker().code(PY_SOURCE, "src/config.py", "python")]
    second = [chunk.id for chunk in Chunker().code(PY_SOURCE, "src/config.py", "python")]
    assert first == second
    assert len(set(first)) == len(first)


def test_extract_comments_can_be_disabled() -> None:
    chunks = Chunker(ChunkerOptions(extract_comments=False)).code(PY_SOURCE, "src/config.py", "python")
    assert all(chunk.type == "code" for chunk in chunks)


def test_invalid_python_falls_back_to_windows() -> None:
    chunks = Chunker().code("def broken(:\n    pass pass pass pass\n", "src/bad.py", "python")
    assert chunks[0].level == "file"
    assert all(chunk.symbol is None for chunk in chunks)
    assert len(chunks) == 2


def test_markdown_sections() -> None:
    chunks = Chunker().docs(MD_SOURCE, "docs/guide.md")
    file_chunk, *sections = chunks
    assert file_chunk.level == "file" and file_chunk.type == "docs"
    assert [section.symbol for section in sections] == [None, "Guide", "load_config"]
    assert sections[0].lines == (1, 2)
    assert sections[1].meta == {"heading": "Guide", "depth": 1}
    assert sections[2].meta["heading"] == "`load_config()`"
    assert sections[2].meta["depth"] == 2
    assert all(section.parent == file_chunk.id for section in sections)
    assert "Loads config" in sections[2].content


def test_text_windows_overlap_for_long_files() -> None:
    content = "\n".join(f"line {i} " + "x" * 36 for i in range(40))
    chunks = Chunker(ChunkerOptions(max_tokens=100, overlap=20)).code(content, "src/big.go", "go")
    windows = [chunk for chunk in chunks if chunk.level == "symbol"]
    assert len(windows) > 1
    first_end = windows[0].lines[1]
    second_start = windows[1].lines[0]
    assert second_start <= first_end


def test_jsdoc_comments_attach_to_declarations() -> None:
    chunks = Chunker().code(JS_SOURCE, "src/math.js", "javascript")
    comments = [chunk for chunk in chunks if chunk.type == "comments"]
    assert len(comments) == 1
    assert comments[0].symbol == "add"
    assert comments[0].content == "Adds two numbers together."
    assert comments[0].lines == (1, 3)


def test_commit_chunks() -> None:
    commit = Commit(
        sha="abc123def",
        msg="Fix parser",
        author="dev",
        time=1_700_000_000_000,
        diff="diff --git a/x.py b/x.py\n+new\n-old\ndiff --git a/y.md b/y.md\n+doc\n",
    )
    head, *files = Chunker().commit(commit)
    assert head.type == "commits" and head.level == "project"
    assert head.content.startswith("Fix parser")
    assert "2 files (+2/-1)" in head.content
    assert head.meta["commit_sha"] == "abc123def"
    assert [chunk.path for chunk in files] == ["x.py", "y.md"]
    assert all(chunk.parent == head.id and chunk.level == "file" for chunk in files)


def test_pr_chunk() -> None:
    (chunk,) = Chunker().pr(7, "Add search", "Body text", ["looks good", "ship it"], "dev", 1000)
    assert chunk.type == "prs"
    assert chunk.path == "pr/7"
    assert chunk.meta["pr_number"] == 7
    assert "- ship it" in chunk.content
