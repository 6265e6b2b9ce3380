"""Chunking of source files, markdown, commits and pull requests."""

from __future__ import annotations

import ast
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from markdown_it import MarkdownIt

from docvector.models.entities import Chunk, Commit, ContentType, make_chunk_id
from docvector.utils.text import (
    clean_comment,
    estimate_tokens,
    is_doc_comment,
    split_diff,
    summarize,
    summarize_diff,
)

logger = logging.getLogger(__name__)

_JSDOC_RE = re.compile(r"/\*\*.*?\*/", re.DOTALL)
_JS_DECL_RE = re.compile(
    r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?"
    r"(?:function\*?|class|interface|type|enum|const|let|var)\s+([A-Za-z_$][\w$]*)"
)
_BRANCH_NODES = (
    ast.If,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.ExceptHandler,
    ast.IfExp,
    ast.Assert,
    ast.comprehension,
)
_MAX_CONTEXT_LINES = 50


@dataclass(slots=True)
class ChunkerOptions:
    max_tokens: int = 512
    min_tokens: int = 4
    overlap: int = 50
    include_context: bool = True
    extract_comments: bool = True


class Chunker:
    """Split raw content into :class:`Chunk` records."""

    def __init__(self, options: ChunkerOptions | None = None) -> None:
        self.options = options or ChunkerOptions()
        self._md = MarkdownIt("commonmark")

    # -- public ----------------------------------------------------------

    def code(self, content: str, path: str, lang: str | None, module: str | None = None) -> list[Chunk]:
        if lang == "python":
            try:
                tree = ast.parse(content)
            except (SyntaxError, ValueError) as exc:
                logger.debug("Falling back to text windows for %s: %s", path, exc)
            else:
                return _PythonChunks(self.options, content, path, module).build(tree)
        chunks = self._text(content, path, "code", lang)
        if self.options.extract_comments:
            chunks.extend(self._doc_comments(content, path, lang, chunks[0].id))
        return chunks

    def docs(self, content: str, path: str) -> list[Chunk]:
        file_chunk = Chunk(
            id=make_chunk_id(path, "file", content=content),
            content=summarize(content, 20),
            type="docs",
            level="file",
            path=path,
            lang="markdown",
        )
        chunks = [file_chunk]
        lines = content.split("\n")
        for heading, depth, start, end in self._sections(content, len(lines)):
            body = "\n".join(lines[start:end])
            if not body.strip() or estimate_tokens(body) < self.options.min_tokens:
                continue
            meta: dict[str, Any] = {}
            symbol = None
            if heading is not None:
                meta = {"heading": heading, "depth": depth}
                symbol = _heading_symbol(heading)
            chunks.append(
                Chunk(
                    id=make_chunk_id(path, "section", heading or "intro", content=body),
                    content=body,
                    type="docs",
                    level="symbol",
                    path=path,
                    symbol=symbol,
                    kind="section",
                    parent=file_chunk.id,
                    lines=(start + 1, end),
                    lang="markdown",
                    meta=meta,
                )
            )
        return chunks

    def commit(self, commit: Commit) -> list[Chunk]:
        meta = {"commit_sha": commit.sha, "author": commit.author, "timestamp": commit.time}
        head = Chunk(
            id=make_chunk_id(commit.sha, "commit"),
            content=f"{commit.msg}\n\n{summarize_diff(commit.diff)}",
            type="commits",
            level="project",
            path=commit.sha,
            meta=dict(meta),
        )
        chunks = [head]
        for file, diff in split_diff(commit.diff).items():
            chunks.append(
                Chunk(
                    id=make_chunk_id(commit.sha, "file", file),
                    content=diff,
                    type="commits",
                    level="file",
                    path=file,
                    parent=head.id,
                    meta=dict(meta),
                )
            )
        return chunks

    def pr(
        self,
        number: int,
        title: str,
        body: str,
        comments: Sequence[str],
        author: str,
        time: int,
    ) -> list[Chunk]:
        discussion = "\n".join(f"- {comment}" for comment in comments)
        return [
            Chunk(
                id=make_chunk_id(f"pr-{number}", "pr"),
                content=f"# {title}\n\n{body}\n\n## Discussion\n{discussion}",
                type="prs",
                level="project",
                path=f"pr/{number}",
                meta={"pr_number": number, "author": author, "timestamp": time},
            )
        ]

    # -- internals -------------------------------------------------------

    def _sections(self, content: str, line_count: int) -> Iterator[tuple[str | None, int, int, int]]:
        """Yield ``(heading, depth, start, end)`` with 0-based, end-exclusive lines."""
        tokens = self._md.parse(content)
        headings: list[tuple[str, int, int]] = []
        for idx, token in enumerate(tokens):
            if token.type == "heading_open" and token.map:
                inline = tokens[idx + 1] if idx + 1 < len(tokens) else None
                text = inline.content if inline is not None and inline.type == "inline" else ""
                headings.append((text.strip(), int(token.tag[1:]), token.map[0]))
        first = headings[0][2] if headings else line_count
        if first > 0:
            yield None, 0, 0, first
        for pos, (text, depth, start) in enumerate(headings):
            end = headings[pos + 1][2] if pos + 1 < len(headings) else line_count
            yield text, depth, start, end

    def _text(self, content: str, path: str, type: ContentType, lang: str | None) -> list[Chunk]:
        lines = content.split("\n")
        file_chunk = Chunk(
            id=make_chunk_id(path, "file", content=content),
            content="\n".join(lines[:20]),
            type=type,
            level="file",
            path=path,
            lang=lang,
        )
        chunks = [file_chunk]
        keep = math.ceil(self.options.overlap / 4)
        buf: list[str] = []
        tokens = 0
        start = 0
        for idx, line in enumerate(lines):
            line_tokens = estimate_tokens(line)
            if buf and tokens + line_tokens > self.options.max_tokens:
                chunks.append(self._window(buf, path, type, lang, file_chunk.id, start, idx - 1))
                buf = buf[-keep:] if keep else []
                tokens = estimate_tokens("\n".join(buf))
                start = idx - len(buf)
            buf.append(line)
            tokens += line_tokens
        if buf and tokens >= self.options.min_tokens:
            chunks.append(self._window(buf, path, type, lang, file_chunk.id, start, len(lines) - 1))
        return chunks

    def _window(
        self,
        buf: list[str],
        path: str,
        type: ContentType,
        lang: str | None,
        parent: str,
        start: int,
        end: int,
    ) -> Chunk:
        text = "\n".join(buf)
        return Chunk(
            id=make_chunk_id(path, "chunk", start, content=text),
            content=text,
            type=type,
            level="symbol",
            path=path,
            parent=parent,
            lines=(start + 1, end + 1),
            lang=lang,
        )

    def _doc_comments(self, content: str, path: str, lang: str | None, parent: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        for match in _JSDOC_RE.finditer(content):
            raw = match.group(0)
            if not is_doc_comment(raw):
                continue
            text = clean_comment(raw)
            if estimate_tokens(text) < self.options.min_tokens:
                continue
            start = content.count("\n", 0, match.start())
            end = start + raw.count("\n")
            following = content[match.end() :].lstrip("\n").split("\n", 1)[0]
            decl = _JS_DECL_RE.match(following)
            chunks.append(
                Chunk(
                    id=make_chunk_id(path, "comment", start, content=text),
                    content=text,
                    type="comments",
                    level="symbol",
                    path=path,
                    symbol=decl.group(1) if decl else None,
                    parent=parent,
                    lines=(start + 1, end + 1),
                    lang=lang,
                )
            )
        return chunks


class _PythonChunks:
    """Builds code and docstring chunks for one parsed Python module."""

    def __init__(self, options: ChunkerOptions, content: str, path: str, module: str | None) -> None:
        self.options = options
        self.content = content
        self.lines = content.split("\n")
        self.path = path
        self.module = module
        self.exports: set[str] | None = None

    def build(self, tree: ast.Module) -> list[Chunk]:
        self.exports = _dunder_all(tree)
        public = [
            node.name
            for node in tree.body
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
            and self._exported(node.name, top_level=True)
        ]
        meta: dict[str, Any] = {"is_exported": bool(public)}
        if self.module:
            meta["module_path"] = self.module
        file_chunk = Chunk(
            id=make_chunk_id(self.path, "file", content=self.content),
            content=self._file_context(tree),
            type="code",
            level="file",
            path=self.path,
            lang="python",
            meta=meta,
        )
        chunks = [file_chunk]
        for node in tree.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                chunks.extend(self._symbol(node, file_chunk.id, None, exported_scope=True))
        return chunks

    def _file_context(self, tree: ast.Module) -> str:
        context: list[str] = []
        for node in tree.body:
            if isinstance(node, (ast.Import, ast.ImportFrom)) or _is_docstring_expr(node):
                context.extend(self.lines[node.lineno - 1 : node.end_lineno])
        if not context:
            return summarize(self.content, 20)
        return "\n".join(context[:_MAX_CONTEXT_LINES])

    def _exported(self, name: str, top_level: bool) -> bool:
        if top_level and self.exports is not None:
            return name in self.exports
        return not name.startswith("_")

    def _symbol(
        self,
        node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef,
        parent_id: str,
        owner: str | None,
        exported_scope: bool,
    ) -> list[Chunk]:
        name = f"{owner}.{node.name}" if owner else node.name
        is_class = isinstance(node, ast.ClassDef)
        kind = "class" if is_class else ("method" if owner else "function")
        start = min([node.lineno, *(dec.lineno for dec in node.decorator_list)])
        end = node.end_lineno or node.lineno
        source = "\n".join(self.lines[start - 1 : end])
        if self.options.include_context and owner:
            source = f"# In {owner}\n{source}"
        exported = exported_scope and self._exported(node.name, top_level=owner is None)
        meta: dict[str, Any] = {
            "signature": _signature(node),
            "visibility": _visibility(node.name),
            "is_exported": exported,
            "complexity": _complexity(node),
        }
        if not is_class:
            meta["params"] = _params(node, is_method=owner is not None)
            meta["returns"] = _returns_value(node)
            meta["raises"] = _raised(node)
        if self.module:
            meta["module_path"] = self.module

        chunks: list[Chunk] = []
        if estimate_tokens(source) >= self.options.min_tokens:
            chunk = Chunk(
                id=make_chunk_id(self.path, "symbol", name, content=source),
                content=source,
                type="code",
                level="symbol",
                path=self.path,
                symbol=name,
                kind=kind,
                parent=parent_id,
                lines=(start, end),
                lang="python",
                meta=meta,
            )
            chunks.append(chunk)
            parent_id = chunk.id

        docstring = ast.get_docstring(node)
        if self.options.extract_comments and docstring:
            doc_node = node.body[0]
            if estimate_tokens(docstring) >= self.options.min_tokens:
                chunks.append(
                    Chunk(
                        id=make_chunk_id(self.path, "comment", name, content=docstring),
                        content=docstring,
                        type="comments",
                        level="symbol",
                        path=self.path,
                        symbol=name,
                        kind=kind,
                        parent=parent_id,
                        lines=(doc_node.lineno, doc_node.end_lineno or doc_node.lineno),
                        lang="python",
                    )
                )

        if is_class:
            for child in node.body:
                if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                    chunks.extend(self._symbol(child, parent_id, name, exported_scope=exported))
        return chunks


def _heading_symbol(heading: str) -> str:
    symbol = heading.replace("`", "").strip()
    if symbol.endswith("()"):
        symbol = symbol[:-2].rstrip()
    return symbol


def _dunder_all(tree: ast.Module) -> set[str] | None:
    for node in tree.body:
        if isinstance(node, ast.Assign) and any(
            isinstance(target, ast.Name) and target.id == "__all__" for target in node.targets
        ):
            if isinstance(node.value, (ast.List, ast.Tuple)):
                return {
                    elt.value
                    for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                }
    return None


def _is_docstring_expr(node: ast.stmt) -> bool:
    return (
        isinstance(node, ast.Expr)
        and isinstance(node.value, ast.Constant)
        and isinstance(node.value.value, str)
    )


def _visibility(name: str) -> str:
    if name.startswith("__") and name.endswith("__"):
        return "public"
    if name.startswith("__"):
        return "private"
    if name.startswith("_"):
        return "protected"
    return "public"


def _signature(node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef) -> str:
    if isinstance(node, ast.ClassDef):
        bases = ", ".join(ast.unparse(base) for base in node.bases)
        return f"class {node.name}({bases})" if bases else f"class {node.name}"
    prefix = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
    signature = f"{prefix} {node.name}({ast.unparse(node.args)})"
    if node.returns is not None:
        signature += f" -> {ast.unparse(node.returns)}"
    return signature


def _params(node: ast.FunctionDef | ast.AsyncFunctionDef, is_method: bool) -> list[str]:
    args = node.args
    names = [arg.arg for arg in [*args.posonlyargs, *args.args]]
    is_static = any(isinstance(dec, ast.Name) and dec.id == "staticmethod" for dec in node.decorator_list)
    if is_method and not is_static and names and names[0] in ("self", "cls"):
        names = names[1:]
    if args.vararg:
        names.append(args.vararg.arg)
    names.extend(arg.arg for arg in args.kwonlyargs)
    if args.kwarg:
        names.append(args.kwarg.arg)
    return names


def _own_nodes(node: ast.AST) -> Iterator[ast.AST]:
    """Walk ``node`` without descending into nested functions, lambdas or classes."""
    stack = list(ast.iter_child_nodes(node))
    while stack:
        child = stack.pop()
        yield child
        if not isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)):
            stack.extend(ast.iter_child_nodes(child))


def _returns_value(node: ast.FunctionDef | ast.AsyncFunctionDef) -> bool:
    if node.returns is not None:
        return not (isinstance(node.returns, ast.Constant) and node.returns.value is None)
    return any(isinstance(child, ast.Return) and child.value is not None for child in _own_nodes(node))


def _raised(node: ast.FunctionDef | ast.AsyncFunctionDef) -> list[str]:
    names: list[str] = []
    for child in _own_nodes(node):
        if isinstance(child, ast.Raise) and child.exc is not None:
            target = child.exc.func if isinstance(child.exc, ast.Call) else child.exc
            name = ast.unparse(target)
            if name not in names:
                names.append(name)
    return names


def _complexity(node: ast.AST) -> int:
    score = 1
    for child in _own_nodes(node):
        if isinstance(child, _BRANCH_NODES):
            score += 1
        elif isinstance(child, ast.BoolOp):
            score += len(child.values) - 1
    return score


__all__ = ["Chunker", "ChunkerOptions"]
