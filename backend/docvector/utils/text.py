"""Text processing helpers."""

from __future__ import annotations

import re

_NON_WORD_RE = re.compile(r"[^\w\s]")
_DOC_COMMENT_RE = re.compile(r"^(/\*\*|///|\"\"\"|'''|##)")
_DIFF_HEADER_RE = re.compile(r"diff --git a/(.+?) b/")

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "from", "as", "is", "was", "are", "were", "been", "be", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should", "may",
        "might", "must", "shall", "can", "this", "that", "these", "those", "what",
        "which", "who", "whom", "how", "when", "where", "why", "all", "each", "every",
        "both", "few", "more", "most", "other", "some", "such", "no", "nor", "not",
        "only", "same", "so", "than", "too", "very", "just", "find", "get",
    }
)


def tokenize(text: str, min_len: int = 2) -> list[str]:
    """Lowercase, strip punctuation, and drop stop words and short tokens."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) > min_len and token not in STOP_WORDS]


def estimate_tokens(text: str) -> int:
    """Rough token estimate at four characters per token."""
    return -(-len(text) // 4)


def summarize(text: str, n: int = 10) -> str:
    """First ``n`` lines of ``text``."""
    return "\n".join(text.split("\n")[:n])


def is_doc_comment(text: str) -> bool:
    return bool(_DOC_COMMENT_RE.match(text))


def clean_comment(text: str) -> str:
    """Strip comment markers (JSDoc, triple-slash, docstring quotes)."""
    cleaned = re.sub(r"^/\*\*?|\*/$", "", text)
    cleaned = re.sub(r"^///?", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"^\s*\*\s?", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"^\"\"\"|\"\"\"$", "", cleaned)
    cleaned = re.sub(r"^'''|'''$", "", cleaned)
    return cleaned.strip()


def highlight(query: str, text: str, limit: int = 3) -> list[str]:
    """Return up to ``limit`` lines mentioning a query term, terms wrapped in ``**``."""
    terms = tokenize(query)
    if not terms:
        return []
    pattern = re.compile("(" + "|".join(re.escape(term) for term in terms) + ")", re.IGNORECASE)
    results: list[str] = []
    for line in text.split("\n"):
        lower = line.lower()
        if not any(term in lower for term in terms):
            continue
        results.append(pattern.sub(r"**\1**", line).strip())
        if len(results) >= limit:
            break
    return results


def summarize_diff(diff: str) -> str:
    lines = diff.split("\n")
    added = sum(1 for line in lines if line.startswith("+"))
    removed = sum(1 for line in lines if line.startswith("-"))
    files = diff.count("diff --git")
    return f"{files} files (+{added}/-{removed})"


def split_diff(diff: str) -> dict[str, str]:
    """Split a unified git diff into per-file sections keyed by path."""
    files: dict[str, str] = {}
    for part in re.split(r"(?=diff --git)", diff):
        match = _DIFF_HEADER_RE.search(part)
        if match:
            files[match.group(1)] = part
    return files


__all__ = [
    "STOP_WORDS",
    "tokenize",
    "estimate_tokens",
    "summarize",
    "is_doc_comment",
    "clean_comment",
    "highlight",
    "summarize_diff",
    "split_diff",
]
