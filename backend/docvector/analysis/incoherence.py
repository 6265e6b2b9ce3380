"""Detection of drift and gaps between code and its documentation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Sequence

import numpy as np

from docvector.core.config import Settings
from docvector.core.metrics import INCOHERENCE_ISSUES
from docvector.core.protocols import Embedder, VectorStore
from docvector.models.entities import (
    INCOHERENCE_TYPES,
    Chunk,
    FileReport,
    Incoherence,
    ProjectSummary,
    SearchHit,
    SearchQuery,
)
from docvector.utils.time import now_ms
from docvector.utils.vectors import cosine

logger = logging.getLogger(__name__)

MISSING_CONFIDENCE = 0.9
ORPHANED_CONFIDENCE = 0.8
MISMATCH_CONFIDENCE = 0.85
INCOMPLETE_CONFIDENCE = 0.9
DRIFT_CONFIDENCE = 0.7

ORPHANED_SEVERITY = 0.5
INCOMPLETE_STEP = 0.25
ISSUE_WEIGHT = 0.1
DOC_RATIO_WEIGHT = 0.1
WORST_FILES = 10

_PARAM_MARKERS = ("@param", ":param", "args:", "arguments:", "parameters:", "parameter")
_RETURN_MARKERS = ("@return", ":return", "returns:", "returns")
_RAISE_MARKERS = ("@throws", ":raises", "raises:", "raises", "throws")


@dataclass(slots=True)
class IncoherenceOptions:
    coherence: float = 0.6
    drift: float = 0.3
    match: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "IncoherenceOptions":
        return cls(
            coherence=settings.coherence_threshold,
            drift=settings.drift_threshold,
            match=settings.match_threshold,
        )


def severity_bucket(severity: float) -> str:
    if severity > 0.7:
        return "high"
    if severity > 0.4:
        return "medium"
    return "low"


def coherence_score(code: Sequence[Chunk], docs: Sequence[Chunk], issues: Sequence[Incoherence]) -> float:
    """``1 - sum(severity * 0.1) + docs/code * 0.1`` clamped to [0, 1]; 1.0 without code."""
    if not code:
        return 1.0
    score = 1.0 - sum(issue.severity * ISSUE_WEIGHT for issue in issues)
    score += len(docs) / len(code) * DOC_RATIO_WEIGHT
    return max(0.0, min(1.0, score))


class IncoherenceDetector:
    """Classify, per file, where documentation and code disagree."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        options: IncoherenceOptions | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.options = options or IncoherenceOptions()
        self._vectors: dict[str, np.ndarray] = {}

    async def analyze_file(self, path: str) -> FileReport:
        self._vectors.clear()
        chunks = await self.store.get_by_path(path)
        code = [chunk for chunk in chunks if chunk.type == "code" and chunk.level == "symbol"]
        docs = [chunk for chunk in chunks if chunk.type in ("docs", "comments")]
        for chunk in (*code, *docs):
            await self._embedding(chunk)

        issues = [
            *await self._find_missing(code, docs),
            *await self._find_orphaned(code, docs),
            *await self._find_mismatch(code, docs),
            *self._find_incomplete(code, docs),
        ]
        issues = [issue if issue.fix else replace(issue, fix=self.suggest_fix(issue)) for issue in issues]
        for issue in issues:
            INCOHERENCE_ISSUES.labels(type=issue.type).inc()
        score = coherence_score(code, docs, issues)
        logger.debug("Analyzed %s", path, extra={"ctx_issues": len(issues), "ctx_score": score})
        return FileReport(path=path, issues=issues, score=score, at=now_ms())

    async def analyze_project(self, paths: Sequence[str] | None = None) -> ProjectSummary:
        if paths is None:
            paths = await self.store.list_paths(types=["code", "docs", "comments"])
        reports = [await self.analyze_file(path) for path in paths]
        by_type = {kind: 0 for kind in INCOHERENCE_TYPES}
        by_severity = {"high": 0, "medium": 0, "low": 0}
        total = 0
        for report in reports:
            for issue in report.issues:
                total += 1
                by_type[issue.type] += 1
                by_severity[severity_bucket(issue.severity)] += 1
        avg = sum(report.score for report in reports) / len(reports) if reports else 1.0
        worst = sorted(reports, key=lambda report: report.score)[:WORST_FILES]
        return ProjectSummary(
            files=len(reports),
            with_issues=sum(1 for report in reports if report.issues),
            total=total,
            by_type=by_type,
            by_severity=by_severity,
            avg_score=avg,
            worst=worst,
        )

    async def detect_drift(self, code: Chunk, history: Sequence[Chunk]) -> Incoherence | None:
        """Sum the similarity drops between consecutive doc versions that exceed the threshold."""
        if len(history) < 2:
            return None
        code_vector = await self.embedder.embed_query(code.content)
        sims = [cosine(code_vector, await self.embedder.embed_query(doc.content)) for doc in history]
        drift = 0.0
        for previous, current in zip(sims, sims[1:]):
            drop = previous - current
            if drop > self.options.drift:
                drift += drop
        if drift == 0:
            return None
        issue = Incoherence(
            id=f"drift-{code.id}",
            code=code,
            doc=history[-1],
            type="drift",
            severity=min(1.0, drift / len(sims)),
            msg=f"Doc drifted {drift * 100:.1f}% over {len(history)} versions",
            confidence=DRIFT_CONFIDENCE,
        )
        INCOHERENCE_ISSUES.labels(type="drift").inc()
        return replace(issue, fix=self.suggest_fix(issue))

    async def find_best_match(self, code: Chunk) -> SearchHit | None:
        vector = await self._embedding(code)
        hits = await self.store.search(
            vector,
            SearchQuery(q=code.content, k=1, types=["docs", "comments"], min=self.options.match),
        )
        return hits[0] if hits else None

    def suggest_fix(self, issue: Incoherence) -> str:
        code, doc = issue.code, issue.doc
        if issue.type == "missing" and code is not None:
            kind = code.kind or "symbol"
            stub = f'"""TODO: Document this {kind}."""' if code.lang == "python" else f"/** TODO: Document this {kind} */"
            return f"Add documentation for {code.symbol or 'this symbol'}:\n\n{stub}"
        if issue.type == "outdated" and code is not None:
            return f"Update documentation to match:\n{code.content[:200]}..."
        if issue.type == "mismatch" and code is not None:
            return f"Rewrite documentation to describe:\n{code.meta.get('signature') or code.content[:100]}"
        if issue.type == "incomplete":
            return "Add missing elements (params, return, raises)."
        if issue.type == "orphaned" and doc is not None:
            return f"Remove or relocate:\n{doc.content[:100]}..."
        if issue.type == "drift":
            return "Review and update documentation for evolved implementation."
        return "Review and fix documentation."

    # -- checks ----------------------------------------------------------

    async def _find_missing(self, code: Sequence[Chunk], docs: Sequence[Chunk]) -> list[Incoherence]:
        issues: list[Incoherence] = []
        for chunk in code:
            if chunk.meta.get("visibility") == "private" or not chunk.meta.get("is_exported"):
                continue
            symbol = chunk.symbol or ""
            needle = symbol.lower()
            if any(doc.symbol == chunk.symbol or needle in doc.content.lower() for doc in docs):
                continue
            match = await self.find_best_match(chunk)
            if match is not None and match.score >= self.options.match:
                continue
            issues.append(
                Incoherence(
                    id=f"missing-{chunk.id}",
                    code=chunk,
                    doc=None,
                    type="missing",
                    severity=_missing_severity(chunk),
                    msg=f'No documentation for {chunk.kind or "symbol"} "{symbol}"',
                    confidence=MISSING_CONFIDENCE,
                )
            )
        return issues

    async def _find_orphaned(self, code: Sequence[Chunk], docs: Sequence[Chunk]) -> list[Incoherence]:
        issues: list[Incoherence] = []
        symbols = {chunk.symbol for chunk in code}
        for doc in docs:
            if not doc.symbol or doc.symbol in symbols:
                continue
            vector = await self._embedding(doc)
            hits = await self.store.search(vector, SearchQuery(q=doc.content, k=1, types=["code"]))
            if hits and hits[0].score >= self.options.match:
                continue
            issues.append(
                Incoherence(
                    id=f"orphaned-{doc.id}",
                    code=None,
                    doc=doc,
                    type="orphaned",
                    severity=ORPHANED_SEVERITY,
                    msg=f'Doc for "{doc.symbol}" has no code',
                    fix="Remove orphaned documentation or add the documented functionality",
                    confidence=ORPHANED_CONFIDENCE,
                )
            )
        return issues

    async def _find_mismatch(self, code: Sequence[Chunk], docs: Sequence[Chunk]) -> list[Incoherence]:
        issues: list[Incoherence] = []
        for chunk in code:
            doc = _doc_for(chunk, docs)
            if doc is None:
                continue
            sim = cosine(await self._embedding(chunk), await self._embedding(doc))
            if sim < self.options.coherence:
                issues.append(
                    Incoherence(
                        id=f"mismatch-{chunk.id}",
                        code=chunk,
                        doc=doc,
                        type="mismatch",
                        severity=max(0.0, min(1.0, 1 - sim)),
                        msg=f"Doc doesn't match code ({sim * 100:.1f}% similarity)",
                        confidence=MISMATCH_CONFIDENCE,
                    )
                )
        return issues

    def _find_incomplete(self, code: Sequence[Chunk], docs: Sequence[Chunk]) -> list[Incoherence]:
        issues: list[Incoherence] = []
        for chunk in code:
            if chunk.kind not in ("function", "method"):
                continue
            doc = _doc_for(chunk, docs)
            if doc is None:
                continue
            missing = _missing_elements(chunk, doc.content.lower())
            if missing:
                issues.append(
                    Incoherence(
                        id=f"incomplete-{chunk.id}",
                        code=chunk,
                        doc=doc,
                        type="incomplete",
                        severity=min(1.0, len(missing) * INCOMPLETE_STEP),
                        msg=f"Missing: {', '.join(missing)}",
                        fix=f"Add documentation for {', '.join(missing)}",
                        confidence=INCOMPLETE_CONFIDENCE,
                    )
                )
        return issues

    async def _embedding(self, chunk: Chunk) -> np.ndarray:
        cached = self._vectors.get(chunk.id)
        if cached is None:
            cached = await self.embedder.embed_query(chunk.content)
            self._vectors[chunk.id] = cached
        return cached


def _doc_for(chunk: Chunk, docs: Sequence[Chunk]) -> Chunk | None:
    return next((doc for doc in docs if doc.symbol == chunk.symbol), None)


def _missing_severity(chunk: Chunk) -> float:
    severity = 0.5
    if chunk.meta.get("is_exported"):
        severity += 0.2
    if chunk.meta.get("visibility") == "public":
        severity += 0.1
    if (chunk.meta.get("complexity") or 0) > 5:
        severity += 0.1
    if chunk.kind in ("class", "interface"):
        severity += 0.1
    return min(1.0, severity)


def _missing_elements(chunk: Chunk, doc_text: str) -> list[str]:
    meta = chunk.meta
    signature = str(meta.get("signature") or "")
    if "params" in meta:
        has_params = bool(meta["params"])
    else:
        has_params = "(" in signature and "()" not in signature
    if "returns" in meta:
        has_return = bool(meta["returns"])
    else:
        has_return = ": " in signature and ": void" not in signature
    if "raises" in meta:
        has_raise = bool(meta["raises"])
    else:
        has_raise = "throw" in signature.lower() or "throw " in chunk.content

    missing: list[str] = []
    if has_params and not any(marker in doc_text for marker in _PARAM_MARKERS):
        missing.append("parameters")
    if has_return and not any(marker in doc_text for marker in _RETURN_MARKERS):
        missing.append("return")
    if has_raise and not any(marker in doc_text for marker in _RAISE_MARKERS):
        missing.append("exceptions")
    return missing


__all__ = [
    "IncoherenceDetector",
    "IncoherenceOptions",
    "coherence_score",
    "severity_bucket",
]
