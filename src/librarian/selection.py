"""Rank candidate paths and split the best ones into focus and periphery."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .bundle import ContextSelection, SearchHit
from .intent import IntentSignals
from .paths import (
    Facet,
    has_facet,
    is_doc_path,
    is_excluded_path,
    is_placeholder_path,
    is_support_doc_path,
    is_test_path,
    normalize_path,
)

__all__ = [
    "FACET_BONUSES",
    "FileSelector",
    "SelectionInputs",
    "is_doc_task",
]

PREFERRED_BONUS = 600
RECENT_BONUS = 15
IMPACT_BONUS = 25
DOC_PENALTY = -120
STRAY_TEST_PENALTY = -50
CONFIG_PENALTY = -60
HIT_SCORE_CAP = 100.0

# (intent bucket, facet, bonus); a path collects every row that applies.
FACET_BONUSES: Tuple[Tuple[str, str, int], ...] = (
    ("ui", Facet.FRONTEND, 140),
    ("testing", Facet.TEST, 120),
    ("infra", Facet.INFRA, 120),
    ("security", Facet.SECURITY, 80),
    ("performance", Facet.PERFORMANCE, 80),
    ("observability", Facet.OBSERVABILITY, 80),
    ("behavior", Facet.BACKEND, 30),
    ("data", Facet.BACKEND, 20),
    ("content", Facet.DOC, 20),
)

_DOC_TASK = re.compile(
    r"\b(docs?|documentation|readme|changelog|markdown|guide|handbook|pdr|sds|rfp|spec sheet|write[- ]?up)\b",
    re.IGNORECASE,
)


def is_doc_task(request: str) -> bool:
    """Return True when the request is about documentation rather than code."""
    return bool(_DOC_TASK.search(request))


@dataclass(frozen=True, slots=True)
class SelectionInputs:
    hits: Sequence[SearchHit] = ()
    preferred: Sequence[str] = ()
    recent: Sequence[str] = ()
    forced_focus: Sequence[str] = ()
    impact_neighbors: Sequence[str] = ()


@dataclass(slots=True)
class _Candidate:
    path: str
    order: int
    score: float = 0.0


class FileSelector:
    """Scores candidates against intent, preference and recency signals."""

    def __init__(
        self,
        intent: IntentSignals,
        *,
        doc_task: bool,
        max_files: int,
        focus_count: int = 2,
    ) -> None:
        self._intent = intent
        self._doc_task = doc_task
        self._max_files = max_files
        self._focus_count = focus_count

    def score(self, path: str, *, preferred: bool = False, recent: bool = False, impact: bool = False, hit_score: float = 0.0) -> float:
        """Score a single path; exposed for ranking outside a full selection."""
        intent = self._intent
        value = min(hit_score, HIT_SCORE_CAP)
        if preferred:
            value += PREFERRED_BONUS
        if recent:
            value += RECENT_BONUS
        if impact:
            value += IMPACT_BONUS
        for bucket, facet, bonus in FACET_BONUSES:
            if intent.has(bucket) and has_facet(path, facet):
                value += bonus
        if not self._doc_task and (is_doc_path(path) or is_support_doc_path(path)):
            value += DOC_PENALTY
        if intent.ui_only and is_test_path(path):
            value += STRAY_TEST_PENALTY
        if has_facet(path, Facet.CONFIG) and not (intent.has("infra") or intent.has("data")):
            value += CONFIG_PENALTY
        return value

    def select(
        self,
        inputs: SelectionInputs,
        *,
        prior_focus_size: Optional[int] = None,
        low_confidence: bool = False,
    ) -> ContextSelection:
        """Rank every candidate and split the top ``max_files`` into focus and periphery."""
        forced = _clean(inputs.forced_focus)[: self._max_files]
        preferred = set(_clean(inputs.preferred)) | set(forced)
        recent = set(_clean(inputs.recent))
        impact = set(_clean(inputs.impact_neighbors))

        candidates: Dict[str, _Candidate] = {}

        def add(path: str, hit_score: float = 0.0) -> None:
            if path in candidates:
                candidates[path].score = max(candidates[path].score, hit_score)
                return
            candidates[path] = _Candidate(path=path, order=len(candidates), score=hit_score)

        for path in forced:
            add(path)
        for path in _clean(inputs.preferred):
            add(path)
        for hit in inputs.hits:
            if hit.path:
                cleaned = _clean([hit.path])
                if cleaned:
                    add(cleaned[0], float(hit.score or 0.0))
        for path in _clean(inputs.recent):
            add(path)
        for path in _clean(inputs.impact_neighbors):
            add(path)

        for candidate in candidates.values():
            candidate.score = self.score(
                candidate.path,
                preferred=candidate.path in preferred,
                recent=candidate.path in recent,
                impact=candidate.path in impact,
                hit_score=candidate.score,
            )

        ranked = sorted(candidates.values(), key=lambda item: (-item.score, item.order))
        chosen = list(forced)
        docs = tests = 0
        for candidate in ranked:
            if len(chosen) >= self._max_files:
                break
            path = candidate.path
            if path in chosen:
                continue
            if path not in preferred:
                doc_like = is_doc_path(path) or is_support_doc_path(path)
                if doc_like and not self._doc_task:
                    if docs >= 1:
                        continue
                    docs += 1
                elif is_test_path(path) and not self._intent.has("testing"):
                    if tests >= 1:
                        continue
                    tests += 1
                elif candidate.score < 0:
                    continue
            chosen.append(path)

        base_focus = prior_focus_size if prior_focus_size is not None else self._focus_count
        focus_size = min(self._max_files, max(base_focus, len(forced), 1))
        focus = _focus_slice(chosen, forced, focus_size, self._doc_task)
        periphery = [path for path in chosen if path not in focus]
        return ContextSelection(focus=tuple(focus), periphery=tuple(periphery), low_confidence=low_confidence)


def _focus_slice(chosen: List[str], forced: List[str], size: int, doc_task: bool) -> List[str]:
    """Forced paths first, then the best remaining paths; docs only when nothing else fits."""
    focus = list(forced)
    rest = [path for path in chosen if path not in focus]
    if not doc_task:
        rest = [path for path in rest if not is_doc_path(path)] + [path for path in rest if is_doc_path(path)]
    for path in rest:
        if len(focus) >= size:
            break
        focus.append(path)
    return focus


def _clean(paths: Sequence[str]) -> List[str]:
    cleaned: List[str] = []
    for raw in paths:
        path = normalize_path(raw)
        if not path or is_placeholder_path(path) or is_excluded_path(path) or path in cleaned:
            continue
        cleaned.append(path)
    return cleaned
