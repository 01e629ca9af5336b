"""Reconcile recalled memory facts: prune contradictions, drop irrelevant ones."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .bundle import Preference
from .paths import path_tokens
from .queries import STOPWORDS

__all__ = [
    "MemoryFact",
    "MemoryReconciliation",
    "classify_preferences",
    "facts_conflict",
    "filter_relevant",
    "prune_conflicts",
    "reconcile_memory",
]

_TOKEN = re.compile(r"[a-z0-9_./-]{3,}")
_PATH_LIKE = re.compile(r"[a-z0-9_.-]*/[a-z0-9_./-]+|[a-z0-9_-]+\.[a-z]{1,5}\b")

_NEGATIVE_MARKERS = (
    "lacks", "lack", "missing", "no", "not", "without", "absent", "removed", "never", "doesn't",
    "isn't", "cannot", "none",
)
_POSITIVE_MARKERS = (
    "has", "have", "already", "includes", "include", "contains", "exists", "present", "added",
    "supports", "uses",
)
_POLARITY_WORDS = frozenset(_NEGATIVE_MARKERS) | frozenset(_POSITIVE_MARKERS) | {"does", "is"}

_STALE = re.compile(r"\b(outdated|deprecated|no longer|previously|stale|obsolete|used to|superseded)\b")
_POLICY = re.compile(r"\b(policy|policies|guardrails?|must always|must never|write policy|allowed paths)\b")
_TASK_ID = re.compile(r"\b[a-z]+-\d+(?:-[a-z0-9]+)+\b|\btask\s+#?\d+\b")
_PATCH_BOILERPLATE = re.compile(
    r"(patch interpreter|patch_json|search/replace block|apply_patch|unified diff format|return (?:a|the) patch|patch format)"
)
_PATCH_REQUEST = re.compile(r"\b(patch|diff|apply|interpreter)\b")
_PREFERENCE = re.compile(r"^(?:prefer|preference)\s*:\s*(.+)$", re.IGNORECASE)
_CONSTRAINT = re.compile(r"\b(avoid|do not use|don't use|never use)\b", re.IGNORECASE)


def _tokens(text: str) -> FrozenSet[str]:
    tokens = set()
    for raw in _TOKEN.findall(text.lower()):
        token = raw.strip("./-")
        if len(token) >= 3 and token not in STOPWORDS and token not in _POLARITY_WORDS:
            tokens.add(token)
    return frozenset(tokens)


def _polarity(text: str) -> int:
    words = set(re.findall(r"[a-z']+", text.lower()))
    if words.intersection(_NEGATIVE_MARKERS) or "does not" in text.lower():
        return -1
    if words.intersection(_POSITIVE_MARKERS):
        return 1
    return 0


def _path_hint(text: str) -> Optional[str]:
    for match in _PATH_LIKE.finditer(text.lower()):
        candidate = match.group(0).strip("./-")
        if "/" in candidate or "." in candidate:
            return candidate
    return None


@dataclass(frozen=True, slots=True)
class MemoryFact:
    """A recalled fact; everything but ``text``, ``score`` and ``order`` derives from ``text``."""

    text: str
    score: float = 0.0
    order: int = 0
    recency: float = 0.0

    @property
    def polarity(self) -> int:
        return _polarity(self.text)

    @property
    def tokens(self) -> FrozenSet[str]:
        return _tokens(self.text)

    @property
    def path_hint(self) -> Optional[str]:
        return _path_hint(self.text)


def facts_conflict(left: MemoryFact, right: MemoryFact) -> bool:
    """Opposite polarity plus enough overlap to be about the same thing."""
    if left.polarity * right.polarity != -1:
        return False
    shared = len(left.tokens & right.tokens)
    same_path = left.path_hint is not None and left.path_hint == right.path_hint
    return (same_path and shared >= 2) or shared >= 4


def prune_conflicts(facts: Sequence[MemoryFact]) -> Tuple[List[MemoryFact], int]:
    """Greedy highest-score-wins pruning; ties go to the more recent fact."""
    ranked = sorted(facts, key=lambda fact: (-fact.score, -fact.recency, -fact.order))
    kept: List[MemoryFact] = []
    dropped = 0
    for fact in ranked:
        if any(facts_conflict(fact, existing) for existing in kept):
            dropped += 1
            continue
        kept.append(fact)
    kept.sort(key=lambda fact: fact.order)
    return kept, dropped


def _relevance(fact: MemoryFact, request_tokens: FrozenSet[str], focus_tokens: FrozenSet[str], focus_paths: FrozenSet[str], patch_request: bool) -> Optional[int]:
    text = fact.text.lower()
    tokens = fact.tokens
    split_tokens = frozenset(path_tokens(tokens))
    request_overlap = len(tokens & request_tokens)
    focus_overlap = len(split_tokens & focus_tokens)
    hint = fact.path_hint
    hint_in_focus = hint is not None and any(path.lower().endswith(hint) or hint.endswith(path.lower()) for path in focus_paths)
    if _PATCH_BOILERPLATE.search(text) and not patch_request and not hint_in_focus:
        return None
    score = 2 * request_overlap + focus_overlap
    anchored = focus_overlap > 0 or hint_in_focus
    if _STALE.search(text):
        score -= 4
    if not anchored and _POLICY.search(text):
        score -= 4
    if not anchored and _TASK_ID.search(text):
        score -= 2
    if _PATCH_BOILERPLATE.search(text) and not patch_request:
        score -= 8
    return score


def filter_relevant(facts: Sequence[MemoryFact], *, request: str, focus_paths: Iterable[str]) -> Tuple[List[MemoryFact], int]:
    """Keep facts that score high enough against the request and focus paths."""
    focus = frozenset(focus_paths)
    request_tokens = _tokens(request)
    focus_tokens = frozenset(token for token in path_tokens(focus) if len(token) >= 2)
    if not request_tokens and not focus_tokens:
        return list(facts), 0
    threshold = 2 if focus else 3
    patch_request = bool(_PATCH_REQUEST.search(request.lower()))
    kept: List[MemoryFact] = []
    for fact in facts:
        score = _relevance(fact, request_tokens, focus_tokens, focus, patch_request)
        if score is not None and score >= threshold:
            kept.append(fact)
    return kept, len(facts) - len(kept)


@dataclass(frozen=True, slots=True)
class MemoryReconciliation:
    facts: Tuple[MemoryFact, ...]
    warnings: Tuple[str, ...]


def reconcile_memory(facts: Sequence[MemoryFact], *, request: str, focus_paths: Iterable[str]) -> MemoryReconciliation:
    """Prune conflicting facts, then drop irrelevant ones."""
    warnings: List[str] = []
    kept, pruned = prune_conflicts(facts)
    if pruned:
        warnings.append("memory_conflicts_pruned")
    kept, filtered = filter_relevant(kept, request=request, focus_paths=focus_paths)
    if filtered:
        warnings.append("memory_irrelevant_filtered")
    return MemoryReconciliation(facts=tuple(kept), warnings=tuple(warnings))


def classify_preferences(lines: Iterable[str]) -> List[Preference]:
    """Sort profile lines into preferences, constraints and plain notes."""
    result: List[Preference] = []
    for line in lines:
        text = line.strip()
        if not text:
            continue
        match = _PREFERENCE.match(text)
        if match:
            result.append(Preference(category="preference", content=match.group(1).strip()))
        elif _CONSTRAINT.search(text):
            result.append(Preference(category="constraint", content=text))
        else:
            result.append(Preference(category="note", content=text))
    return result
