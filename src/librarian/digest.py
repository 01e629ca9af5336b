"""Summarize what the assembled context is about and how much to trust it."""

from __future__ import annotations

from typing import List, Sequence

from .bundle import ContextSelection, QuerySignals, RequestDigest
from .intent import IntentSignals
from .paths import is_markup_path
from .queries import unique

__all__ = ["build_request_digest", "is_markup_only"]

_DOWNGRADE = {"high": "medium", "medium": "low", "low": "low"}


def is_markup_only(paths: Sequence[str]) -> bool:
    return bool(paths) and all(is_markup_path(path) for path in paths)


def build_request_digest(
    request: str,
    *,
    intent: IntentSignals,
    signals: QuerySignals,
    selection: ContextSelection,
    hit_count: int,
    low_hit_threshold: int,
    companions: Sequence[str] = (),
) -> RequestDigest:
    """Digest of the final selection; ``companions`` are script files beside a markup focus."""
    if selection.focus and hit_count >= low_hit_threshold:
        confidence = "high"
    elif selection.focus or hit_count > 0:
        confidence = "medium"
    else:
        confidence = "low"

    topic = (signals.keyword_phrases or signals.keywords or (request.strip(),))[0]
    focus_label = ", ".join(selection.focus) if selection.focus else "none"
    summary = f"{'/'.join(intent.intents)} request about {topic}; focus: {focus_label}"

    unselected = [path for path in companions if path not in selection.all]
    if is_markup_only(selection.focus) and unselected:
        confidence = _DOWNGRADE[confidence]
        summary = f"{summary} (markup-only focus; script companions not selected: {', '.join(unselected)})"

    refined_terms: List[str] = [*signals.phrases, *signals.file_tokens, *signals.keywords[:6]]
    refined_query = " ".join(unique(refined_terms)) or request.strip()

    digest_signals = [f"intent:{bucket}" for bucket in intent.intents]
    digest_signals.append(f"hits:{hit_count}")
    digest_signals.append(f"focus:{len(selection.focus)}")
    if selection.low_confidence:
        digest_signals.append("low_confidence")

    return RequestDigest(
        summary=summary,
        refined_query=refined_query,
        confidence=confidence,
        signals=tuple(digest_signals),
        candidate_files=tuple(unique([*selection.all, *companions])),
    )
