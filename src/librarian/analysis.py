"""Pick the few paths worth symbol, AST and impact-graph calls."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .intent import IntentSignals
from .paths import is_doc_path, is_support_doc_path
from .queries import unique
from .selection import FileSelector

__all__ = ["ANALYSIS_LIMIT", "select_analysis_paths"]

ANALYSIS_LIMIT = 6


def select_analysis_paths(
    known_paths: Iterable[str],
    *,
    focus: Sequence[str],
    preferred: Sequence[str],
    intent: IntentSignals,
    doc_task: bool,
    max_files: int,
) -> List[str]:
    """Return up to ``min(max_files, 6)`` paths ranked for deeper analysis.

    Code tasks drop documentation entirely unless nothing else is known; doc
    tasks keep it.
    """
    paths = unique([*focus, *preferred, *known_paths])
    if not doc_task:
        code_paths = [path for path in paths if not (is_doc_path(path) or is_support_doc_path(path))]
        if code_paths:
            paths = code_paths
    anchors = set(focus) | set(preferred)
    scorer = FileSelector(intent, doc_task=doc_task, max_files=max_files)
    ranked = sorted(
        enumerate(paths),
        key=lambda item: (-scorer.score(item[1], preferred=item[1] in anchors), item[0]),
    )
    return [path for _, path in ranked][: min(max_files, ANALYSIS_LIMIT)]
