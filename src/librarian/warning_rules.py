"""Drop warnings that later pipeline stages proved moot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

from .paths import is_frontend_path

__all__ = ["ReconcileState", "SUPPRESSION_RULES", "reconcile_warnings"]


@dataclass(frozen=True, slots=True)
class ReconcileState:
    """Final assembly facts the suppression rules look at."""

    stats_ok: bool = False
    files_ok: bool = False
    num_docs: int = 0
    last_updated_epoch_ms: int = 0
    search_succeeded: bool = False
    hit_count: int = 0
    focus: Tuple[str, ...] = ()
    loaded_files: int = 0
    snippets: int = 0
    low_confidence: bool = False


Rule = Callable[[ReconcileState], bool]

# warning -> predicates; the warning is dropped when any predicate holds.
SUPPRESSION_RULES: Tuple[Tuple[str, Tuple[Rule, ...]], ...] = (
    (
        "docdex_index_empty",
        (
            lambda s: s.stats_ok and s.files_ok and s.num_docs > 0,
            lambda s: s.snippets > 0,
        ),
    ),
    ("docdex_index_stale", (lambda s: s.last_updated_epoch_ms > 0,)),
    ("docdex_no_hits", (lambda s: bool(s.focus) or s.loaded_files > 0 or s.snippets > 0,)),
    ("docdex_search_failed", (lambda s: s.search_succeeded,)),
    ("docdex_low_confidence", (lambda s: not s.low_confidence and s.hit_count > 0,)),
    ("docdex_ui_no_source_hits", (lambda s: any(is_frontend_path(path) for path in s.focus),)),
)


def reconcile_warnings(warnings: Sequence[str], state: ReconcileState) -> List[str]:
    """Return ``warnings`` without suppressed or duplicate entries, order preserved."""
    rules = dict(SUPPRESSION_RULES)
    result: List[str] = []
    for warning in warnings:
        if warning in result:
            continue
        predicates = rules.get(warning, ())
        if any(predicate(state) for predicate in predicates):
            continue
        result.append(warning)
    return result
