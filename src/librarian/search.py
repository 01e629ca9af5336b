"""Issue searches against the index service and escalate when results are weak.

Three escalations run in order, each re-checking the hit state left by the
previous one:

1. query expansion through the language model when hits are scarce or search
   failed;
2. an adaptive retry built from request and path tokens when search worked but
   found nothing;
3. a UI source-bias retry when a UI request only surfaced documentation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .bundle import QuerySignals, SearchHit, SearchResultEntry
from .config import ContextAssemblerOptions
from .docdex.gateway import DocdexGateway
from .intent import IntentSignals
from .models.llm_client import LLMClientError
from .paths import is_doc_path, is_excluded_path
from .queries import QueryExpander, adaptive_queries, execution_queries, ui_source_queries, unique

__all__ = ["SearchOrchestrator", "SearchOutcome", "dedupe_hits", "doc_share", "filter_excluded"]

LOGGER = logging.getLogger(__name__)


def dedupe_hits(hits: Iterable[SearchHit]) -> List[SearchHit]:
    """Keep the first hit for each ``(doc_id, path)`` pair."""
    seen: set[Tuple[Optional[str], Optional[str]]] = set()
    result: List[SearchHit] = []
    for hit in hits:
        if hit.key in seen:
            continue
        seen.add(hit.key)
        result.append(hit)
    return result


def filter_excluded(hits: Iterable[SearchHit]) -> List[SearchHit]:
    return [hit for hit in hits if not (hit.path and is_excluded_path(hit.path))]


def doc_share(hits: Sequence[SearchHit]) -> float:
    """Fraction of hits with a path that point at documentation."""
    with_paths = [hit.path for hit in hits if hit.path]
    if not with_paths:
        return 0.0
    return sum(1 for path in with_paths if is_doc_path(path)) / len(with_paths)


@dataclass(slots=True)
class SearchOutcome:
    queries: List[str]
    results: List[SearchResultEntry] = field(default_factory=list)
    hits: List[SearchHit] = field(default_factory=list)
    attempted: bool = False
    succeeded: bool = False
    warnings: List[str] = field(default_factory=list)
    escalations: List[str] = field(default_factory=list)

    @property
    def hit_paths(self) -> List[str]:
        return unique(hit.path for hit in self.hits if hit.path)


class SearchOrchestrator:
    """Runs the search stage of an assembly."""

    def __init__(
        self,
        gateway: DocdexGateway,
        options: ContextAssemblerOptions,
        *,
        expander: Optional[QueryExpander] = None,
    ) -> None:
        self._gateway = gateway
        self._options = options
        self._expander = expander

    def run(
        self,
        request: str,
        *,
        intent: IntentSignals,
        signals: QuerySignals,
        queries: Sequence[str],
        preferred_files: Sequence[str] = (),
    ) -> SearchOutcome:
        options = self._options
        outcome = SearchOutcome(queries=list(queries))
        if options.skip_search_when_preferred and preferred_files:
            outcome.warnings.append("docdex_search_skipped")
            return outcome

        self._execute(outcome, execution_queries(outcome.queries, signals, options.max_queries))

        threshold = options.low_hit_threshold
        if len(outcome.hits) < threshold or not outcome.succeeded or not outcome.queries:
            self._expand(outcome, request, signals)

        if outcome.succeeded and not outcome.hits:
            retry = adaptive_queries(signals, intent, preferred_files, options.max_queries)
            if retry and retry != outcome.queries:
                outcome.escalations.append("adaptive")
                outcome.queries = unique([*outcome.queries, *retry])
                self._execute(outcome, retry)

        if intent.has("ui") and outcome.hits and doc_share(outcome.hits) >= options.doc_dominance_threshold:
            self._bias_to_ui_sources(outcome, signals)

        if not outcome.succeeded:
            outcome.warnings.append("docdex_search_failed")
        elif not outcome.hits:
            outcome.warnings.append("docdex_no_hits")
        elif len(outcome.hits) < threshold:
            outcome.warnings.append("docdex_low_confidence")
        return outcome

    def _expand(self, outcome: SearchOutcome, request: str, signals: QuerySignals) -> None:
        if self._expander is None:
            return
        base = outcome.queries[:1] or [request]
        try:
            expanded = self._expander.expand(request, base, self._options.max_queries)
        except LLMClientError as error:
            LOGGER.debug("Query expansion failed: %s", error, exc_info=True)
            outcome.warnings.append("query_expansion_failed")
            return
        outcome.escalations.append("expansion")
        outcome.queries = expanded
        self._execute(outcome, execution_queries(expanded, signals, self._options.max_queries))

    def _bias_to_ui_sources(self, outcome: SearchOutcome, signals: QuerySignals) -> None:
        biased = ui_source_queries(signals, self._options.max_queries)
        trial = SearchOutcome(queries=biased)
        self._execute(trial, biased)
        outcome.escalations.append("ui_source_bias")
        source_hits = [hit for hit in trial.hits if hit.path and not is_doc_path(hit.path)]
        if not source_hits:
            outcome.warnings.append("docdex_ui_no_source_hits")
            return
        outcome.results.extend(trial.results)
        outcome.hits = dedupe_hits([*source_hits, *outcome.hits, *trial.hits])
        outcome.queries = unique([*outcome.queries, *biased])

    def _execute(self, outcome: SearchOutcome, queries: Sequence[str]) -> None:
        """Search every query in order and merge hits after the prior ones."""
        limit = self._options.max_hits_per_query
        collected: List[SearchHit] = []
        for query in queries:
            outcome.attempted = True
            result = self._gateway.search(query, limit=limit, dag_session_id=self._options.dag_session_id)
            if not result.ok:
                continue
            outcome.succeeded = True
            hits = filter_excluded(result.value or [])
            outcome.results.append(SearchResultEntry(query=query, hits=tuple(hits)))
            collected.extend(hits)
        outcome.hits = dedupe_hits([*outcome.hits, *collected])
