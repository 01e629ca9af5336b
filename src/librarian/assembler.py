"""Top-level orchestration of a context assembly.

``assemble`` walks a fixed sequence of stages: health check, search with
escalations, selection with per-intent fallbacks, analysis, loading under a
budget, memory and profile, then finalization. When the index service is down
the call drops to a filesystem-only fallback unless deep mode is on, in which
case it raises :class:`DeepInvestigationError`.
"""

from __future__ import annotations

import fnmatch
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .analysis import select_analysis_paths
from .budget import apply_context_budget
from .bundle import (
    AstEntry,
    ContextBundle,
    ContextFileEntry,
    ContextSelection,
    EpisodicEntry,
    GoldenEntry,
    ImpactDiagnosticsEntry,
    ImpactEntry,
    IndexInfo,
    Preference,
    ProjectInfo,
    QuerySignals,
    RedactionInfo,
    SearchHit,
    SearchResultEntry,
    SnippetEntry,
    SymbolEntry,
)
from .config import ContextAssemblerOptions, apply_deep_scan_preset
from .digest import build_request_digest, is_markup_only
from .discovery import FALLBACK_RULES, Workspace, collect_project_info, script_companions
from .docdex.client import Capability
from .docdex.gateway import Deadline, DocdexGateway, detect_capabilities
from .errors import DeepInvestigationError
from .events import EventChannel
from .history import GoldenSetStore, RunHistoryIndexer
from .intent import IntentSignals, detect_intent
from .loader import FileLoader
from .memory import MemoryFact, classify_preferences, reconcile_memory
from .models.llm_client import LLMClient
from .paths import (
    is_markup_path,
    is_test_path,
    path_tokens,
    supports_impact_graph,
    supports_structural_analysis,
)
from .queries import QueryExpander, build_queries, extract_query_signals, unique
from .redaction import ContextRedactor
from .search import SearchOrchestrator
from .selection import FileSelector, SelectionInputs, is_doc_task
from .serializer import serialize_bundle
from .warning_rules import ReconcileState, reconcile_warnings

__all__ = ["ContextAssembler", "REPO_MAP_EXCLUDES", "REMEDIATION"]

LOGGER = logging.getLogger(__name__)

REPO_MAP_EXCLUDES: Tuple[str, ...] = (".docdex", ".docdex_state", ".librarian", ".git", ".DS_Store")
REPO_MAP_LINES = 200
SNIPPET_LIMIT = 6
FILE_HINT_LIMIT = 20

REMEDIATION: Dict[str, str] = {
    "docdex_health": "Start the docdex daemon and confirm /healthz answers.",
    "docdex_stats": "Check that docdex can read its index (docdex_stats tool).",
    "docdex_files": "Check that docdex can list indexed files (docdex_files tool).",
    "docdex_index_empty": "Index the repository (docdex index rebuild) before a deep investigation.",
    "docdex_index_stale": "Re-run docdex indexing; the index has never been updated.",
}

# Fallback sweeps in the order they are tried.
_FALLBACK_ORDER = ("ui", "testing", "infra", "security", "performance", "observability", "backend", "code")


@dataclass(slots=True)
class _Run:
    """Mutable scratch state for one ``assemble`` call."""

    request: str
    intent: IntentSignals
    signals: QuerySignals
    doc_task: bool
    preferred: List[str]
    recent: List[str]
    forced: List[str]
    warnings: List[str] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)
    analysis_paths: List[str] = field(default_factory=list)
    search_results: List[SearchResultEntry] = field(default_factory=list)
    hits: List[SearchHit] = field(default_factory=list)
    search_succeeded: bool = False
    file_hints: List[str] = field(default_factory=list)
    stats_ok: bool = False
    files_ok: bool = False
    index: IndexInfo = field(default_factory=IndexInfo)
    project_info: Optional[ProjectInfo] = None
    selection: ContextSelection = field(default_factory=ContextSelection)
    companions: List[str] = field(default_factory=list)
    snippets: List[SnippetEntry] = field(default_factory=list)
    symbols: List[SymbolEntry] = field(default_factory=list)
    ast: List[AstEntry] = field(default_factory=list)
    impact: List[ImpactEntry] = field(default_factory=list)
    impact_diagnostics: List[ImpactDiagnosticsEntry] = field(default_factory=list)
    repo_map: Optional[str] = None
    repo_map_raw: Optional[str] = None
    dag_summary: Optional[str] = None
    files: List[ContextFileEntry] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)
    redaction_count: int = 0
    memory: List[str] = field(default_factory=list)
    episodic: List[EpisodicEntry] = field(default_factory=list)
    golden: List[GoldenEntry] = field(default_factory=list)
    preferences: List[Preference] = field(default_factory=list)
    profile: List[str] = field(default_factory=list)

    def warn(self, warning: Optional[str]) -> None:
        if warning:
            self.warnings.append(warning)


class ContextAssembler:
    """Builds context bundles for one workspace on top of a docdex client."""

    def __init__(
        self,
        client: Any,
        workspace_root: Path,
        options: Optional[ContextAssemblerOptions] = None,
        *,
        llm_client: Optional[LLMClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._capabilities = detect_capabilities(client)
        self._workspace_root = Path(workspace_root)
        self._base_options = options or ContextAssemblerOptions()
        self._options = self._resolve(self._base_options)
        self._expander = QueryExpander(llm_client) if llm_client is not None else None
        self._sleep = sleep

    @staticmethod
    def _resolve(options: ContextAssemblerOptions) -> ContextAssemblerOptions:
        return apply_deep_scan_preset(options) if options.deep_mode else options

    @property
    def options(self) -> ContextAssemblerOptions:
        return self._options

    def reset(self, options: Optional[ContextAssemblerOptions] = None) -> None:
        """Replace the resolved options, e.g. before reusing the instance for an unrelated request."""
        if options is not None:
            self._base_options = options
        self._options = self._resolve(self._base_options)

    def assemble(
        self,
        request: str,
        *,
        preferred_files: Sequence[str] = (),
        recent_files: Sequence[str] = (),
        force_focus_files: Sequence[str] = (),
        events: Optional[EventChannel] = None,
        deadline: Optional[Deadline] = None,
    ) -> ContextBundle:
        """Assemble the context bundle for ``request``.

        Raises ``PathOutsideWorkspaceError`` for caller paths outside the
        workspace and ``DeepInvestigationError`` when deep mode finds the index
        service unfit. Every other failure ends up in ``warnings``.
        """
        options = self._options
        channel = events or EventChannel()
        workspace = Workspace(self._workspace_root)
        gateway = DocdexGateway(
            self._client,
            capabilities=self._capabilities,
            events=channel,
            deadline=deadline,
            sleep=self._sleep,
        )

        run = _Run(
            request=request,
            intent=detect_intent(request),
            signals=extract_query_signals(request),
            doc_task=is_doc_task(request),
            preferred=self._checked_paths(workspace, [*options.preferred_files, *preferred_files]),
            recent=self._checked_paths(workspace, [*options.recent_files, *recent_files]),
            forced=self._checked_paths(workspace, [*options.force_focus_files, *force_focus_files]),
        )
        channel.status("thinking", "Analyzing request")
        LOGGER.debug("Assembling context for %r with intents %s", request, run.intent.intents)

        health = gateway.health()
        if not health.ok:
            if options.deep_mode:
                raise self._deep_error(["docdex_health"])
            LOGGER.warning("docdex unavailable; falling back to filesystem discovery")
            return self._degraded(run, workspace, channel)

        channel.status("executing", "Searching index")
        self._check_index(run, gateway)
        run.project_info = self._project_info(workspace)
        self._search(run, gateway)
        selector = FileSelector(
            run.intent,
            doc_task=run.doc_task,
            max_files=options.max_files,
            focus_count=options.focus_count,
        )
        inputs = self._select(run, selector, workspace)
        self._analyze(run, gateway, selector, inputs)
        self._collect_snippets(run, gateway)
        self._collect_repo_map(run, gateway)
        self._load(run, workspace, gateway)
        self._recall(run, gateway)
        bundle = self._finalize(run)
        channel.status("done", f"Selected {len(bundle.selection.focus)} focus file(s)")
        return bundle

    # -- stages ---------------------------------------------------------------

    def _checked_paths(self, workspace: Workspace, paths: Sequence[str]) -> List[str]:
        return unique(workspace.relative(path) for path in paths if path and path.strip())

    def _deep_error(self, missing: List[str]) -> DeepInvestigationError:
        remediation = [REMEDIATION[item] for item in missing if item in REMEDIATION]
        return DeepInvestigationError(missing, remediation)

    def _check_index(self, run: _Run, gateway: DocdexGateway) -> None:
        options = self._options
        if gateway.supports(Capability.INITIALIZE) and not getattr(self._client, "repo_id", None):
            run.warn(gateway.initialize(self._workspace_root.resolve().as_uri()).warning)
        stats = gateway.stats()
        files = gateway.files(limit=FILE_HINT_LIMIT, offset=0)
        run.stats_ok, run.files_ok = stats.ok, files.ok
        record = stats.value
        run.file_hints = list(files.value or [])
        run.index = IndexInfo(
            num_docs=record.num_docs if record else 0,
            last_updated_epoch_ms=record.last_updated_epoch_ms if record else 0,
            files_sampled=len(run.file_hints),
        )
        if options.deep_mode:
            missing = []
            if not stats.ok:
                missing.append("docdex_stats")
            if not files.ok:
                missing.append("docdex_files")
            if record is not None and record.num_docs == 0:
                missing.append("docdex_index_empty")
            if record is not None and record.last_updated_epoch_ms == 0:
                missing.append("docdex_index_stale")
            if missing:
                raise self._deep_error(missing)
        run.warn(stats.warning)
        run.warn(files.warning)
        if record is not None and not run.file_hints:
            if files.ok and record.num_docs == 0:
                run.warn("docdex_index_empty")
                gateway.rebuild_index_in_background()
            if record.last_updated_epoch_ms == 0:
                run.warn("docdex_index_stale")

    def _project_info(self, workspace: Workspace) -> Optional[ProjectInfo]:
        try:
            return collect_project_info(workspace)
        except OSError:
            LOGGER.debug("Project info collection failed", exc_info=True)
            return None

    def _search(self, run: _Run, gateway: DocdexGateway) -> None:
        options = self._options
        run.queries = build_queries(
            run.request,
            signals=run.signals,
            max_queries=options.max_queries,
            additional=options.additional_queries,
            hint_files=[*run.forced, *run.preferred],
        )
        orchestrator = SearchOrchestrator(gateway, options, expander=self._expander)
        outcome = orchestrator.run(
            run.request,
            intent=run.intent,
            signals=run.signals,
            queries=run.queries,
            preferred_files=run.preferred,
        )
        run.queries = outcome.queries
        run.search_results = outcome.results
        run.hits = outcome.hits
        run.search_succeeded = outcome.succeeded
        run.warnings.extend(outcome.warnings)

    def _low_confidence(self, run: _Run) -> bool:
        if run.preferred or run.forced:
            return False
        return not run.search_succeeded or len(run.hits) < self._options.low_hit_threshold

    def _select(self, run: _Run, selector: FileSelector, workspace: Workspace) -> SelectionInputs:
        low_confidence = self._low_confidence(run)
        inputs = SelectionInputs(hits=run.hits, preferred=run.preferred, recent=run.recent, forced_focus=run.forced)
        run.selection = selector.select(inputs, low_confidence=low_confidence)

        for name in _FALLBACK_ORDER:
            rule = FALLBACK_RULES[name]
            if not self._fallback_active(name, run) or any(rule.accepts(path) for path in run.selection.all):
                continue
            found = rule.sweep(
                workspace,
                run.signals.keywords,
                self._options.fallback_limit,
                exclude=run.selection.all,
            )
            if not found:
                continue
            inputs = replace(inputs, preferred=unique([*inputs.preferred, *found]))
            run.selection = selector.select(
                inputs,
                prior_focus_size=len(run.selection.focus),
                low_confidence=low_confidence,
            )
            run.warn(rule.warning)

        if run.intent.has("ui") and is_markup_only(run.selection.focus):
            known = unique([*workspace.list_files(), *run.file_hints, *(hit.path for hit in run.hits if hit.path)])
            run.companions = script_companions(run.selection.focus, known)
            if run.companions:
                run.warn("librarian_companion_candidates")
        return inputs

    @staticmethod
    def _fallback_active(name: str, run: _Run) -> bool:
        intent = run.intent
        if name == "backend":
            return (intent.has("behavior") or intent.has("data")) and not intent.has("ui")
        if name == "code":
            return not run.doc_task and not intent.has("ui")
        return intent.has(name)

    def _analyze(self, run: _Run, gateway: DocdexGateway, selector: FileSelector, inputs: SelectionInputs) -> None:
        options = self._options
        known = unique([*run.selection.all, *(hit.path for hit in run.hits if hit.path), *run.file_hints])
        paths = select_analysis_paths(
            known,
            focus=run.selection.focus,
            preferred=inputs.preferred,
            intent=run.intent,
            doc_task=run.doc_task,
            max_files=options.max_files,
        )
        run.analysis_paths = paths
        for path in paths:
            if supports_structural_analysis(path):
                symbols = gateway.symbols(path)
                if symbols.ok and symbols.value:
                    run.symbols.append(SymbolEntry(path=path, summary=symbols.value))
                elif gateway.supports(Capability.SYMBOLS):
                    run.warn(symbols.warning)
                ast = gateway.ast(path)
                if ast.ok and ast.value:
                    run.ast.append(AstEntry(path=path, nodes=tuple(ast.value)))
                elif gateway.supports(Capability.AST):
                    run.warn(ast.warning)
            elif is_markup_path(path):
                run.warn(f"docdex_symbols_not_applicable:{path}")
                run.warn(f"docdex_ast_not_applicable:{path}")
            if options.include_impact and supports_impact_graph(path) and gateway.supports(Capability.IMPACT_GRAPH):
                self._impact(run, gateway, path)

        neighbors = unique(edge for entry in run.impact for edge in (*entry.inbound, *entry.outbound))
        if neighbors:
            run.selection = selector.select(
                replace(inputs, impact_neighbors=neighbors),
                prior_focus_size=len(run.selection.focus),
                low_confidence=run.selection.low_confidence,
            )

    def _impact(self, run: _Run, gateway: DocdexGateway, path: str) -> None:
        options = self._options
        graph = gateway.impact(path, max_depth=options.impact_max_depth, max_edges=options.impact_max_edges)
        if not graph.ok or graph.value is None:
            run.warn(graph.warning)
            return
        entry = ImpactEntry(file=path, inbound=tuple(graph.value.inbound), outbound=tuple(graph.value.outbound))
        run.impact.append(entry)
        if entry.inbound or entry.outbound or not gateway.supports(Capability.IMPACT_DIAGNOSTICS):
            return
        diagnostics = gateway.impact_diagnostics(path, limit=20)
        if not diagnostics.ok:
            run.warn(diagnostics.warning)
        elif diagnostics.value:
            run.impact_diagnostics.append(ImpactDiagnosticsEntry(file=path, diagnostics=diagnostics.value))
            run.warn(f"impact_graph_sparse:{path}")

    def _collect_snippets(self, run: _Run, gateway: DocdexGateway) -> None:
        if not self._options.include_snippets or not gateway.supports(Capability.OPEN_SNIPPET):
            return
        wanted = set(run.selection.focus) | {
            path for path in run.analysis_paths if run.intent.has("testing") or not is_test_path(path)
        }
        for hit in run.hits:
            if len(run.snippets) >= SNIPPET_LIMIT:
                break
            if not hit.doc_id or (hit.path and hit.path not in wanted):
                continue
            outcome = gateway.snippet(hit.doc_id, window=self._options.snippet_window)
            if outcome.ok and outcome.value:
                run.snippets.append(SnippetEntry(doc_id=hit.doc_id, path=hit.path, content=outcome.value))
            else:
                run.warn(outcome.warning)

    def _collect_repo_map(self, run: _Run, gateway: DocdexGateway) -> None:
        options = self._options
        if options.include_repo_map and gateway.supports(Capability.TREE):
            tree = gateway.tree(max_depth=64, include_hidden=True, extra_excludes=REPO_MAP_EXCLUDES)
            if tree.ok and tree.value:
                run.repo_map_raw = tree.value
                run.repo_map = "\n".join(tree.value.splitlines()[:REPO_MAP_LINES])
            else:
                run.warn(tree.warning)
        if options.dag_session_id and gateway.supports(Capability.DAG_EXPORT):
            dag = gateway.dag_export(options.dag_session_id)
            if dag.ok:
                run.dag_summary = dag.value
            else:
                run.warn(dag.warning)

    def _load(self, run: _Run, workspace: Workspace, gateway: Optional[DocdexGateway]) -> None:
        options = self._options
        redactor = None
        if options.redact_secrets or options.ignore_files_from:
            redactor = ContextRedactor(
                workspace.root,
                patterns=options.redact_patterns,
                ignore_files_from=options.ignore_files_from,
                mask_secrets=options.redact_secrets,
            )
        loader = FileLoader(workspace, options, gateway=gateway, redactor=redactor)
        loaded = loader.load(
            run.selection,
            keywords=run.signals.keywords,
            symbols={entry.path: entry.summary for entry in run.symbols},
            ast_nodes={entry.path: entry.nodes for entry in run.ast},
        )
        run.warnings.extend(loaded.warnings)
        run.ignored = loaded.ignored
        run.redaction_count = loaded.redaction_count

        budget = apply_context_budget(
            loaded.files,
            max_total_bytes=options.max_total_bytes,
            token_budget=options.token_budget,
            iteration_factor=options.budget_iteration_factor,
        )
        run.files = budget.files
        if budget.dropped_paths:
            run.selection = run.selection.without(budget.dropped_paths)
            run.warn("context_budget_pruned")
        if any(entry.slice_strategy == "budget_trim" for entry in budget.files):
            run.warn("context_budget_trimmed")

        for path in run.selection.focus:
            if any(_matches(path, pattern) for pattern in options.read_only_paths):
                run.warn(f"write_policy_read_only:{path}")

    def _recall(self, run: _Run, gateway: DocdexGateway) -> None:
        options = self._options
        if gateway.supports(Capability.MEMORY_RECALL):
            recalled = gateway.memory_recall(run.request, top_k=options.memory_top_k)
            if recalled.ok:
                facts = [
                    MemoryFact(text=record.content, score=record.score, order=index, recency=record.created_at or 0.0)
                    for index, record in enumerate(recalled.value or [])
                ]
                reconciled = reconcile_memory(facts, request=run.request, focus_paths=run.selection.focus)
                run.memory = [fact.text for fact in reconciled.facts]
                run.warnings.extend(reconciled.warnings)
            else:
                run.warn(recalled.warning)
        if gateway.supports(Capability.GET_PROFILE):
            profile = gateway.profile(options.agent_id)
            if profile.ok:
                run.profile = [record.content for record in profile.value or []]
                run.preferences = classify_preferences(run.profile)
            else:
                run.warn(profile.warning)
        if options.episodic_limit and gateway.supports(Capability.SEARCH):
            run.episodic = RunHistoryIndexer(gateway).find_similar(run.request, limit=options.episodic_limit)
        self._golden(run)

    def _golden(self, run: _Run) -> None:
        store = GoldenSetStore(self._workspace_root / self._options.golden_examples_path)
        try:
            run.golden = store.find_similar(run.request, limit=self._options.golden_limit)
        except (OSError, ValueError):
            LOGGER.debug("Golden examples unavailable", exc_info=True)
            run.warn("golden_examples_failed")

    def _degraded(self, run: _Run, workspace: Workspace, channel: EventChannel) -> ContextBundle:
        """Minimal bundle built from the filesystem alone."""
        run.warn("docdex_unavailable")
        channel.status("executing", "docdex unavailable; scanning workspace")
        try:
            listing = workspace.list_files()
        except OSError:
            LOGGER.debug("Workspace listing failed", exc_info=True)
            listing = []
        run.project_info = self._project_info(workspace)
        wanted = set(run.signals.keywords)
        run.hits = [
            SearchHit(path=path, score=float(10 * overlap))
            for path, overlap in ((path, len(wanted.intersection(path_tokens([path])))) for path in listing)
            if overlap > 0
        ]
        selector = FileSelector(
            run.intent,
            doc_task=run.doc_task,
            max_files=self._options.max_files,
            focus_count=self._options.focus_count,
        )
        inputs = SelectionInputs(hits=run.hits, preferred=run.preferred, recent=run.recent, forced_focus=run.forced)
        run.selection = selector.select(inputs, low_confidence=True)
        self._load(run, workspace, None)
        self._golden(run)
        bundle = self._finalize(run)
        channel.status("done", "Degraded context assembled from the filesystem")
        return bundle

    def _finalize(self, run: _Run) -> ContextBundle:
        options = self._options
        selection = run.selection
        loaded = {entry.path for entry in run.files}
        missing: List[str] = []
        if not selection.focus:
            missing.append("no_focus_files_selected")
        if not run.files:
            missing.append("no_context_files_loaded")
        if selection.low_confidence:
            missing.append("low_confidence_selection")
        missing.extend(
            f"focus_content_missing:{path}"
            for path in selection.focus
            if path not in loaded and path not in run.ignored
        )
        if options.include_repo_map and run.repo_map is None:
            missing.append("repo_map_unavailable")

        digest = build_request_digest(
            run.request,
            intent=run.intent,
            signals=run.signals,
            selection=selection,
            hit_count=len(run.hits),
            low_hit_threshold=options.low_hit_threshold,
            companions=run.companions,
        )
        warnings = reconcile_warnings(
            run.warnings,
            ReconcileState(
                stats_ok=run.stats_ok,
                files_ok=run.files_ok,
                num_docs=run.index.num_docs,
                last_updated_epoch_ms=run.index.last_updated_epoch_ms,
                search_succeeded=run.search_succeeded,
                hit_count=len(run.hits),
                focus=selection.focus,
                loaded_files=len(run.files),
                snippets=len(run.snippets),
                low_confidence=selection.low_confidence,
            ),
        )
        bundle = ContextBundle(
            request=run.request,
            intent=run.intent,
            query_signals=run.signals,
            queries=tuple(run.queries),
            search_results=tuple(run.search_results),
            snippets=tuple(run.snippets),
            symbols=tuple(run.symbols),
            ast=tuple(run.ast),
            impact=tuple(run.impact),
            impact_diagnostics=tuple(run.impact_diagnostics),
            repo_map=run.repo_map,
            repo_map_raw=run.repo_map_raw,
            dag_summary=run.dag_summary,
            selection=selection,
            files=tuple(run.files),
            redaction=RedactionInfo(count=run.redaction_count, ignored=tuple(run.ignored)),
            memory=tuple(run.memory),
            episodic_memory=tuple(run.episodic),
            golden_examples=tuple(run.golden),
            preferences=tuple(run.preferences),
            profile=tuple(run.profile),
            index=run.index,
            project_info=run.project_info,
            warnings=tuple(warnings),
            missing=tuple(missing),
            request_digest=digest,
            read_only_paths=options.read_only_paths,
            allow_write_paths=options.allow_write_paths,
        )
        return replace(bundle, serialized=serialize_bundle(bundle, options.serialization_mode))


def _matches(path: str, pattern: str) -> bool:
    pattern = pattern.rstrip("/")
    return path == pattern or path.startswith(f"{pattern}/") or fnmatch.fnmatch(path, pattern)
