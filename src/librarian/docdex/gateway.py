"""Capability-aware wrapper that turns every docdex call into an ``Outcome``."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Generic, Iterable, List, Optional, TypeVar

from pydantic import ValidationError

from ..bundle import SearchHit
from ..events import EventChannel, ToolCallEvent, ToolResultEvent
from ..paths import normalize_path
from ..records import (
    ImpactGraphRecord,
    IndexStatsRecord,
    MemoryRecord,
    ProfilePreferenceRecord,
    SearchHitRecord,
)
from .client import Capability, DocdexResponseError

__all__ = ["Deadline", "DocdexGateway", "Outcome", "detect_capabilities", "is_backoff_error"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_BACKOFF_SIGNATURES = ("backoff", "index writer unavailable")
_PREVIEW_CHARS = 240


def is_backoff_error(error: BaseException) -> bool:
    """Return True for transient index-service errors worth retrying."""
    message = str(error).lower()
    return any(signature in message for signature in _BACKOFF_SIGNATURES)


def detect_capabilities(client: Any) -> FrozenSet[Capability]:
    """Return the operations ``client`` supports.

    Clients may declare ``capabilities`` explicitly; otherwise the set is taken
    from the callables the client exposes.
    """
    declared = getattr(client, "capabilities", None)
    if declared is not None:
        return frozenset(Capability(item) for item in declared)
    return frozenset(cap for cap in Capability if callable(getattr(client, cap.value, None)))


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """Value of an external call, or the warning that replaced it."""

    value: Optional[T] = None
    warning: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.warning is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, warning: str, error: Optional[BaseException] = None) -> "Outcome[T]":
        return cls(warning=warning, error=error)


class Deadline:
    """Wall-clock budget shared by every external call of one assembly."""

    def __init__(self, seconds: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())


class DocdexGateway:
    """Calls the index service and reports failures as warnings, never exceptions."""

    def __init__(
        self,
        client: Any,
        *,
        capabilities: Optional[FrozenSet[Capability]] = None,
        events: Optional[EventChannel] = None,
        deadline: Optional[Deadline] = None,
        retries: int = 2,
        backoff_seconds: float = 0.15,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self.capabilities = capabilities if capabilities is not None else detect_capabilities(client)
        self._events = events
        self._deadline = deadline or Deadline()
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def call(
        self,
        capability: Capability,
        invoke: Callable[[], T],
        *,
        warning: str,
        args: Optional[Dict[str, Any]] = None,
        retry_on_backoff: bool = False,
    ) -> Outcome[T]:
        """Run ``invoke`` and wrap its result; failures become ``warning``."""
        name = f"docdex.{capability.value}"
        if not self.supports(capability):
            return Outcome.failure(warning)
        if self._deadline.expired():
            return Outcome.failure(f"deadline_exceeded:{capability.value}")
        self._emit(ToolCallEvent(name=name, args=dict(args or {})))
        attempt = 0
        while True:
            try:
                value = invoke()
            except Exception as error:  # noqa: BLE001 - every docdex call is fallible
                if retry_on_backoff and attempt < self._retries and is_backoff_error(error):
                    attempt += 1
                    LOGGER.debug("%s backing off (attempt %d): %s", name, attempt, error)
                    self._sleep(self._backoff_seconds * attempt)
                    continue
                LOGGER.debug("%s failed: %s", name, error, exc_info=True)
                self._emit(ToolResultEvent(name=name, ok=False, output=str(error)[:_PREVIEW_CHARS]))
                return Outcome.failure(warning, error)
            self._emit(ToolResultEvent(name=name, ok=True, output=_preview(value)))
            return Outcome.success(value)

    # -- typed operations -----------------------------------------------------

    def health(self) -> Outcome[bool]:
        def invoke() -> bool:
            if self._client.health_check() is False:
                raise DocdexResponseError("docdex health check reported unhealthy")
            return True

        return self.call(Capability.HEALTH_CHECK, invoke, warning="docdex_unavailable")

    def initialize(self, root_uri: str) -> Outcome[Any]:
        return self.call(
            Capability.INITIALIZE,
            lambda: self._client.initialize(root_uri),
            warning="docdex_initialize_failed",
            args={"rootUri": root_uri},
        )

    def stats(self) -> Outcome[IndexStatsRecord]:
        def invoke() -> IndexStatsRecord:
            payload = self._client.stats()
            if isinstance(payload, dict) and isinstance(payload.get("stats"), dict):
                payload = payload["stats"]
            return IndexStatsRecord.model_validate(payload or {})

        return self.call(Capability.STATS, invoke, warning="docdex_stats_failed", retry_on_backoff=True)

    def files(self, *, limit: int = 20, offset: int = 0) -> Outcome[List[str]]:
        def invoke() -> List[str]:
            return _path_list(self._client.files(limit=limit, offset=offset))

        return self.call(
            Capability.FILES,
            invoke,
            warning="docdex_files_failed",
            args={"limit": limit, "offset": offset},
            retry_on_backoff=True,
        )

    def search(self, query: str, *, limit: int, dag_session_id: Optional[str] = None) -> Outcome[List[SearchHit]]:
        def invoke() -> List[SearchHit]:
            payload = self._client.search(query, limit=limit, dag_session_id=dag_session_id)
            return _hits(payload)[:limit]

        return self.call(
            Capability.SEARCH,
            invoke,
            warning="docdex_search_failed",
            args={"query": query, "limit": limit},
        )

    def snippet(self, doc_id: str, *, window: int) -> Outcome[str]:
        def invoke() -> str:
            return _text(self._client.open_snippet(doc_id, window=window), ("snippet", "content", "text"))

        return self.call(
            Capability.OPEN_SNIPPET,
            invoke,
            warning=f"docdex_snippet_failed:{doc_id}",
            args={"doc_id": doc_id, "window": window},
        )

    def open_file(self, path: str, *, head: Optional[int] = None) -> Outcome[str]:
        def invoke() -> str:
            return _text(self._client.open_file(path, head=head, clamp=True), ("content", "text", "snippet"))

        return self.call(
            Capability.OPEN_FILE,
            invoke,
            warning=f"docdex_open_failed:{path}",
            args={"path": path, "head": head},
        )

    def symbols(self, path: str) -> Outcome[str]:
        return self.call(
            Capability.SYMBOLS,
            lambda: _symbols_text(self._client.symbols(path)),
            warning=f"docdex_symbols_failed:{path}",
            args={"path": path},
        )

    def ast(self, path: str, *, max_nodes: int = 40) -> Outcome[List[Dict[str, Any]]]:
        def invoke() -> List[Dict[str, Any]]:
            payload = self._client.ast(path, max_nodes=max_nodes)
            nodes = payload.get("nodes", []) if isinstance(payload, dict) else payload
            return [node for node in (nodes or []) if isinstance(node, dict)][:max_nodes]

        return self.call(
            Capability.AST,
            invoke,
            warning=f"docdex_ast_failed:{path}",
            args={"path": path, "max_nodes": max_nodes},
        )

    def impact(self, path: str, *, max_depth: int, max_edges: int) -> Outcome[ImpactGraphRecord]:
        def invoke() -> ImpactGraphRecord:
            payload = self._client.impact_graph(path, max_depth=max_depth, max_edges=max_edges)
            record = ImpactGraphRecord.model_validate(payload or {})
            return ImpactGraphRecord(
                inbound=[normalize_path(p) for p in record.inbound][:max_edges],
                outbound=[normalize_path(p) for p in record.outbound][:max_edges],
            )

        return self.call(
            Capability.IMPACT_GRAPH,
            invoke,
            warning=f"docdex_impact_failed:{path}",
            args={"file": path, "maxDepth": max_depth, "maxEdges": max_edges},
        )

    def impact_diagnostics(self, path: str, *, limit: int = 20) -> Outcome[Any]:
        def invoke() -> Any:
            payload = self._client.impact_diagnostics(file=path, limit=limit, offset=0)
            if isinstance(payload, dict):
                return payload.get("diagnostics", payload.get("results", payload))
            return payload

        return self.call(
            Capability.IMPACT_DIAGNOSTICS,
            invoke,
            warning=f"impact_diagnostics_failed:{path}",
            args={"file": path, "limit": limit},
        )

    def tree(self, *, max_depth: int, include_hidden: bool, extra_excludes: Iterable[str]) -> Outcome[str]:
        excludes = list(extra_excludes)

        def invoke() -> str:
            payload = self._client.tree(
                path=".", max_depth=max_depth, include_hidden=include_hidden, extra_excludes=excludes
            )
            return _text(payload, ("tree", "text", "content"))

        return self.call(
            Capability.TREE,
            invoke,
            warning="docdex_tree_failed",
            args={"path": ".", "maxDepth": max_depth, "includeHidden": include_hidden, "extraExcludes": excludes},
        )

    def dag_export(self, session_id: str, *, max_nodes: int = 200) -> Outcome[str]:
        def invoke() -> str:
            return _text(self._client.dag_export(session_id, format="text", max_nodes=max_nodes), ("content", "text"))

        return self.call(
            Capability.DAG_EXPORT,
            invoke,
            warning="docdex_dag_failed",
            args={"session_id": session_id, "max_nodes": max_nodes},
        )

    def memory_recall(self, query: str, *, top_k: int) -> Outcome[List[MemoryRecord]]:
        def invoke() -> List[MemoryRecord]:
            payload = self._client.memory_recall(query, top_k=top_k)
            items = payload.get("results", []) if isinstance(payload, dict) else payload
            return [_memory_record(item) for item in items or []][:top_k]

        return self.call(
            Capability.MEMORY_RECALL,
            invoke,
            warning="docdex_memory_failed",
            args={"query": query, "top_k": top_k},
        )

    def profile(self, agent_id: str) -> Outcome[List[ProfilePreferenceRecord]]:
        def invoke() -> List[ProfilePreferenceRecord]:
            payload = self._client.get_profile(agent_id)
            items = payload.get("preferences", []) if isinstance(payload, dict) else payload
            return [_preference_record(item) for item in items or []]

        return self.call(
            Capability.GET_PROFILE,
            invoke,
            warning="docdex_profile_failed",
            args={"agent_id": agent_id},
        )

    def rebuild_index_in_background(self) -> Optional[threading.Thread]:
        """Trigger an index rebuild without waiting; failures are only logged."""
        if not self.supports(Capability.INDEX_REBUILD):
            return None

        def run() -> None:
            try:
                self._client.index_rebuild()
            except Exception as error:  # noqa: BLE001 - fire-and-forget
                LOGGER.warning("docdex_index_rebuild_failed: %s", error)

        worker = threading.Thread(target=run, name="docdex-index-rebuild", daemon=True)
        worker.start()
        return worker

    def _emit(self, event: Any) -> None:
        if self._events is not None:
            self._events.emit(event)


def _preview(value: Any) -> str:
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, default=str)
        except (TypeError, ValueError):
            text = repr(value)
    return text[:_PREVIEW_CHARS]


def _hits(payload: Any) -> List[SearchHit]:
    if isinstance(payload, dict):
        payload = payload.get("hits", payload.get("results", []))
    hits: List[SearchHit] = []
    for item in payload or []:
        if not isinstance(item, dict):
            continue
        try:
            record = SearchHitRecord.model_validate(item)
        except ValidationError:
            LOGGER.debug("Skipping malformed search hit %r", item)
            continue
        path = normalize_path(record.path) if record.path else None
        hits.append(SearchHit(doc_id=record.doc_id, path=path, score=record.score))
    return hits


def _path_list(payload: Any) -> List[str]:
    if isinstance(payload, dict):
        payload = payload.get("files", payload.get("results", []))
    paths: List[str] = []
    for item in payload or []:
        if isinstance(item, str):
            paths.append(normalize_path(item))
        elif isinstance(item, dict):
            value = item.get("rel_path") or item.get("path")
            if isinstance(value, str):
                paths.append(normalize_path(value))
    return paths


def _text(payload: Any, keys: Iterable[str]) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, str):
                return value
            if isinstance(value, dict):
                return _text(value, keys)
    if payload is None:
        raise DocdexResponseError("docdex returned no content")
    return json.dumps(payload, default=str)


def _symbols_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    symbols = payload.get("symbols") if isinstance(payload, dict) else payload
    if not isinstance(symbols, list):
        return json.dumps(payload, default=str)
    lines = []
    for symbol in symbols:
        if not isinstance(symbol, dict):
            continue
        kind = symbol.get("kind", "symbol")
        name = symbol.get("name", "?")
        line = symbol.get("line") or (symbol.get("range") or {}).get("start_line")
        suffix = f" (line {line})" if line else ""
        signature = symbol.get("signature")
        lines.append(f"{kind} {signature or name}{suffix}")
    return "\n".join(lines)


def _memory_record(item: Any) -> MemoryRecord:
    if isinstance(item, str):
        return MemoryRecord(content=item)
    return MemoryRecord.model_validate(item)


def _preference_record(item: Any) -> ProfilePreferenceRecord:
    if isinstance(item, str):
        return ProfilePreferenceRecord(content=item)
    return ProfilePreferenceRecord.model_validate(item)
