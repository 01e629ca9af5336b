from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from librarian.docdex.client import DocdexTransportError  # noqa: E402

DEFAULT_CAPABILITIES = (
    "health_check",
    "stats",
    "files",
    "search",
    "open_snippet",
    "symbols",
    "ast",
    "impact_graph",
    "impact_diagnostics",
    "tree",
    "memory_recall",
    "get_profile",
    "index_rebuild",
)


class FakeDocdex:
    """In-memory stand-in for the docdex service; tests mutate its attributes."""

    def __init__(self, capabilities: Iterable[str] = DEFAULT_CAPABILITIES) -> None:
        self.capabilities = frozenset(capabilities)
        self.healthy = True
        self.stats_payload: Any = {"num_docs": 12, "last_updated_epoch_ms": 1_700_000_000_000}
        self.file_list: List[str] = ["src/app.py"]
        self.default_hits: List[Dict[str, Any]] = []
        self.hits_by_query: Dict[str, List[Dict[str, Any]]] = {}
        self.search_error: Optional[Exception] = None
        self.snippets: Dict[str, str] = {}
        self.symbol_map: Dict[str, Any] = {}
        self.ast_map: Dict[str, Any] = {}
        self.impact_map: Dict[str, Dict[str, List[str]]] = {}
        self.diagnostics: Any = []
        self.tree_text = "."
        self.memories: List[Any] = []
        self.preferences: List[Any] = []
        self.rebuilt = threading.Event()
        self.queries: List[str] = []
        self.calls: List[str] = []

    def health_check(self) -> bool:
        self.calls.append("health_check")
        if not self.healthy:
            raise DocdexTransportError("connection refused")
        return True

    def stats(self) -> Any:
        self.calls.append("stats")
        return self.stats_payload

    def files(self, *, limit: int = 20, offset: int = 0) -> Any:
        self.calls.append("files")
        return {"files": [{"rel_path": path} for path in self.file_list[offset : offset + limit]]}

    def search(self, query: str, *, limit: int, dag_session_id: Optional[str] = None) -> Any:
        self.calls.append("search")
        self.queries.append(query)
        if self.search_error is not None:
            raise self.search_error
        return {"hits": list(self.hits_by_query.get(query, self.default_hits))[:limit]}

    def open_snippet(self, doc_id: str, *, window: int) -> Any:
        self.calls.append(f"open_snippet:{doc_id}")
        return {"snippet": self.snippets.get(doc_id, f"snippet for {doc_id}")}

    def symbols(self, path: str) -> Any:
        self.calls.append(f"symbols:{path}")
        return {"symbols": self.symbol_map.get(path, [])}

    def ast(self, path: str, *, max_nodes: Optional[int] = None) -> Any:
        self.calls.append(f"ast:{path}")
        return {"nodes": self.ast_map.get(path, [])}

    def impact_graph(self, path: str, *, max_depth: int, max_edges: int) -> Any:
        self.calls.append(f"impact_graph:{path}")
        return self.impact_map.get(path, {"inbound": [], "outbound": []})

    def impact_diagnostics(self, *, file: str, limit: int = 20, offset: int = 0) -> Any:
        self.calls.append(f"impact_diagnostics:{file}")
        return {"diagnostics": self.diagnostics}

    def tree(self, **_: Any) -> Any:
        self.calls.append("tree")
        return {"tree": self.tree_text}

    def memory_recall(self, query: str, *, top_k: int = 5) -> Any:
        self.calls.append("memory_recall")
        return {"results": self.memories}

    def get_profile(self, agent_id: str) -> Any:
        self.calls.append("get_profile")
        return {"preferences": self.preferences}

    def index_rebuild(self) -> Any:
        self.calls.append("index_rebuild")
        self.rebuilt.set()
        return {}


@pytest.fixture()
def docdex() -> FakeDocdex:
    return FakeDocdex()


@pytest.fixture()
def write_files(tmp_path: Path) -> Callable[[Dict[str, str]], Path]:
    """Write ``{relative path: content}`` under ``tmp_path`` and return the root."""

    def _write(files: Dict[str, str]) -> Path:
        for relative, content in files.items():
            target = tmp_path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return tmp_path

    return _write
