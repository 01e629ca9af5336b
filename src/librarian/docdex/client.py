"""HTTP client for the docdex index service."""

from __future__ import annotations

import enum
import itertools
import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from ..errors import LibrarianError

__all__ = [
    "Capability",
    "DocdexClient",
    "DocdexError",
    "DocdexResponseError",
    "DocdexTransportError",
    "HttpRequest",
    "REQUIRED_CAPABILITIES",
]

LOGGER = logging.getLogger(__name__)


class DocdexError(LibrarianError):
    """Base error raised by the docdex client."""


class DocdexTransportError(DocdexError):
    """Raised when docdex cannot be reached or answers with an HTTP error."""


class DocdexResponseError(DocdexError):
    """Raised when docdex returns a payload the client cannot interpret."""


class Capability(str, enum.Enum):
    """Operations an index-service client may support."""

    HEALTH_CHECK = "health_check"
    INITIALIZE = "initialize"
    STATS = "stats"
    FILES = "files"
    SEARCH = "search"
    OPEN_SNIPPET = "open_snippet"
    OPEN_FILE = "open_file"
    SYMBOLS = "symbols"
    AST = "ast"
    IMPACT_GRAPH = "impact_graph"
    IMPACT_DIAGNOSTICS = "impact_diagnostics"
    TREE = "tree"
    DAG_EXPORT = "dag_export"
    MEMORY_RECALL = "memory_recall"
    MEMORY_SAVE = "memory_save"
    GET_PROFILE = "get_profile"
    INDEX_REBUILD = "index_rebuild"


REQUIRED_CAPABILITIES: FrozenSet[Capability] = frozenset(
    {Capability.HEALTH_CHECK, Capability.STATS, Capability.FILES, Capability.SEARCH}
)


@dataclass(frozen=True, slots=True)
class HttpRequest:
    method: str
    url: str
    headers: Mapping[str, str]
    body: Optional[bytes] = None


Transport = Callable[[HttpRequest], str]


class DocdexClient:
    """Thin adapter over the docdex HTTP and MCP endpoints."""

    capabilities: FrozenSet[Capability] = frozenset(Capability)

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3210",
        *,
        repo_id: Optional[str] = None,
        repo_root: Optional[str] = None,
        api_key: Optional[str] = None,
        dag_session_id: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[Transport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.repo_id = repo_id
        self._repo_root = repo_root
        self._api_key = api_key or os.getenv("DOCDEX_API_KEY")
        self._dag_session_id = dag_session_id
        self._timeout = timeout
        self._transport = transport or self._http_transport
        self._rpc_ids = itertools.count(1)

    # -- plain HTTP endpoints -------------------------------------------------

    def health_check(self) -> bool:
        self._request("GET", "/healthz")
        return True

    def initialize(self, root_uri: str) -> Dict[str, Any]:
        payload = self._json(self._request("POST", "/v1/initialize", {"rootUri": root_uri}))
        repo_id = payload.get("repoId") or payload.get("repo_id") if isinstance(payload, dict) else None
        if repo_id:
            self.repo_id = str(repo_id)
        return payload if isinstance(payload, dict) else {}

    def search(self, query: str, *, limit: int, dag_session_id: Optional[str] = None) -> Any:
        params = {"q": query, "limit": str(limit)}
        session = dag_session_id or self._dag_session_id
        if session:
            params["dag_session_id"] = session
        return self._json(self._request("GET", f"/search?{urllib.parse.urlencode(params)}"))

    def open_snippet(self, doc_id: str, *, window: int) -> Any:
        quoted = urllib.parse.quote(str(doc_id), safe="")
        return self._json(self._request("GET", f"/snippet/{quoted}?window={int(window)}"))

    def impact_graph(self, path: str, *, max_depth: int, max_edges: int) -> Any:
        body = {"file": path, "maxDepth": max_depth, "maxEdges": max_edges}
        return self._json(self._request("POST", "/v1/graph/impact", body))

    def impact_diagnostics(self, *, file: str, limit: int = 20, offset: int = 0) -> Any:
        body = {"file": file, "limit": limit, "offset": offset}
        return self._json(self._request("POST", "/v1/graph/impact/diagnostics", body))

    def index_rebuild(self) -> Any:
        return self._json(self._request("POST", "/v1/index/rebuild", {}))

    def dag_export(self, session_id: str, *, format: str = "text", max_nodes: int = 200) -> Any:
        params = urllib.parse.urlencode({"session_id": session_id, "format": format, "max_nodes": max_nodes})
        text = self._request("GET", f"/v1/dag/export?{params}")
        return text if format == "text" else self._json(text)

    # -- MCP tools ------------------------------------------------------------

    def stats(self) -> Any:
        return self._call_tool("docdex_stats", {})

    def files(self, *, limit: int = 20, offset: int = 0) -> Any:
        return self._call_tool("docdex_files", {"limit": limit, "offset": offset})

    def open_file(
        self,
        path: str,
        *,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
        head: Optional[int] = None,
        clamp: bool = True,
    ) -> Any:
        args: Dict[str, Any] = {"path": path, "clamp": clamp}
        if start_line is not None:
            args["start_line"] = start_line
        if end_line is not None:
            args["end_line"] = end_line
        if head is not None:
            args["head"] = head
        return self._call_tool("docdex_open", args)

    def symbols(self, path: str) -> Any:
        return self._call_tool("docdex_symbols", {"path": path})

    def ast(self, path: str, *, max_nodes: Optional[int] = None) -> Any:
        args: Dict[str, Any] = {"path": path}
        if max_nodes is not None:
            args["max_nodes"] = max_nodes
        return self._call_tool("docdex_ast", args)

    def tree(
        self,
        *,
        path: str = ".",
        max_depth: int = 64,
        include_hidden: bool = True,
        extra_excludes: Iterable[str] = (),
    ) -> Any:
        args = {
            "path": path,
            "max_depth": max_depth,
            "include_hidden": include_hidden,
            "extra_excludes": list(extra_excludes),
        }
        return self._call_tool("docdex_tree", args)

    def memory_recall(self, query: str, *, top_k: int = 5) -> Any:
        return self._call_tool("docdex_memory_recall", {"query": query, "top_k": top_k})

    def memory_save(self, text: str) -> Any:
        return self._call_tool("docdex_memory_save", {"text": text})

    def get_profile(self, agent_id: str) -> Any:
        return self._call_tool("docdex_get_profile", {"agent_id": agent_id})

    # -- plumbing -------------------------------------------------------------

    def _call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        args = dict(arguments)
        if self.repo_id:
            args.setdefault("project_root", self._repo_root or "")
            args.setdefault("repo_id", self.repo_id)
        body = {
            "jsonrpc": "2.0",
            "id": next(self._rpc_ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": args},
        }
        payload = self._json(self._request("POST", "/v1/mcp", body))
        if not isinstance(payload, dict):
            raise DocdexResponseError(f"{name}: unexpected MCP payload")
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise DocdexResponseError(f"{name}: {message}")
        return normalize_tool_result(name, payload.get("result"))

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if self.repo_id:
            headers["x-docdex-repo-id"] = self.repo_id
        if self._repo_root:
            headers["x-docdex-repo-root"] = self._repo_root
        if self._dag_session_id:
            headers["x-docdex-dag-session"] = self._dag_session_id
        return headers

    def _request(self, method: str, path: str, body: Optional[Mapping[str, Any]] = None) -> str:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        LOGGER.debug("docdex %s %s", method, path)
        request = HttpRequest(method=method, url=f"{self._base_url}{path}", headers=self._headers(), body=data)
        return self._transport(request)

    def _http_transport(self, request: HttpRequest) -> str:
        """Default transport backed by ``urllib.request``."""
        http_request = urllib.request.Request(
            request.url,
            data=request.body,
            headers=dict(request.headers),
            method=request.method,
        )
        try:
            with urllib.request.urlopen(http_request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise DocdexTransportError(f"docdex request timed out: {request.url}") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise DocdexTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise DocdexTransportError(f"Failed to reach docdex: {error.reason}") from error
        if status >= 400:
            raise DocdexTransportError(f"Unexpected HTTP status {status}")
        return raw.decode("utf-8")

    @staticmethod
    def _json(text: str) -> Any:
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as error:
            raise DocdexResponseError(f"docdex returned invalid JSON: {text[:200]}") from error


def normalize_tool_result(name: str, result: Any) -> Any:
    """Unwrap an MCP tool result into plain Python data."""
    if not isinstance(result, dict):
        return result
    if result.get("isError"):
        raise DocdexResponseError(f"{name}: {_first_text(result.get('content')) or 'tool error'}")
    structured = result.get("structuredContent")
    if structured is not None:
        return structured
    text = _first_text(result.get("content"))
    if text is None:
        return result
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _first_text(content: Any) -> Optional[str]:
    if not isinstance(content, list):
        return None
    texts: List[str] = [
        item["text"] for item in content if isinstance(item, dict) and isinstance(item.get("text"), str)
    ]
    return texts[0] if texts else None
