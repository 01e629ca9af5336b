"""Value types that make up a context bundle."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from .intent import IntentSignals

__all__ = [
    "AstEntry",
    "ContextBundle",
    "ContextFileEntry",
    "ContextSelection",
    "EpisodicEntry",
    "GoldenEntry",
    "ImpactDiagnosticsEntry",
    "ImpactEntry",
    "IndexInfo",
    "Preference",
    "ProjectInfo",
    "QuerySignals",
    "RedactionInfo",
    "RequestDigest",
    "SearchHit",
    "SearchResultEntry",
    "SnippetEntry",
    "SymbolEntry",
    "estimate_tokens",
]

_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate used for budgeting."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / _CHARS_PER_TOKEN))


@dataclass(frozen=True, slots=True)
class SearchHit:
    doc_id: Optional[str] = None
    path: Optional[str] = None
    score: Optional[float] = None

    @property
    def key(self) -> Tuple[Optional[str], Optional[str]]:
        return (self.doc_id, self.path)


@dataclass(frozen=True, slots=True)
class SearchResultEntry:
    query: str
    hits: Tuple[SearchHit, ...] = ()


@dataclass(frozen=True, slots=True)
class QuerySignals:
    phrases: Tuple[str, ...] = ()
    file_tokens: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    keyword_phrases: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContextSelection:
    """Ranked split of selected paths; ``all`` is focus followed by periphery."""

    focus: Tuple[str, ...] = ()
    periphery: Tuple[str, ...] = ()
    low_confidence: bool = False

    @property
    def all(self) -> Tuple[str, ...]:
        return self.focus + self.periphery

    def without(self, paths: Any) -> "ContextSelection":
        dropped = set(paths)
        return ContextSelection(
            focus=tuple(p for p in self.focus if p not in dropped),
            periphery=tuple(p for p in self.periphery if p not in dropped),
            low_confidence=self.low_confidence,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "focus": list(self.focus),
            "periphery": list(self.periphery),
            "all": list(self.all),
            "low_confidence": self.low_confidence,
        }


Role = Literal["focus", "periphery"]


@dataclass(slots=True)
class ContextFileEntry:
    path: str
    content: str
    role: Role
    truncated: bool = False
    slice_strategy: Optional[str] = None
    token_estimate: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))

    @property
    def tokens(self) -> int:
        if self.token_estimate is not None:
            return self.token_estimate
        return estimate_tokens(self.content)


@dataclass(frozen=True, slots=True)
class SnippetEntry:
    doc_id: str
    path: Optional[str]
    content: str


@dataclass(frozen=True, slots=True)
class SymbolEntry:
    path: str
    summary: str


@dataclass(frozen=True, slots=True)
class AstEntry:
    path: str
    nodes: Tuple[Dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class ImpactEntry:
    file: str
    inbound: Tuple[str, ...] = ()
    outbound: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ImpactDiagnosticsEntry:
    file: str
    diagnostics: Any = None


@dataclass(frozen=True, slots=True)
class Preference:
    category: Literal["preference", "constraint", "note"]
    content: str


@dataclass(frozen=True, slots=True)
class EpisodicEntry:
    path: str
    intent: str = ""
    plan: str = ""
    diff: str = ""


@dataclass(frozen=True, slots=True)
class GoldenEntry:
    intent: str
    patch_summary: str
    score: float


@dataclass(frozen=True, slots=True)
class IndexInfo:
    num_docs: int = 0
    last_updated_epoch_ms: int = 0
    files_sampled: int = 0


@dataclass(frozen=True, slots=True)
class ProjectInfo:
    workspace_root: str
    readme_path: Optional[str] = None
    readme_summary: Optional[str] = None
    docs: Tuple[str, ...] = ()
    manifests: Tuple[str, ...] = ()
    file_types: Tuple[Tuple[str, int], ...] = ()


@dataclass(frozen=True, slots=True)
class RedactionInfo:
    count: int = 0
    ignored: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RequestDigest:
    summary: str
    refined_query: str
    confidence: Literal["high", "medium", "low"]
    signals: Tuple[str, ...] = ()
    candidate_files: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContextBundle:
    """Aggregate result of a single ``assemble`` call."""

    request: str
    intent: IntentSignals
    query_signals: QuerySignals
    queries: Tuple[str, ...]
    search_results: Tuple[SearchResultEntry, ...]
    snippets: Tuple[SnippetEntry, ...]
    symbols: Tuple[SymbolEntry, ...]
    ast: Tuple[AstEntry, ...]
    impact: Tuple[ImpactEntry, ...]
    impact_diagnostics: Tuple[ImpactDiagnosticsEntry, ...]
    repo_map: Optional[str]
    repo_map_raw: Optional[str]
    dag_summary: Optional[str]
    selection: ContextSelection
    files: Tuple[ContextFileEntry, ...]
    redaction: RedactionInfo
    memory: Tuple[str, ...]
    episodic_memory: Tuple[EpisodicEntry, ...]
    golden_examples: Tuple[GoldenEntry, ...]
    preferences: Tuple[Preference, ...]
    profile: Tuple[str, ...]
    index: IndexInfo
    project_info: Optional[ProjectInfo]
    warnings: Tuple[str, ...]
    missing: Tuple[str, ...]
    request_digest: RequestDigest
    read_only_paths: Tuple[str, ...] = ()
    allow_write_paths: Tuple[str, ...] = ()
    serialized: Optional[str] = None
