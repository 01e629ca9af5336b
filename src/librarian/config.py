"""Resolved options for the context assembler and their YAML loading."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "ContextAssemblerOptions",
    "OptionsDocument",
    "apply_deep_scan_preset",
    "options_from_config",
]

LOGGER = logging.getLogger(__name__)

ReadStrategy = Literal["docdex", "fs"]
SerializationMode = Literal["bundle_text", "json"]

_RANGES: Dict[str, Tuple[int, int]] = {
    "max_queries": (1, 12),
    "max_hits_per_query": (1, 20),
    "snippet_window": (40, 600),
    "impact_max_depth": (1, 6),
    "impact_max_edges": (10, 200),
}
_POSITIVE = (
    "max_files",
    "max_total_bytes",
    "token_budget",
    "focus_max_file_bytes",
    "periphery_max_bytes",
    "focus_count",
    "budget_iteration_factor",
    "fallback_limit",
    "memory_top_k",
    "golden_limit",
    "episodic_limit",
)
_SEQUENCES = (
    "redact_patterns",
    "ignore_files_from",
    "preferred_files",
    "recent_files",
    "force_focus_files",
    "additional_queries",
    "read_only_paths",
    "allow_write_paths",
)


@dataclass(frozen=True, slots=True)
class ContextAssemblerOptions:
    """Immutable assembler configuration; build it with :meth:`resolve`."""

    max_queries: int = 3
    max_hits_per_query: int = 3
    snippet_window: int = 120
    impact_max_depth: int = 2
    impact_max_edges: int = 80
    max_files: int = 8
    max_total_bytes: int = 40_000
    token_budget: int = 120_000
    include_repo_map: bool = True
    include_impact: bool = True
    include_snippets: bool = True
    read_strategy: ReadStrategy = "docdex"
    focus_max_file_bytes: int = 12_000
    periphery_max_bytes: int = 4_000
    skeletonize_large_files: bool = True
    serialization_mode: SerializationMode = "bundle_text"
    redact_secrets: bool = False
    redact_patterns: Tuple[str, ...] = ()
    ignore_files_from: Tuple[str, ...] = ()
    deep_mode: bool = False
    preferred_files: Tuple[str, ...] = ()
    recent_files: Tuple[str, ...] = ()
    force_focus_files: Tuple[str, ...] = ()
    additional_queries: Tuple[str, ...] = ()
    skip_search_when_preferred: bool = False
    focus_count: int = 2
    agent_id: str = "librarian"
    dag_session_id: Optional[str] = None
    read_only_paths: Tuple[str, ...] = ()
    allow_write_paths: Tuple[str, ...] = ()
    doc_dominance_threshold: float = 0.6
    budget_iteration_factor: int = 4
    fallback_limit: int = 3
    memory_top_k: int = 5
    golden_examples_path: str = ".librarian/golden-examples.jsonl"
    golden_limit: int = 3
    episodic_limit: int = 3

    def __post_init__(self) -> None:
        # Every construction path clamps, including replace() and direct calls.
        for name, (low, high) in _RANGES.items():
            object.__setattr__(self, name, _clamp(name, int(getattr(self, name)), low, high))
        for name in _POSITIVE:
            object.__setattr__(self, name, _clamp(name, int(getattr(self, name)), 1, None))
        for name in _SEQUENCES:
            object.__setattr__(self, name, tuple(str(item) for item in getattr(self, name)))
        threshold = float(self.doc_dominance_threshold)
        clamped = min(1.0, max(0.0, threshold))
        if clamped != threshold:
            LOGGER.warning("Clamped %s from %r to %r", "doc_dominance_threshold", threshold, clamped)
        object.__setattr__(self, "doc_dominance_threshold", clamped)

    @classmethod
    def resolve(cls, **overrides: Any) -> "ContextAssemblerOptions":
        """Build options from overrides; ``None`` keeps the default."""
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise TypeError(f"Unknown assembler option(s): {', '.join(unknown)}")
        values: Dict[str, Any] = {
            name: value for name, value in overrides.items() if value is not None or name == "dag_session_id"
        }
        return cls(**values)

    @property
    def low_hit_threshold(self) -> int:
        return min(2, self.max_hits_per_query)

    def with_overrides(self, **overrides: Any) -> "ContextAssemblerOptions":
        """Return a new resolved value with ``overrides`` applied on top of this one."""
        current = {item.name: getattr(self, item.name) for item in fields(self)}
        current.update(overrides)
        return ContextAssemblerOptions.resolve(**current)


def _clamp(name: str, value: int, low: int, high: Optional[int]) -> int:
    clamped = max(low, value)
    if high is not None:
        clamped = min(high, clamped)
    if clamped != value:
        LOGGER.warning("Clamped %s from %r to %r", name, value, clamped)
    return clamped


def apply_deep_scan_preset(options: ContextAssemblerOptions) -> ContextAssemblerOptions:
    """Return a copy of ``options`` widened for a deep investigation."""
    return replace(
        options,
        max_queries=max(options.max_queries, 6),
        max_hits_per_query=max(options.max_hits_per_query, 8),
        max_files=max(options.max_files, 12),
        impact_max_depth=max(options.impact_max_depth, 3),
        impact_max_edges=max(options.impact_max_edges, 160),
        include_repo_map=True,
        include_impact=True,
        include_snippets=True,
        deep_mode=True,
    )


class OptionsDocument(BaseModel):
    """Validated shape of the ``librarian:`` section of a config file."""

    model_config = ConfigDict(extra="forbid")

    max_queries: Optional[int] = None
    max_hits_per_query: Optional[int] = None
    snippet_window: Optional[int] = None
    impact_max_depth: Optional[int] = None
    impact_max_edges: Optional[int] = None
    max_files: Optional[int] = None
    max_total_bytes: Optional[int] = None
    token_budget: Optional[int] = None
    include_repo_map: Optional[bool] = None
    include_impact: Optional[bool] = None
    include_snippets: Optional[bool] = None
    read_strategy: Optional[ReadStrategy] = None
    focus_max_file_bytes: Optional[int] = None
    periphery_max_bytes: Optional[int] = None
    skeletonize_large_files: Optional[bool] = None
    serialization_mode: Optional[SerializationMode] = None
    redact_secrets: Optional[bool] = None
    redact_patterns: list[str] = Field(default_factory=list)
    ignore_files_from: list[str] = Field(default_factory=list)
    deep_mode: Optional[bool] = None
    preferred_files: list[str] = Field(default_factory=list)
    recent_files: list[str] = Field(default_factory=list)
    skip_search_when_preferred: Optional[bool] = None
    focus_count: Optional[int] = None
    agent_id: Optional[str] = None
    read_only_paths: list[str] = Field(default_factory=list)
    allow_write_paths: list[str] = Field(default_factory=list)
    doc_dominance_threshold: Optional[float] = None
    golden_examples_path: Optional[str] = None


def options_from_config(config: Mapping[str, Any], **overrides: Any) -> ContextAssemblerOptions:
    """Resolve options from a parsed config document plus explicit overrides."""
    section = config.get("librarian") or {}
    if not isinstance(section, Mapping):
        raise ValueError("The 'librarian' config section must be a mapping.")
    document = OptionsDocument.model_validate(dict(section))
    values = {
        key: value
        for key, value in document.model_dump().items()
        if value is not None and value != []
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ContextAssemblerOptions.resolve(**values)
