"""Load focus files in full and periphery files as summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .budget import TRUNCATION_MARKER, truncate_with_marker
from .bundle import ContextFileEntry, ContextSelection
from .config import ContextAssemblerOptions
from .discovery import Workspace
from .docdex.client import Capability
from .docdex.gateway import DocdexGateway
from .errors import PathOutsideWorkspaceError
from .redaction import ContextRedactor
from .symbols import outline_python, render_outline, smallest_symbol_containing

__all__ = ["FileLoader", "LoadResult"]

LOGGER = logging.getLogger(__name__)

_SYMBOLS_HEADER = "\n/* symbols */\n"


@dataclass(slots=True)
class LoadResult:
    files: List[ContextFileEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    redaction_count: int = 0
    ignored: List[str] = field(default_factory=list)


class FileLoader:
    """Reads selected files through docdex or the filesystem."""

    def __init__(
        self,
        workspace: Workspace,
        options: ContextAssemblerOptions,
        *,
        gateway: Optional[DocdexGateway] = None,
        redactor: Optional[ContextRedactor] = None,
    ) -> None:
        self._workspace = workspace
        self._options = options
        self._gateway = gateway
        self._redactor = redactor

    def load(
        self,
        selection: ContextSelection,
        *,
        keywords: Sequence[str] = (),
        symbols: Mapping[str, str] | None = None,
        ast_nodes: Mapping[str, Sequence[Dict[str, Any]]] | None = None,
    ) -> LoadResult:
        """Load every selected path; failures become warnings and the file is skipped."""
        symbols = symbols or {}
        ast_nodes = ast_nodes or {}
        result = LoadResult()
        for role, paths in (("focus", selection.focus), ("periphery", selection.periphery)):
            for path in paths:
                if self._redactor is not None and self._redactor.is_ignored(path):
                    result.ignored.append(path)
                    result.warnings.append(f"redaction_ignored:{path}")
                    continue
                try:
                    if role == "focus":
                        entry = self._load_focus(path, keywords, symbols.get(path), ast_nodes.get(path, ()))
                    else:
                        entry = self._load_periphery(path, symbols.get(path))
                except (OSError, PathOutsideWorkspaceError, UnicodeError) as error:
                    LOGGER.debug("Failed to load %s: %s", path, error, exc_info=True)
                    result.warnings.append(f"file_load_failed:{path}")
                    continue
                if self._redactor is not None:
                    redacted, count = self._redactor.redact(entry.content)
                    if count:
                        entry.content = redacted
                        entry.warnings.append("redacted")
                        result.redaction_count += count
                result.files.append(entry)
        if result.redaction_count:
            result.warnings.append("redacted")
        return result

    # -- focus ----------------------------------------------------------------

    def _load_focus(
        self,
        path: str,
        keywords: Sequence[str],
        symbols_text: Optional[str],
        nodes: Sequence[Dict[str, Any]],
    ) -> ContextFileEntry:
        limit = self._options.focus_max_file_bytes
        content = self._read(path)
        if len(content.encode("utf-8")) <= limit:
            return ContextFileEntry(path=path, content=content, role="focus")
        if not self._options.skeletonize_large_files:
            return ContextFileEntry(
                path=path,
                content=truncate_with_marker(content, limit),
                role="focus",
                truncated=True,
                slice_strategy="head",
            )
        sliced = self._ast_slice(path, content, keywords, nodes, limit)
        if sliced is not None:
            return ContextFileEntry(path=path, content=sliced, role="focus", truncated=True, slice_strategy="ast_slice")
        if symbols_text is None and path.endswith(".py"):
            symbols_text = render_outline(outline_python(content))
        return ContextFileEntry(
            path=path,
            content=_head_tail(content, limit, symbols_text or ""),
            role="focus",
            truncated=True,
            slice_strategy="head_tail",
        )

    def _ast_slice(
        self,
        path: str,
        content: str,
        keywords: Sequence[str],
        nodes: Sequence[Dict[str, Any]],
        limit: int,
    ) -> Optional[str]:
        """Smallest definition range that mentions a request keyword and fits ``limit``."""
        spans: List[Tuple[int, int]] = [span for span in (_node_lines(node) for node in nodes) if span]
        if not spans and path.endswith(".py"):
            symbol = smallest_symbol_containing(content, outline_python(content), keywords)
            spans = [(symbol.start_line, symbol.end_line)] if symbol else []
        lines = content.splitlines()
        lowered = [keyword.lower() for keyword in keywords if keyword]
        best: Optional[Tuple[int, int]] = None
        for start, end in spans:
            body = "\n".join(lines[start - 1 : end])
            if not any(keyword in body.lower() for keyword in lowered):
                continue
            if best is None or (end - start) < (best[1] - best[0]):
                best = (start, end)
        if best is None:
            return None
        start, end = best
        sliced = f"/* ast_slice lines {start}-{end} */\n" + "\n".join(lines[start - 1 : end])
        if len(sliced.encode("utf-8")) > limit:
            return None
        return sliced

    # -- periphery ------------------------------------------------------------

    def _load_periphery(self, path: str, symbols_text: Optional[str]) -> ContextFileEntry:
        limit = self._options.periphery_max_bytes
        strategy = "symbols"
        summary = symbols_text
        if summary is None and self._use_docdex() and self._gateway.supports(Capability.SYMBOLS):
            outcome = self._gateway.symbols(path)
            summary = outcome.value if outcome.ok else None
        if not summary:
            content = self._read(path)
            if path.endswith(".py"):
                summary = render_outline(outline_python(content))
            if not summary:
                summary = content
                strategy = "head"
        if len(summary.encode("utf-8")) > limit:
            return ContextFileEntry(
                path=path,
                content=truncate_with_marker(summary, limit),
                role="periphery",
                truncated=True,
                slice_strategy=f"{strategy}_truncated",
            )
        return ContextFileEntry(path=path, content=summary, role="periphery", slice_strategy=strategy)

    # -- reading --------------------------------------------------------------

    def _use_docdex(self) -> bool:
        return self._gateway is not None and self._options.read_strategy == "docdex"

    def _read(self, path: str) -> str:
        if self._use_docdex() and self._gateway.supports(Capability.OPEN_FILE):
            outcome = self._gateway.open_file(path)
            if outcome.ok and outcome.value is not None:
                return outcome.value
        return self._workspace.read_text(path)


def _node_lines(node: Mapping[str, Any]) -> Optional[Tuple[int, int]]:
    start = node.get("start_line") or node.get("startLine")
    end = node.get("end_line") or node.get("endLine")
    span = node.get("range")
    if (start is None or end is None) and isinstance(span, dict):
        start = (span.get("start") or {}).get("line") if isinstance(span.get("start"), dict) else span.get("start")
        end = (span.get("end") or {}).get("line") if isinstance(span.get("end"), dict) else span.get("end")
    if isinstance(start, int) and isinstance(end, int) and 1 <= start <= end:
        return start, end
    return None


def _head_tail(content: str, limit: int, symbols_text: str) -> str:
    """Keep the start and end of ``content`` with a symbol outline between them."""
    block = ""
    if symbols_text:
        block = _SYMBOLS_HEADER + truncate_with_marker(symbols_text, limit // 4)
    room = max(0, limit - len(block.encode("utf-8")) - len(TRUNCATION_MARKER.encode("utf-8")))
    half = room // 2
    encoded = content.encode("utf-8")
    head = encoded[:half].decode("utf-8", errors="ignore")
    tail = encoded[len(encoded) - half :].decode("utf-8", errors="ignore") if half else ""
    return truncate_with_marker(f"{head}{TRUNCATION_MARKER}{tail}{block}", limit)
