"""Local Python symbol outlines built with libcst.

Used when file summaries cannot come from the index service, and to find the
smallest definition worth slicing out of an oversized focus file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import libcst as cst
from libcst import metadata

__all__ = ["SymbolOutline", "outline_python", "render_outline", "smallest_symbol_containing"]


@dataclass(frozen=True)
class SymbolOutline:
    """A class, function or method definition and its line span."""

    name: str
    kind: str
    signature: str
    start_line: int
    end_line: int


class _OutlineCollector(cst.CSTVisitor):
    METADATA_DEPENDENCIES = (metadata.PositionProvider,)

    def __init__(self, module: cst.Module) -> None:
        self._module = module
        self._class_stack: List[str] = []
        self.symbols: List[SymbolOutline] = []

    def visit_ClassDef(self, node: cst.ClassDef) -> None:
        bases = [self._module.code_for_node(base.value) for base in node.bases]
        signature = f"class {node.name.value}"
        if bases:
            signature = f"{signature}({', '.join(bases)})"
        self._record(node, node.name.value, "class", signature)
        self._class_stack.append(node.name.value)

    def leave_ClassDef(self, original_node: cst.ClassDef) -> None:
        if self._class_stack:
            self._class_stack.pop()

    def visit_FunctionDef(self, node: cst.FunctionDef) -> None:
        signature = f"def {node.name.value}({self._module.code_for_node(node.params)})"
        if node.returns is not None:
            signature = f"{signature} -> {self._module.code_for_node(node.returns.annotation)}"
        kind = "method" if self._class_stack else "function"
        name = ".".join([*self._class_stack, node.name.value])
        self._record(node, name, kind, signature)

    def _record(self, node: cst.CSTNode, name: str, kind: str, signature: str) -> None:
        code_range = self.get_metadata(metadata.PositionProvider, node)
        self.symbols.append(
            SymbolOutline(
                name=name,
                kind=kind,
                signature=signature,
                start_line=code_range.start.line,
                end_line=code_range.end.line,
            )
        )


def outline_python(source: str) -> List[SymbolOutline]:
    """Return the definitions in ``source``; unparsable source yields nothing."""
    try:
        module = cst.parse_module(source)
    except cst.ParserSyntaxError:
        return []
    collector = _OutlineCollector(module)
    metadata.MetadataWrapper(module).visit(collector)
    return collector.symbols


def render_outline(symbols: Sequence[SymbolOutline]) -> str:
    return "\n".join(
        f"{symbol.kind} {symbol.signature} (lines {symbol.start_line}-{symbol.end_line})" for symbol in symbols
    )


def smallest_symbol_containing(
    source: str, symbols: Sequence[SymbolOutline], keywords: Sequence[str]
) -> Optional[SymbolOutline]:
    """Smallest definition whose text mentions any of ``keywords``."""
    lines = source.splitlines()
    lowered = [keyword.lower() for keyword in keywords if keyword]
    best: Optional[SymbolOutline] = None
    for symbol in symbols:
        body = "\n".join(lines[symbol.start_line - 1 : symbol.end_line]).lower()
        if not any(keyword in body for keyword in lowered):
            continue
        if best is None or (symbol.end_line - symbol.start_line) < (best.end_line - best.start_line):
            best = symbol
    return best
