"""Byte and token budget enforcement over loaded context files."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Sequence, Tuple

from .bundle import ContextFileEntry

__all__ = ["TRUNCATION_MARKER", "BudgetResult", "apply_context_budget", "truncate_with_marker"]

TRUNCATION_MARKER = "\n/* ...truncated... */\n"
_MARKER_BYTES = len(TRUNCATION_MARKER.encode("utf-8"))


def truncate_with_marker(text: str, max_bytes: int) -> str:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes, ending in the marker when it fits."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    if max_bytes <= _MARKER_BYTES:
        # Keep at least one whole character so a non-empty entry never loses all content.
        return encoded[: max(0, max_bytes)].decode("utf-8", errors="ignore") or text[:1]
    head = encoded[: max_bytes - _MARKER_BYTES].decode("utf-8", errors="ignore")
    return f"{head}{TRUNCATION_MARKER}"


@dataclass(slots=True)
class BudgetResult:
    files: List[ContextFileEntry]
    dropped_paths: List[str] = field(default_factory=list)
    trimmed: bool = False
    total_bytes: int = 0
    total_tokens: int = 0


def _totals(files: Sequence[ContextFileEntry]) -> Tuple[int, int]:
    return sum(entry.size for entry in files), sum(entry.tokens for entry in files)


def apply_context_budget(
    entries: Sequence[ContextFileEntry],
    *,
    max_total_bytes: int,
    token_budget: int,
    iteration_factor: int = 4,
) -> BudgetResult:
    """Drop trailing periphery files, then trim from the tail until within budget.

    Input entries are never modified; trimmed entries are replaced by copies.
    """
    files = list(entries)
    dropped: List[str] = []

    def over() -> Tuple[int, int]:
        total_bytes, total_tokens = _totals(files)
        return max(0, total_bytes - max_total_bytes), max(0, total_tokens - token_budget)

    while any(over()):
        periphery = [index for index, entry in enumerate(files) if entry.role == "periphery"]
        if not periphery:
            break
        dropped.append(files.pop(periphery[-1]).path)

    truncated_any = False
    index = len(files) - 1
    iterations = 0
    limit = iteration_factor * max(1, len(files))
    while index >= 0 and iterations < limit:
        bytes_over, tokens_over = over()
        if not bytes_over and not tokens_over:
            break
        iterations += 1
        entry = files[index]
        if entry.size <= 1:
            index -= 1
            continue
        target = max(1, entry.size - max(bytes_over, tokens_over * 4))
        files[index] = replace(
            entry,
            content=truncate_with_marker(entry.content, target),
            truncated=True,
            slice_strategy="budget_trim",
            token_estimate=None,
            warnings=[*entry.warnings, "budget_trim"],
        )
        truncated_any = True

    total_bytes, total_tokens = _totals(files)
    return BudgetResult(
        files=files,
        dropped_paths=dropped,
        trimmed=bool(dropped) or truncated_any,
        total_bytes=total_bytes,
        total_tokens=total_tokens,
    )
