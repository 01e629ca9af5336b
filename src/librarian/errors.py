"""Exception types raised by the librarian when assembly cannot degrade."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

__all__ = [
    "DeepInvestigationError",
    "LibrarianError",
    "PathOutsideWorkspaceError",
]


class LibrarianError(RuntimeError):
    """Base error raised by the context librarian."""


class PathOutsideWorkspaceError(LibrarianError, ValueError):
    """Raised when a requested path escapes the workspace root."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Path is outside workspace root: {path}")
        self.path = path


class DeepInvestigationError(LibrarianError):
    """Raised in deep mode when the index service cannot support a full investigation."""

    def __init__(self, missing: Iterable[str], remediation: Iterable[str]) -> None:
        self.missing: List[str] = list(missing)
        self.remediation: List[str] = list(remediation)
        summary = ", ".join(self.missing) or "unknown"
        super().__init__(f"Deep investigation blocked; missing: {summary}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "deep_investigation_blocked",
            "missing": list(self.missing),
            "remediation": list(self.remediation),
        }
