"""Filesystem discovery scoped to the workspace root."""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .bundle import ProjectInfo
from .errors import PathOutsideWorkspaceError
from .paths import (
    EXCLUDED_DIRS,
    Facet,
    has_facet,
    is_code_path,
    is_doc_path,
    is_script_path,
    is_test_path,
    normalize_path,
    path_tokens,
)
from .queries import unique

__all__ = [
    "FALLBACK_RULES",
    "FallbackRule",
    "MANIFEST_NAMES",
    "Workspace",
    "collect_project_info",
    "script_companions",
]

LOGGER = logging.getLogger(__name__)

MANIFEST_NAMES: Tuple[str, ...] = (
    "package.json",
    "pyproject.toml",
    "requirements.txt",
    "setup.cfg",
    "Cargo.toml",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "Gemfile",
    "composer.json",
    "Makefile",
    "Dockerfile",
)

_HIDDEN_ALLOWED = frozenset({".github", ".circleci", ".gitlab-ci.yml", ".gitlab"})
_README = re.compile(r"^readme(\.(md|rst|txt))?$", re.IGNORECASE)


class Workspace:
    """Read-only view of the files under a workspace root."""

    def __init__(self, root: Path, *, max_files: int = 5000) -> None:
        self.root = root.resolve()
        self._max_files = max_files
        self._files: Optional[List[str]] = None

    def resolve(self, path: str) -> Path:
        """Return the absolute path for ``path``, refusing anything outside the root."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / normalize_path(path)
        resolved = candidate.resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise PathOutsideWorkspaceError(path)
        return resolved

    def relative(self, path: str) -> str:
        return self.resolve(path).relative_to(self.root).as_posix()

    def exists(self, path: str) -> bool:
        try:
            return self.resolve(path).is_file()
        except PathOutsideWorkspaceError:
            return False

    def read_text(self, path: str) -> str:
        return self.resolve(path).read_text(encoding="utf-8", errors="replace")

    def size(self, path: str) -> int:
        return self.resolve(path).stat().st_size

    def list_files(self) -> List[str]:
        """Every non-excluded file under the root, sorted, capped at ``max_files``."""
        if self._files is None:
            self._files = self._walk()
        return list(self._files)

    def _walk(self) -> List[str]:
        found: List[str] = []
        for current, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(
                name
                for name in dirnames
                if name not in EXCLUDED_DIRS and (not name.startswith(".") or name in _HIDDEN_ALLOWED)
            )
            base = Path(current).relative_to(self.root)
            for name in sorted(filenames):
                if name in EXCLUDED_DIRS:
                    continue
                found.append((base / name).as_posix())
                if len(found) >= self._max_files:
                    LOGGER.debug("Workspace listing capped at %d files", self._max_files)
                    return found
        return found

    def glob(self, patterns: Iterable[str]) -> List[str]:
        """Files matching any pattern; ``*`` also spans directory separators."""
        compiled = list(patterns)
        return [
            path
            for path in self.list_files()
            if any(fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(PurePosixPath(path).name, pattern) for pattern in compiled)
        ]


class FallbackRule:
    """A glob sweep that backfills a facet missing from the selection."""

    def __init__(self, name: str, patterns: Sequence[str], accepts: Callable[[str], bool]) -> None:
        self.name = name
        self.patterns = tuple(patterns)
        self.accepts = accepts

    @property
    def warning(self) -> str:
        return f"librarian_{self.name}_candidates"

    def sweep(self, workspace: Workspace, keywords: Sequence[str], limit: int, exclude: Iterable[str] = ()) -> List[str]:
        """Return up to ``limit`` matches, most request-relevant first."""
        skip = set(exclude)
        matches = [path for path in workspace.glob(self.patterns) if path not in skip and self.accepts(path)]
        wanted = set(keywords)

        def rank(item: Tuple[int, str]) -> Tuple[int, int, int]:
            index, path = item
            overlap = len(wanted.intersection(path_tokens([path])))
            return (-overlap, path.count("/"), index)

        ranked = sorted(enumerate(matches), key=rank)
        return [path for _, path in ranked[:limit]]


def _is_generic_code(path: str) -> bool:
    return is_code_path(path) and not is_test_path(path) and not is_doc_path(path)


FALLBACK_RULES: Dict[str, FallbackRule] = {
    rule.name: rule
    for rule in (
        FallbackRule(
            "ui",
            ("*.html", "*.htm", "*.css", "*.scss", "*.less", "*.jsx", "*.tsx", "*.vue", "*.svelte"),
            lambda p: has_facet(p, Facet.FRONTEND),
        ),
        FallbackRule(
            "testing",
            ("*.test.*", "*.spec.*", "tests/*", "test/*", "*__tests__*", "test_*.py", "*_test.py", "*_test.go"),
            is_test_path,
        ),
        FallbackRule(
            "infra",
            (
                ".github/workflows/*", ".github/actions/*", ".circleci/*", "Dockerfile", "*/Dockerfile",
                "docker-compose*", "compose.y*ml", "Makefile", "*.tf", "k8s/*", "helm/*", "deploy/*",
                "infra/*", ".gitlab-ci.y*ml",
            ),
            lambda p: has_facet(p, Facet.INFRA),
        ),
        FallbackRule(
            "security",
            ("*auth*", "*security*", "*permission*", "*policy*", "*crypto*", "*secret*", "*jwt*", "*oauth*", "*rbac*", "*acl*"),
            lambda p: has_facet(p, Facet.SECURITY) and not is_doc_path(p),
        ),
        FallbackRule(
            "performance",
            ("*cache*", "*perf*", "*benchmark*", "*profil*", "*queue*", "*throttle*", "*rate*limit*", "*batch*"),
            lambda p: has_facet(p, Facet.PERFORMANCE) and not is_doc_path(p),
        ),
        FallbackRule(
            "observability",
            ("*log*", "*metric*", "*monitor*", "*trac*", "*telemetry*", "*otel*", "*sentry*", "*alert*"),
            lambda p: has_facet(p, Facet.OBSERVABILITY) and not is_doc_path(p),
        ),
        FallbackRule(
            "backend",
            ("*server*", "*api*", "*route*", "*handler*", "*controller*", "*service*", "*app.*", "*main.*", "*index.*"),
            lambda p: has_facet(p, Facet.BACKEND),
        ),
        FallbackRule("code", ("src/*", "lib/*", "app/*", "pkg/*", "*"), _is_generic_code),
    )
}


def script_companions(focus: Sequence[str], known: Iterable[str]) -> List[str]:
    """Script files that live beside the markup files in ``focus``."""
    directories = {PurePosixPath(path).parent for path in focus}
    chosen = set(focus)
    companions = [
        path
        for path in known
        if path not in chosen and is_script_path(path) and not is_test_path(path)
        and PurePosixPath(path).parent in directories
    ]
    return unique(companions)


def _readme_summary(text: str, limit: int = 400) -> Optional[str]:
    for block in re.split(r"\n\s*\n", text):
        stripped = block.strip()
        if not stripped or stripped.startswith(("#", "![", "<", "[![", "=", "-")):
            continue
        summary = " ".join(stripped.split())
        return summary[:limit]
    return None


def collect_project_info(workspace: Workspace, *, max_workers: int = 4) -> ProjectInfo:
    """Describe the workspace: readme, docs, manifests and file types."""
    files = workspace.list_files()
    readme_path = next((path for path in files if "/" not in path and _README.match(path)), None)
    readme_summary = None
    if readme_path:
        try:
            readme_summary = _readme_summary(workspace.read_text(readme_path))
        except OSError:
            LOGGER.debug("Failed to read %s", readme_path, exc_info=True)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        present = list(pool.map(lambda name: (workspace.root / name).is_file(), MANIFEST_NAMES))
    manifests = tuple(name for name, exists in zip(MANIFEST_NAMES, present) if exists)

    counts = Counter(PurePosixPath(path).suffix.lower() or "(none)" for path in files)
    return ProjectInfo(
        workspace_root=workspace.root.as_posix(),
        readme_path=readme_path,
        readme_summary=readme_summary,
        docs=tuple(path for path in files if is_doc_path(path))[:10],
        manifests=manifests,
        file_types=tuple(counts.most_common(10)),
    )
