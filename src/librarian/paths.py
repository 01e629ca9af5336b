"""Classify repository-relative paths into facets used for ranking.

The classifier is table driven: every facet is a list of compiled patterns, so
adding a facet means adding a row to ``FACET_PATTERNS`` rather than touching
the selectors that consume it.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Dict, FrozenSet, Iterable, List, Pattern, Tuple

__all__ = [
    "EXCLUDED_DIRS",
    "FACET_PATTERNS",
    "Facet",
    "classify",
    "has_facet",
    "is_code_path",
    "is_doc_path",
    "is_excluded_path",
    "is_frontend_path",
    "is_markup_path",
    "is_placeholder_path",
    "is_script_path",
    "is_support_doc_path",
    "is_test_path",
    "normalize_path",
    "path_tokens",
    "supports_impact_graph",
    "supports_structural_analysis",
]


class Facet:
    """Facet names produced by :func:`classify`."""

    FRONTEND = "frontend"
    TEST = "test"
    INFRA = "infra"
    SECURITY = "security"
    PERFORMANCE = "performance"
    OBSERVABILITY = "observability"
    DOC = "doc"
    CONFIG = "config"
    BACKEND = "backend"


FRONTEND_EXTENSIONS: FrozenSet[str] = frozenset(
    {".html", ".htm", ".css", ".scss", ".sass", ".less", ".styl", ".jsx", ".tsx", ".vue", ".svelte"}
)
MARKUP_EXTENSIONS: FrozenSet[str] = frozenset(
    {".html", ".htm", ".css", ".scss", ".sass", ".less", ".styl"}
)
SCRIPT_EXTENSIONS: FrozenSet[str] = frozenset({".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"})
CODE_EXTENSIONS: FrozenSet[str] = frozenset(
    {
        ".py", ".rs", ".go", ".java", ".cs", ".kt", ".kts", ".swift", ".rb", ".php",
        ".lua", ".dart", ".c", ".h", ".cc", ".cpp", ".cxx", ".hh", ".hpp", ".hxx",
        ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".vue", ".svelte", ".scala",
    }
)
DOC_EXTENSIONS: FrozenSet[str] = frozenset({".md", ".mdx", ".rst", ".txt", ".adoc"})
CONFIG_EXTENSIONS: FrozenSet[str] = frozenset({".json", ".yml", ".yaml", ".toml", ".ini", ".cfg", ".env"})
IMPACT_GRAPH_EXTENSIONS: FrozenSet[str] = frozenset(
    {
        ".rs", ".py", ".ts", ".tsx", ".js", ".jsx", ".go", ".java", ".cs", ".c", ".h",
        ".cc", ".cpp", ".cxx", ".hh", ".hpp", ".hxx", ".php", ".kt", ".kts", ".swift",
        ".rb", ".lua", ".dart",
    }
)

EXCLUDED_DIRS: FrozenSet[str] = frozenset(
    {
        ".git", ".hg", ".svn", ".bzr", "node_modules", "bower_components", "jspm_packages",
        "vendor", "third_party", "dist", "build", "out", "target", "bin", "obj", "coverage",
        ".nyc_output", ".next", ".nuxt", ".svelte-kit", ".angular", ".expo", ".turbo",
        ".parcel-cache", ".cache", ".vite", ".webpack", ".gradle", ".idea", ".vscode",
        ".vs", "__pycache__", ".pytest_cache", ".mypy_cache", ".ruff_cache", ".tox",
        ".nox", ".venv", "venv", "env", ".eggs", "site-packages", ".terraform",
        ".serverless", ".aws-sam", "Pods", "DerivedData", "Carthage", ".dart_tool",
        ".pub-cache", ".stack-work", "_build", "deps", "elm-stuff", ".bundle",
        "tmp", "temp", "logs", ".docdex", ".docdex_state", ".librarian", ".DS_Store",
        "storybook-static", "public/build", ".husky", ".yarn", ".pnpm-store",
    }
)

_FRONTEND_DIR = re.compile(r"(^|/)(public|frontend|client|web|ui)(/|$)")

# Each facet matches when any pattern in its row matches the lowercased path.
FACET_PATTERNS: Dict[str, Tuple[Pattern[str], ...]] = {
    Facet.TEST: (
        re.compile(r"(^|/)(tests?|__tests__|spec|specs|e2e)(/|$)"),
        re.compile(r"\.(test|spec)\.[a-z0-9]+$"),
        re.compile(r"(^|/)test_[^/]+\.py$"),
        re.compile(r"_test\.(py|go)$"),
    ),
    Facet.INFRA: (
        re.compile(
            r"(^|/)(\.github/workflows|\.github/actions|\.circleci|buildkite|jenkins|infra|deploy|ops"
            r"|k8s|kubernetes|helm|terraform|ansible)(/|$)"
        ),
        re.compile(r"(dockerfile|docker-compose[^/]*|compose\.ya?ml|makefile|\.gitlab-ci\.ya?ml|jenkinsfile)$"),
    ),
    Facet.SECURITY: (
        re.compile(
            r"(^|/)(auth|security|permissions?|rbac|acl|policy|oauth|jwt|sso|crypto|secrets?)(/|$|[._-])"
        ),
    ),
    Facet.PERFORMANCE: (
        re.compile(r"(perf|performance|benchmark|profil(e|ing)|cache|rate[-_]?limit|throttle|batch|queue)"),
    ),
    Facet.OBSERVABILITY: (
        re.compile(
            r"(^|/|[._-])(log|logs|logger|logging|metrics?|monitor|monitoring|trace|tracing|otel|sentry"
            r"|datadog|prometheus|grafana|alert|alerts|telemetry)(/|$|[._-])"
        ),
    ),
}

_PLACEHOLDER = re.compile(r"(^|/)(path/to|your[-_]?file|example[-_]?path)(/|$)|^<.*>$|\.\.\.")
_SUPPORT_DOC_NAMES = frozenset(
    {"license", "license.md", "license.txt", "changelog", "changelog.md", "notice", "authors",
     "contributing.md", "code_of_conduct.md", "security.md"}
)


def normalize_path(path: str) -> str:
    """Return a forward-slash relative path with leading ``./`` removed."""
    value = path.strip().replace("\\", "/")
    while value.startswith("./"):
        value = value[2:]
    return value


def _suffix(path: str) -> str:
    return PurePosixPath(path.lower()).suffix


def is_doc_path(path: str) -> bool:
    lowered = normalize_path(path).lower()
    return lowered.startswith("docs/") or "/docs/" in lowered or _suffix(lowered) in DOC_EXTENSIONS


def is_support_doc_path(path: str) -> bool:
    """Return True for licence/changelog style files that rarely answer a request."""
    name = PurePosixPath(normalize_path(path).lower()).name
    return name in _SUPPORT_DOC_NAMES


def is_test_path(path: str) -> bool:
    return has_facet(path, Facet.TEST)


def is_markup_path(path: str) -> bool:
    return _suffix(path) in MARKUP_EXTENSIONS


def is_script_path(path: str) -> bool:
    return _suffix(path) in SCRIPT_EXTENSIONS


def is_frontend_path(path: str) -> bool:
    lowered = normalize_path(path).lower()
    suffix = _suffix(lowered)
    if suffix in FRONTEND_EXTENSIONS:
        return True
    return suffix in SCRIPT_EXTENSIONS and bool(_FRONTEND_DIR.search(lowered))


def is_config_path(path: str) -> bool:
    return _suffix(path) in CONFIG_EXTENSIONS


def is_code_path(path: str) -> bool:
    return _suffix(path) in CODE_EXTENSIONS


def is_backend_path(path: str) -> bool:
    """Source files that are neither frontend nor tests."""
    return is_code_path(path) and not is_frontend_path(path) and not is_test_path(path)


def is_excluded_path(path: str) -> bool:
    """Return True when any directory component of ``path`` is in ``EXCLUDED_DIRS``."""
    normalized = normalize_path(path)
    parts = normalized.split("/")[:-1]
    if any(part in EXCLUDED_DIRS for part in parts):
        return True
    return any(f"{a}/{b}" in EXCLUDED_DIRS for a, b in zip(parts, parts[1:]))


def is_placeholder_path(path: str) -> bool:
    return bool(_PLACEHOLDER.search(normalize_path(path).lower()))


def supports_structural_analysis(path: str) -> bool:
    """Symbols and AST calls are only meaningful for code files."""
    return is_code_path(path) and _suffix(path) not in MARKUP_EXTENSIONS


def supports_impact_graph(path: str) -> bool:
    return _suffix(path) in IMPACT_GRAPH_EXTENSIONS


def has_facet(path: str, facet: str) -> bool:
    """Return True when ``path`` carries ``facet``."""
    lowered = normalize_path(path).lower()
    if facet == Facet.FRONTEND:
        return is_frontend_path(lowered)
    if facet == Facet.DOC:
        return is_doc_path(lowered)
    if facet == Facet.CONFIG:
        return is_config_path(lowered)
    if facet == Facet.BACKEND:
        return is_backend_path(lowered)
    patterns = FACET_PATTERNS.get(facet, ())
    return any(pattern.search(lowered) for pattern in patterns)


def classify(path: str) -> FrozenSet[str]:
    """Return every facet that applies to ``path``."""
    names = [Facet.FRONTEND, Facet.DOC, Facet.CONFIG, Facet.BACKEND, *FACET_PATTERNS.keys()]
    return frozenset(name for name in names if has_facet(path, name))


def path_tokens(paths: Iterable[str]) -> List[str]:
    """Split paths into lowercase word tokens, preserving first-seen order."""
    tokens: List[str] = []
    seen: set[str] = set()
    for path in paths:
        for token in re.split(r"[/._\-\s]+", normalize_path(path).lower()):
            if len(token) < 2 or token in seen:
                continue
            seen.add(token)
            tokens.append(token)
    return tokens
