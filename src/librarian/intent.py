"""Derive coarse intent buckets from a free-text request."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Mapping, Pattern, Tuple

__all__ = ["INTENT_BUCKETS", "IntentSignals", "detect_intent"]


INTENT_BUCKETS: Tuple[str, ...] = (
    "ui",
    "content",
    "behavior",
    "data",
    "testing",
    "infra",
    "security",
    "performance",
    "observability",
)

_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "ui": (
        "ui", "ux", "page", "screen", "layout", "header", "hero", "navbar", "footer", "landing",
        "welcome", "title", "button", "style", "styling", "css", "html", "markup", "template",
        "component", "view",
    ),
    "content": ("copy", "text", "label", "wording", "message", "string", "content"),
    "behavior": (
        "logic", "behavior", "crash", "api", "backend", "server", "endpoint",
        "route", "router", "handler", "healthz", "health", "logging", "logger", "uptime", "flow",
        "auth", "estimate", "estimation", "stats", "stat", "completion", "completions", "calculate",
        "computed", "compute", "count", "aggregate", "summary",
    ),
    "data": ("schema", "database", "db", "model", "migration", "table", "field", "column", "sql"),
    "testing": (
        "test", "tests", "testing", "unit", "integration", "e2e", "spec", "specs", "snapshot",
        "snapshots", "golden", "approval", "assertion", "assertions", "jest", "vitest", "mocha",
        "pytest", "rspec", "junit", "xunit", "cypress", "playwright", "fixture", "fixtures", "mock",
        "mocking", "coverage",
    ),
    "infra": (
        "infra", "infrastructure", "ops", "devops", "ci", "cd", "pipeline", "deploy", "deployment",
        "docker", "compose", "k8s", "kubernetes", "helm", "terraform", "ansible", "makefile",
        "workflow", "runner", "github actions", "gitlab", "gitlab ci", "circleci", "artifact",
        "registry",
    ),
    "security": (
        "security", "secure", "auth", "authentication", "authorization", "permission",
        "permissions", "rbac", "acl", "policy", "jwt", "oauth", "sso", "csrf", "xss", "samesite",
        "csp", "encrypt", "encryption", "crypto", "secret", "secrets", "vault", "audit",
        "vulnerability", "sanitize",
    ),
    "performance": (
        "performance", "perf", "slow", "slowdown", "latency", "throughput", "optimize",
        "optimization", "cache", "caching", "cache miss", "memo", "benchmark", "profiling",
        "profile", "hot path", "n 1", "memory", "cpu", "throttle", "rate limit", "batch", "queue",
        "timeout",
    ),
    "observability": (
        "observability", "telemetry", "instrument", "instrumentation", "logging", "log", "logger",
        "log level", "structured logging", "metrics", "monitor", "monitoring", "trace", "tracing",
        "trace id", "span", "otel", "opentelemetry", "sentry", "datadog", "prometheus", "grafana",
        "alert", "alerts",
    ),
}

# Generic verbs that only signal behavior when nothing more specific matched.
_BEHAVIOR_WEAK: Tuple[str, ...] = ("fix", "bug", "error", "broken")
# Infra words that only count once a base infra keyword matched.
_INFRA_CONDITIONAL: Tuple[str, ...] = ("build", "release", "package")
# Observability matches made only of these are ignored.
_LOGGING_ONLY = frozenset({"logging", "log", "logger", "log level", "structured logging"})

_NON_ALNUM = re.compile(r"[^a-z0-9\s]+")
_SPACES = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class IntentSignals:
    """Ordered intent buckets plus the keywords that triggered each one."""

    intents: Tuple[str, ...]
    matches: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def has(self, bucket: str) -> bool:
        return bucket in self.intents

    @property
    def ui_only(self) -> bool:
        return self.intents == ("ui",)

    def to_dict(self) -> Dict[str, object]:
        return {"intents": list(self.intents), "matches": {k: list(v) for k, v in self.matches.items()}}


def _normalize(request: str) -> str:
    lowered = _NON_ALNUM.sub(" ", request.lower())
    return f" {_SPACES.sub(' ', lowered).strip()} "


@lru_cache(maxsize=None)
def _word_start(keyword: str) -> Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}")


def _matched(normalized: str, keywords: Iterable[str]) -> List[str]:
    """Keywords that begin a word of ``normalized``, so plurals and inflections still match."""
    return [keyword for keyword in keywords if _word_start(keyword).search(normalized)]


def detect_intent(request: str) -> IntentSignals:
    """Return the intent buckets for ``request``; never empty."""
    normalized = _normalize(request)
    matches: Dict[str, Tuple[str, ...]] = {}
    for bucket in INTENT_BUCKETS:
        found = _matched(normalized, _KEYWORDS[bucket])
        if bucket == "infra" and found:
            found.extend(_matched(normalized, _INFRA_CONDITIONAL))
        if bucket == "observability" and all(item in _LOGGING_ONLY for item in found):
            found = []
        if found:
            matches[bucket] = tuple(found)
    if not matches:
        weak = _matched(normalized, _BEHAVIOR_WEAK)
        return IntentSignals(intents=("behavior",), matches={"behavior": tuple(weak)} if weak else {})
    return IntentSignals(intents=tuple(b for b in INTENT_BUCKETS if b in matches), matches=matches)
