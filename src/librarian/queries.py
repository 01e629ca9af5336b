"""Turn a request into search queries, optionally widened by a language model."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable, List, Optional, Sequence

from .bundle import QuerySignals
from .intent import IntentSignals
from .models.llm_client import LLMClient, LLMRequest
from .paths import path_tokens

__all__ = [
    "QueryExpander",
    "QueryExpansion",
    "STOPWORDS",
    "adaptive_queries",
    "build_queries",
    "execution_queries",
    "extract_query_signals",
    "file_hint_queries",
    "ui_source_queries",
    "unique",
]

LOGGER = logging.getLogger(__name__)

STOPWORDS = frozenset(
    {
        "the", "and", "or", "a", "an", "to", "for", "of", "in", "on", "with", "by", "from", "is",
        "are", "be", "this", "that", "these", "those", "it", "its",
        "add", "adds", "added", "adding", "change", "changes", "changed", "changing",
        "update", "updates", "updated", "updating", "modify", "modifies", "modified", "modifying",
        "make", "makes", "made", "making", "create", "creates", "created", "creating",
        "fix", "fixes", "fixed", "fixing", "develop", "develops", "developed", "developing",
        "engineer", "engineers", "engineered", "engineering", "implement", "implements",
        "implemented", "implementing", "build", "builds", "built", "building",
        "only", "just", "please", "visible", "show", "shows", "showing", "display", "displayed",
        "touch", "edit", "edits", "editing", "ensure", "set", "sets", "setting", "new",
    }
)

FILE_EXTENSIONS = (
    ".ts", ".tsx", ".js", ".jsx", ".json", ".md", ".yml", ".yaml", ".rs", ".py", ".go",
    ".java", ".cs", ".html", ".css",
)

_QUOTED = re.compile(r"`([^`]+)`|\"([^\"]+)\"|'([^']+)'")
_KEYWORD_STRIP = re.compile(r"[^a-z0-9/_-]+")
_TRAILING = "(),.;:"

# UI source files worth probing when search only surfaces documentation.
_UI_SOURCE_HINTS = ("index.html", "styles.css", "app.js", "main.js", "component")

EXPANSION_SYSTEM_PROMPT = (
    "You generate concise search queries for code and docs lookup. Return JSON only. "
    'Allowed formats: 1) {"queries":["q1","q2"]} 2) ["q1","q2"] '
    "Max 3 queries, short phrases, no commentary."
)


def unique(values: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates, preserving first-seen order."""
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        cleaned = value.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        result.append(cleaned)
    return result


def _keywords(request: str) -> List[str]:
    words = []
    for raw in request.lower().split():
        token = _KEYWORD_STRIP.sub("", raw).strip("/-_")
        if len(token) >= 3 and token not in STOPWORDS:
            words.append(token)
    return unique(words)


def _file_tokens(request: str) -> List[str]:
    tokens = []
    for raw in request.split():
        token = raw.strip().rstrip(_TRAILING).strip("`'\"")
        if any(ext in token.lower() for ext in FILE_EXTENSIONS):
            tokens.append(token)
    return unique(tokens)


def _keyword_phrases(request: str) -> List[str]:
    """Adjacent keyword pairs, which often name the concept the request is about."""
    phrases = []
    previous: Optional[str] = None
    for raw in request.lower().split():
        token = _KEYWORD_STRIP.sub("", raw).strip("/-_")
        if len(token) >= 3 and token not in STOPWORDS:
            if previous:
                phrases.append(f"{previous} {token}")
            previous = token
        else:
            previous = None
    return unique(phrases)


def extract_query_signals(request: str) -> QuerySignals:
    phrases = unique(next(group for group in match.groups() if group) for match in _QUOTED.finditer(request))
    return QuerySignals(
        phrases=tuple(phrases),
        file_tokens=tuple(_file_tokens(request)),
        keywords=tuple(_keywords(request)),
        keyword_phrases=tuple(_keyword_phrases(request)),
    )


def file_hint_queries(paths: Iterable[str]) -> List[str]:
    """Path, basename and stem of each preferred or companion file."""
    hints = []
    for path in paths:
        pure = PurePosixPath(path)
        hints.extend([path, pure.name, pure.stem])
    return unique(hint for hint in hints if len(hint) >= 3)


def build_queries(
    request: str,
    *,
    signals: QuerySignals,
    max_queries: int,
    additional: Sequence[str] = (),
    hint_files: Sequence[str] = (),
) -> List[str]:
    """Return the ordered, capped query list for ``request``."""
    anchored = [*signals.phrases, *signals.file_tokens]
    if not anchored:
        keyterms = [word for word in signals.keywords if len(word) >= 4]
        anchored = [" ".join(keyterms[:4]), " ".join(keyterms[:2]), *keyterms, *signals.keywords]
    candidates = [request, *additional, *anchored, *file_hint_queries(hint_files)]
    return unique(candidates)[:max_queries]


def execution_queries(queries: Sequence[str], signals: QuerySignals, max_queries: int) -> List[str]:
    """Widen ``queries`` with keyword phrases and keywords, capped at ``max_queries * 3``."""
    head = unique(queries)[:max_queries]
    return unique([*head, *signals.keyword_phrases, *signals.keywords])[: max_queries * 3]


def adaptive_queries(
    signals: QuerySignals,
    intent: IntentSignals,
    preferred_files: Sequence[str],
    max_queries: int,
) -> List[str]:
    """Queries rebuilt from request tokens, preferred path tokens and intent hints."""
    path_words = [token for token in path_tokens(preferred_files) if len(token) >= 3]
    hints = [keyword for bucket in intent.intents for keyword in intent.matches.get(bucket, ())]
    joined = " ".join(signals.keywords[:3])
    return unique([joined, *path_words, *signals.keywords, *hints])[:max_queries]


def ui_source_queries(signals: QuerySignals, max_queries: int) -> List[str]:
    """Queries that steer search toward markup, style and script sources."""
    biased = [f"{keyword} {suffix}" for keyword in signals.keywords[:3] for suffix in ("html", "css", "component")]
    return unique([*biased, *_UI_SOURCE_HINTS])[: max_queries * 2]


@dataclass(slots=True)
class QueryExpansion:
    """Structured reply expected from the expansion model."""

    queries: List[str] = field(default_factory=list)


class QueryExpander:
    """Ask a language model for alternative phrasings of the request."""

    def __init__(self, client: LLMClient, *, max_attempts: int = 1) -> None:
        self._client = client
        self._max_attempts = max_attempts

    def expand(self, request: str, base_queries: Sequence[str], max_queries: int) -> List[str]:
        """Return base queries followed by model suggestions, capped at ``max_queries``.

        Raises ``LLMClientError`` when the model cannot produce usable output.
        """
        prompt = "\n".join(
            [
                f"Request: {request}",
                f"Existing queries: {', '.join(base_queries) or '(none)'}",
                "Suggest better search queries.",
            ]
        )
        reply = self._client.invoke(
            LLMRequest(
                prompt=prompt,
                system_prompt=EXPANSION_SYSTEM_PROMPT,
                response_model=QueryExpansion,
                max_attempts=self._max_attempts,
            )
        )
        expanded = [query for query in reply.queries if isinstance(query, str)]
        LOGGER.debug("Query expansion suggested %d query(ies)", len(expanded))
        return unique([*base_queries, *expanded])[:max_queries]
