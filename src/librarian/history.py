"""Read-only access to golden examples and past run logs."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List

from pydantic import ValidationError

from .bundle import EpisodicEntry, GoldenEntry
from .docdex.gateway import DocdexGateway
from .records import GoldenExampleRecord

__all__ = ["GoldenSetStore", "RunHistoryIndexer"]

LOGGER = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9_./-]{3,}")
_SECTION = re.compile(r"^(?:#+\s*)?(intent|plan|diff|patch)\s*:?\s*$", re.IGNORECASE | re.MULTILINE)


def _tokens(text: str) -> set[str]:
    return set(_TOKEN.findall(text.lower()))


class GoldenSetStore:
    """JSONL file of curated request/patch pairs."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> List[GoldenExampleRecord]:
        """Parse every line; raises ``ValueError`` on malformed content."""
        if not self._path.exists():
            return []
        records = []
        for number, line in enumerate(self._path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                records.append(GoldenExampleRecord.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as error:
                raise ValueError(f"{self._path}:{number}: {error}") from error
        return records

    def find_similar(self, request: str, *, limit: int = 3) -> List[GoldenEntry]:
        wanted = _tokens(request)
        scored = []
        for index, record in enumerate(self.load()):
            tokens = _tokens(record.intent)
            if not wanted or not tokens:
                continue
            score = len(wanted & tokens) / len(wanted | tokens)
            if score > 0:
                scored.append((score, index, record))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            GoldenEntry(intent=record.intent, patch_summary=self.summarize(record), score=round(score, 3))
            for score, _, record in scored[:limit]
        ]

    @staticmethod
    def summarize(record: GoldenExampleRecord) -> str:
        parts = []
        if record.plan:
            parts.append(f"plan={record.plan[:160]}")
        if record.files:
            parts.append(f"files={', '.join(record.files[:6])}")
        if record.review:
            parts.append(f"review={record.review[:120]}")
        if record.qa:
            parts.append(f"qa={record.qa[:120]}")
        if record.patch:
            parts.append(f"patch={record.patch[:240]}")
        return " | ".join(parts)


class RunHistoryIndexer:
    """Finds past run logs indexed by docdex under ``logs/``."""

    def __init__(self, gateway: DocdexGateway, *, log_prefix: str = "logs/librarian", window: int = 400) -> None:
        self._gateway = gateway
        self._log_prefix = log_prefix
        self._window = window

    def find_similar(self, request: str, *, limit: int = 3) -> List[EpisodicEntry]:
        outcome = self._gateway.search(f"path:{self._log_prefix} {request}", limit=limit * 3)
        if not outcome.ok:
            return []
        entries: List[EpisodicEntry] = []
        for hit in outcome.value or []:
            if not hit.path or not (hit.path.startswith("logs/") or "/logs/" in hit.path) or not hit.doc_id:
                continue
            snippet = self._gateway.snippet(hit.doc_id, window=self._window)
            if not snippet.ok or not snippet.value:
                continue
            entries.append(self._parse(hit.path, snippet.value))
            if len(entries) >= limit:
                break
        return entries

    @staticmethod
    def _parse(path: str, text: str) -> EpisodicEntry:
        sections: dict[str, str] = {}
        matches = list(_SECTION.finditer(text))
        for index, match in enumerate(matches):
            end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
            name = match.group(1).lower()
            name = "diff" if name == "patch" else name
            sections.setdefault(name, text[match.end() : end].strip()[:600])
        if not sections:
            return EpisodicEntry(path=path, intent=text.strip()[:200])
        return EpisodicEntry(
            path=path,
            intent=sections.get("intent", ""),
            plan=sections.get("plan", ""),
            diff=sections.get("diff", ""),
        )

