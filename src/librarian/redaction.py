"""Secret redaction and ignore-file handling for loaded content."""

from __future__ import annotations

import fnmatch
import logging
import re
from pathlib import Path
from typing import List, Pattern, Sequence, Tuple

__all__ = ["DEFAULT_SECRET_PATTERNS", "REDACTED", "ContextRedactor"]

LOGGER = logging.getLogger(__name__)

REDACTED = "<redacted>"

DEFAULT_SECRET_PATTERNS: Tuple[str, ...] = (
    r"AKIA[0-9A-Z]{16}",
    r"gh[pousr]_[A-Za-z0-9]{36,}",
    r"sk-[A-Za-z0-9_-]{20,}",
    r"xox[abprs]-[A-Za-z0-9-]{10,}",
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]+?-----END [A-Z ]*PRIVATE KEY-----",
    r"(?i)(?:api[_-]?key|secret|token|password|passwd)[\"']?\s*[:=]\s*[\"']?(?P<secret>[^\s\"',;]{8,})",
)


class ContextRedactor:
    """Masks secrets and hides files listed in ignore files."""

    def __init__(
        self,
        workspace_root: Path,
        *,
        patterns: Sequence[str] = (),
        ignore_files_from: Sequence[str] = (),
        mask_secrets: bool = True,
    ) -> None:
        self._patterns: List[Pattern[str]] = []
        for pattern in (patterns or DEFAULT_SECRET_PATTERNS) if mask_secrets else ():
            try:
                self._patterns.append(re.compile(pattern))
            except re.error as error:
                LOGGER.warning("Ignoring invalid redact pattern %r: %s", pattern, error)
        self._ignore: List[Pattern[str]] = []
        for name in ignore_files_from:
            self._ignore.extend(self._load_ignore_file(workspace_root / name))

    @staticmethod
    def _load_ignore_file(path: Path) -> List[Pattern[str]]:
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError:
            LOGGER.debug("Ignore file %s not readable", path, exc_info=True)
            return []
        compiled = []
        for line in lines:
            glob = line.strip()
            if not glob or glob.startswith("#"):
                continue
            glob = glob.lstrip("/")
            if glob.endswith("/"):
                glob = f"{glob}*"
            compiled.append(re.compile(fnmatch.translate(glob)))
            if "/" not in glob:
                compiled.append(re.compile(fnmatch.translate(f"*/{glob}")))
        return compiled

    def is_ignored(self, path: str) -> bool:
        return any(pattern.match(path) for pattern in self._ignore)

    def redact(self, text: str) -> Tuple[str, int]:
        """Return ``text`` with every pattern match replaced, plus the match count."""
        total = 0
        for pattern in self._patterns:
            text, count = pattern.subn(_replace, text)
            total += count
        return text, total


def _replace(match: "re.Match[str]") -> str:
    """Mask the ``secret`` group when the pattern names one, else the whole match."""
    if "secret" not in match.re.groupindex:
        return REDACTED
    start = match.start("secret") - match.start()
    end = match.end("secret") - match.start()
    whole = match.group(0)
    return f"{whole[:start]}{REDACTED}{whole[end:]}"
