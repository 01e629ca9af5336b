from __future__ import annotations

from librarian.budget import TRUNCATION_MARKER, apply_context_budget, truncate_with_marker
from librarian.bundle import ContextFileEntry, estimate_tokens


def _entry(path: str, size: int, role: str) -> ContextFileEntry:
    return ContextFileEntry(path=path, content="x" * size, role=role)


def test_periphery_is_dropped_before_focus_is_touched() -> None:
    entries = [_entry("src/app.py", 50, "focus"), _entry("src/a.py", 80, "periphery"), _entry("src/b.py", 80, "periphery")]

    result = apply_context_budget(entries, max_total_bytes=100, token_budget=10_000)

    assert result.dropped_paths == ["src/b.py", "src/a.py"]
    assert result.trimmed is True
    assert [entry.path for entry in result.files] == ["src/app.py"]
    assert result.total_bytes == 50
    assert result.files[0].truncated is False


def test_focus_files_are_trimmed_from_the_tail() -> None:
    entries = [_entry("src/a.py", 300, "focus"), _entry("src/b.py", 300, "focus")]

    result = apply_context_budget(entries, max_total_bytes=400, token_budget=10_000)

    assert result.total_bytes <= 400
    assert result.files[0].truncated is False
    assert result.files[1].slice_strategy == "budget_trim"
    assert result.files[1].content.endswith(TRUNCATION_MARKER)
    assert "budget_trim" in result.files[1].warnings
    assert entries[1].truncated is False


def test_token_budget_also_forces_trimming() -> None:
    entries = [_entry("src/a.py", 400, "focus")]

    result = apply_context_budget(entries, max_total_bytes=10_000, token_budget=50)

    assert result.total_tokens <= 50
    assert result.trimmed


def test_budget_terminates_when_nothing_more_can_shrink() -> None:
    entries = [_entry("src/a.py", 10, "focus"), _entry("src/b.py", 10, "focus")]

    result = apply_context_budget(entries, max_total_bytes=1, token_budget=10_000, iteration_factor=4)

    assert result.total_bytes <= 20
    assert all(entry.truncated for entry in result.files[1:])


def test_within_budget_is_untouched() -> None:
    entries = [_entry("src/a.py", 10, "focus")]

    result = apply_context_budget(entries, max_total_bytes=100, token_budget=100)

    assert result.trimmed is False
    assert result.dropped_paths == []


def test_truncate_with_marker_is_utf8_safe() -> None:
    text = "é" * 100
    cut = truncate_with_marker(text, 60)

    assert len(cut.encode("utf-8")) <= 60
    assert cut.endswith(TRUNCATION_MARKER)
    assert truncate_with_marker("short", 60) == "short"


def test_trim_below_marker_size_keeps_a_whole_character() -> None:
    entries = [ContextFileEntry(path="docs/notes.md", content="é" * 300, role="focus")]

    result = apply_context_budget(entries, max_total_bytes=1, token_budget=10_000)

    assert result.files[0].content == "é"
    assert result.files[0].slice_strategy == "budget_trim"
    assert truncate_with_marker("éé", 1) == "é"
    assert truncate_with_marker("abc", 2) == "ab"


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("a" * 9) == 3
