from __future__ import annotations

from librarian.warning_rules import ReconcileState, reconcile_warnings


def test_no_hits_is_dropped_once_files_loaded() -> None:
    warnings = ["docdex_no_hits", "docdex_tree_failed"]

    result = reconcile_warnings(warnings, ReconcileState(loaded_files=2))

    assert result == ["docdex_tree_failed"]


def test_index_empty_needs_both_calls_to_succeed_before_dropping() -> None:
    warnings = ["docdex_index_empty"]

    assert reconcile_warnings(warnings, ReconcileState(stats_ok=True, num_docs=4)) == warnings
    assert reconcile_warnings(warnings, ReconcileState(stats_ok=True, files_ok=True, num_docs=4)) == []
    assert reconcile_warnings(warnings, ReconcileState(snippets=1)) == []


def test_search_failed_and_low_confidence_rules() -> None:
    state = ReconcileState(search_succeeded=True, hit_count=3, low_confidence=False)

    result = reconcile_warnings(["docdex_search_failed", "docdex_low_confidence", "redacted"], state)

    assert result == ["redacted"]


def test_ui_no_source_hits_dropped_when_focus_has_frontend() -> None:
    state = ReconcileState(focus=("web/index.html",))
    assert reconcile_warnings(["docdex_ui_no_source_hits"], state) == []


def test_reconcile_is_idempotent_and_deduplicates() -> None:
    warnings = ["docdex_index_stale", "docdex_no_hits", "docdex_no_hits", "file_load_failed:a.py"]
    state = ReconcileState()

    once = reconcile_warnings(warnings, state)
    twice = reconcile_warnings(once, state)

    assert once == ["docdex_index_stale", "docdex_no_hits", "file_load_failed:a.py"]
    assert twice == once
