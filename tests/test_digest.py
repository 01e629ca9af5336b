from __future__ import annotations

from librarian.analysis import select_analysis_paths
from librarian.bundle import ContextSelection
from librarian.digest import build_request_digest, is_markup_only
from librarian.events import EventChannel, StatusEvent, ToolCallEvent
from librarian.intent import detect_intent
from librarian.queries import extract_query_signals


def _digest(request: str, selection: ContextSelection, hits: int, companions=()):
    return build_request_digest(
        request,
        intent=detect_intent(request),
        signals=extract_query_signals(request),
        selection=selection,
        hit_count=hits,
        low_hit_threshold=2,
        companions=companions,
    )


def test_digest_for_confident_selection() -> None:
    digest = _digest("fix the login handler", ContextSelection(focus=("src/login.py",)), 3)

    assert digest.confidence == "high"
    assert digest.summary == "behavior request about login handler; focus: src/login.py"
    assert digest.refined_query == "login handler"
    assert digest.signals == ("intent:behavior", "hits:3", "focus:1")


def test_digest_without_focus_or_hits_is_low() -> None:
    digest = _digest("fix the login handler", ContextSelection(low_confidence=True), 0)

    assert digest.confidence == "low"
    assert "focus: none" in digest.summary
    assert digest.signals[-1] == "low_confidence"


def test_markup_only_focus_downgrades_confidence() -> None:
    selection = ContextSelection(focus=("web/index.html",))

    digest = _digest("restyle the hero button", selection, 4, companions=["web/app.js"])

    assert is_markup_only(selection.focus)
    assert digest.confidence == "medium"
    assert digest.candidate_files == ("web/index.html", "web/app.js")


def test_analysis_paths_skip_docs_for_code_tasks() -> None:
    paths = select_analysis_paths(
        ["README.md", "docs/api.md", "src/api.py", "src/models.py"],
        focus=["src/api.py"],
        preferred=[],
        intent=detect_intent("fix the api handler"),
        doc_task=False,
        max_files=8,
    )

    assert paths == ["src/api.py", "src/models.py"]


def test_analysis_paths_keep_docs_when_nothing_else() -> None:
    paths = select_analysis_paths(
        ["README.md"], focus=[], preferred=[], intent=detect_intent("explain setup"), doc_task=False, max_files=8
    )

    assert paths == ["README.md"]


def test_event_channel_drains_in_order() -> None:
    channel = EventChannel()
    channel.status("thinking", "start")
    channel.emit(ToolCallEvent(name="docdex.search", args={"query": "x"}))

    events = list(channel)

    assert events[0] == StatusEvent(phase="thinking", message="start")
    assert events[1].type == "tool_call"
    assert channel.drain() == []
