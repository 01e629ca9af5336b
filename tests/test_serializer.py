from __future__ import annotations

import json

from librarian.bundle import (
    ContextBundle,
    ContextFileEntry,
    ContextSelection,
    IndexInfo,
    QuerySignals,
    RedactionInfo,
    RequestDigest,
    SearchHit,
    SearchResultEntry,
    SnippetEntry,
)
from librarian.intent import detect_intent
from librarian.serializer import sanitize_bundle, serialize_bundle


def _bundle(**overrides) -> ContextBundle:
    request = "fix the checkout handler"
    values = dict(
        request=request,
        intent=detect_intent(request),
        query_signals=QuerySignals(keywords=("checkout", "handler")),
        queries=(request,),
        search_results=(SearchResultEntry(query=request, hits=(SearchHit(doc_id="1", path="src/checkout.py"),)),),
        snippets=(SnippetEntry(doc_id="1", path="src/checkout.py", content="def checkout(): ..."),),
        symbols=(),
        ast=(),
        impact=(),
        impact_diagnostics=(),
        repo_map="src/\n  checkout.py",
        repo_map_raw=None,
        dag_summary=None,
        selection=ContextSelection(focus=("src/checkout.py",), periphery=("src/cart.py",)),
        files=(
            ContextFileEntry(path="src/checkout.py", content="def checkout():\n    pass\n", role="focus"),
            ContextFileEntry(path="src/cart.py", content="class Cart", role="periphery", truncated=True),
        ),
        redaction=RedactionInfo(),
        memory=("Checkout totals are computed server side",),
        episodic_memory=(),
        golden_examples=(),
        preferences=(),
        profile=(),
        index=IndexInfo(num_docs=40, last_updated_epoch_ms=5, files_sampled=2),
        project_info=None,
        warnings=("docdex_low_confidence", "write_policy_read_only:src/checkout.py"),
        missing=(),
        request_digest=RequestDigest(summary="behavior request about checkout", refined_query="checkout handler", confidence="high"),
        read_only_paths=("src/",),
        allow_write_paths=("tests/",),
    )
    values.update(overrides)
    return ContextBundle(**values)


def test_text_serialization_has_sections_in_order() -> None:
    text = serialize_bundle(_bundle())

    assert text.startswith("LIBRARIAN CONTEXT\n")
    assert text.endswith("END OF CONTEXT")
    order = ["## RUN SUMMARY", "## USER REQUEST", "## QUERIES", "## SELECTION", "## REPO MAP", "=== [FOCUS FILE]", "## SNIPPETS", "## REPO MEMORY", "## WARNINGS"]
    positions = [text.index(marker) for marker in order]
    assert positions == sorted(positions)
    assert "=== [FOCUS FILE] src/checkout.py (FULL) ===" in text
    assert "=== [DEPENDENCY] src/cart.py (TRUNCATED) ===" in text
    assert "- fix the checkout handler: src/checkout.py" in text


def test_text_serialization_omits_write_policy() -> None:
    text = serialize_bundle(_bundle())

    assert "- docdex_low_confidence" in text
    assert "write_policy_" not in text
    assert "tests/" not in text


def test_empty_bundle_reports_missing_content() -> None:
    text = serialize_bundle(_bundle(files=(), missing=("no_context_files_loaded",), repo_map=None))

    assert "NO FILE CONTENT AVAILABLE" in text
    assert "## REPO MAP" not in text
    assert "- no_context_files_loaded" in text


def test_json_serialization_envelope() -> None:
    payload = json.loads(serialize_bundle(_bundle(), "json"))

    assert payload["mode"] == "json"
    assert payload["token_estimate"] > 0
    assert payload["stats"] == {"focus_files": 1, "periphery_files": 1, "total_bytes": 35}
    content = payload["content"]
    assert content["selection"]["all"] == ["src/checkout.py", "src/cart.py"]
    assert content["read_only_paths"] == []
    assert content["warnings"] == ["docdex_low_confidence"]
    assert "serialized" not in content


def test_sanitize_leaves_original_untouched() -> None:
    bundle = _bundle(serialized="cached")

    clean = sanitize_bundle(bundle)

    assert clean.read_only_paths == () and clean.allow_write_paths == ()
    assert clean.serialized is None
    assert bundle.read_only_paths == ("src/",)
