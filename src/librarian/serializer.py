"""Render a context bundle as prompt-ready text or as JSON."""

from __future__ import annotations

import json
from dataclasses import asdict, replace
from typing import Any, Dict, Iterable, List, Sequence

from .bundle import ContextBundle, estimate_tokens
from .config import SerializationMode

__all__ = ["bundle_to_dict", "sanitize_bundle", "serialize_bundle", "serialize_bundle_text"]

SNIPPET_LIMIT = (6, 1600)
SYMBOL_LIMIT = (6, 1800)
AST_LIMIT = (4, 40, 2200)
MEMORY_LIMIT = (6, 320)
PROFILE_LIMIT = (6, 240)


def sanitize_bundle(bundle: ContextBundle) -> ContextBundle:
    """Strip fields meant for the orchestrator only."""
    return replace(
        bundle,
        read_only_paths=(),
        allow_write_paths=(),
        warnings=tuple(warning for warning in bundle.warnings if not warning.startswith("write_policy_")),
        serialized=None,
    )


def bundle_to_dict(bundle: ContextBundle) -> Dict[str, Any]:
    payload = asdict(bundle)
    payload.pop("serialized", None)
    payload["selection"] = bundle.selection.to_dict()
    payload["intent"] = bundle.intent.to_dict()
    return payload


def _clip(text: str, limit: int) -> str:
    text = text.strip()
    return text if len(text) <= limit else f"{text[:limit]}..."


def _section(lines: List[str], title: str, body: Iterable[str]) -> None:
    items = [item for item in body if item]
    if not items:
        return
    lines.append(f"## {title}")
    lines.extend(items)
    lines.append("")


def _bullets(values: Sequence[str]) -> List[str]:
    return [f"- {value}" for value in values]


def serialize_bundle_text(bundle: ContextBundle) -> str:
    """Flatten ``bundle`` into the text block handed to the agent."""
    bundle = sanitize_bundle(bundle)
    selection = bundle.selection
    lines: List[str] = ["LIBRARIAN CONTEXT", ""]

    _section(
        lines,
        "RUN SUMMARY",
        [
            f"- focus files: {len(selection.focus)}, dependencies: {len(selection.periphery)}",
            f"- files loaded: {len(bundle.files)}; warnings: {len(bundle.warnings)}; missing: {len(bundle.missing)}",
            f"- confidence: {bundle.request_digest.confidence}{' (low-confidence selection)' if selection.low_confidence else ''}",
        ],
    )
    _section(lines, "USER REQUEST", [bundle.request.strip()])
    _section(lines, "INTENT", [", ".join(bundle.intent.intents)])
    info = bundle.project_info
    if info is not None:
        _section(
            lines,
            "PROJECT INFO",
            [
                f"- root: {info.workspace_root}",
                f"- readme: {info.readme_path}" if info.readme_path else "",
                f"- summary: {info.readme_summary}" if info.readme_summary else "",
                f"- manifests: {', '.join(info.manifests)}" if info.manifests else "",
                f"- docs: {', '.join(info.docs)}" if info.docs else "",
                "- file types: " + ", ".join(f"{ext}={count}" for ext, count in info.file_types) if info.file_types else "",
            ],
        )
    _section(lines, "QUERIES", _bullets(bundle.queries))
    signals = bundle.query_signals
    _section(
        lines,
        "QUERY SIGNALS",
        [
            f"- phrases: {', '.join(signals.phrases)}" if signals.phrases else "",
            f"- files: {', '.join(signals.file_tokens)}" if signals.file_tokens else "",
            f"- keywords: {', '.join(signals.keywords)}" if signals.keywords else "",
            f"- keyword phrases: {', '.join(signals.keyword_phrases)}" if signals.keyword_phrases else "",
        ],
    )
    digest = bundle.request_digest
    _section(
        lines,
        "REQUEST DIGEST",
        [
            f"- summary: {digest.summary}",
            f"- refined query: {digest.refined_query}",
            f"- confidence: {digest.confidence}",
            f"- candidates: {', '.join(digest.candidate_files)}" if digest.candidate_files else "",
        ],
    )
    _section(
        lines,
        "SEARCH RESULTS",
        [
            f"- {entry.query}: " + (", ".join(hit.path or hit.doc_id or "?" for hit in entry.hits) or "(no hits)")
            for entry in bundle.search_results
        ],
    )
    _section(
        lines,
        "SELECTION",
        [f"- focus: {', '.join(selection.focus) or '(none)'}", f"- dependencies: {', '.join(selection.periphery) or '(none)'}"],
    )
    if bundle.repo_map:
        _section(lines, "REPO MAP", [bundle.repo_map])

    if bundle.files:
        for entry in bundle.files:
            label = "FOCUS FILE" if entry.role == "focus" else "DEPENDENCY"
            state = "TRUNCATED" if entry.truncated else "FULL"
            lines.append(f"=== [{label}] {entry.path} ({state}) ===")
            lines.append(entry.content.rstrip())
            lines.append("")
    else:
        lines.extend(["NO FILE CONTENT AVAILABLE", ""])

    count, size = SNIPPET_LIMIT
    _section(lines, "SNIPPETS", [f"### {s.path or s.doc_id}\n{_clip(s.content, size)}" for s in bundle.snippets[:count]])
    count, size = SYMBOL_LIMIT
    _section(lines, "SYMBOLS", [f"### {s.path}\n{_clip(s.summary, size)}" for s in bundle.symbols[:count]])
    count, nodes, size = AST_LIMIT
    _section(
        lines,
        "AST",
        [f"### {a.path}\n{_clip(json.dumps(list(a.nodes[:nodes]), default=str), size)}" for a in bundle.ast[:count]],
    )
    _section(
        lines,
        "IMPACT GRAPH",
        [
            f"- {entry.file}: inbound [{', '.join(entry.inbound)}] outbound [{', '.join(entry.outbound)}]"
            for entry in bundle.impact
        ],
    )
    if bundle.dag_summary:
        _section(lines, "DAG REASONING", [bundle.dag_summary])
    count, size = MEMORY_LIMIT
    _section(lines, "REPO MEMORY", _bullets([_clip(fact, size) for fact in bundle.memory[:count]]))
    _section(
        lines,
        "PAST SUCCESSFUL RUNS",
        [f"- {run.path}: intent={_clip(run.intent, 160)} plan={_clip(run.plan, 160)}" for run in bundle.episodic_memory],
    )
    _section(
        lines,
        "GOLDEN EXAMPLES",
        [f"- {example.intent}: {_clip(example.patch_summary, 400)}" for example in bundle.golden_examples],
    )
    count, size = PROFILE_LIMIT
    profile = [f"- [{pref.category}] {_clip(pref.content, size)}" for pref in bundle.preferences[:count]]
    _section(lines, "USER PROFILE", profile)
    index = bundle.index
    _section(
        lines,
        "INDEX INFO",
        [f"- docs: {index.num_docs}, last updated: {index.last_updated_epoch_ms}, files sampled: {index.files_sampled}"],
    )
    _section(lines, "MISSING DATA", _bullets(bundle.missing))
    _section(lines, "WARNINGS", _bullets(bundle.warnings))
    _section(
        lines,
        "IMPACT DIAGNOSTICS",
        [f"- {entry.file}: {_clip(json.dumps(entry.diagnostics, default=str), 400)}" for entry in bundle.impact_diagnostics],
    )
    lines.append("END OF CONTEXT")
    return "\n".join(lines)


def serialize_bundle(bundle: ContextBundle, mode: SerializationMode = "bundle_text") -> str:
    if mode == "bundle_text":
        return serialize_bundle_text(bundle)
    content = bundle_to_dict(sanitize_bundle(bundle))
    text = json.dumps(content, default=str)
    return json.dumps(
        {
            "mode": "json",
            "content": content,
            "token_estimate": estimate_tokens(text),
            "stats": {
                "focus_files": len(bundle.selection.focus),
                "periphery_files": len(bundle.selection.periphery),
                "total_bytes": sum(entry.size for entry in bundle.files),
            },
        },
        default=str,
        indent=2,
    )
