from __future__ import annotations

from typing import List

from conftest import FakeDocdex
from librarian.docdex import Capability, Deadline, DocdexGateway, DocdexTransportError, detect_capabilities
from librarian.events import EventChannel, StatusEvent, ToolCallEvent, ToolResultEvent


class FlakyStats(FakeDocdex):
    def __init__(self, failures: int, message: str = "index writer unavailable") -> None:
        super().__init__()
        self.failures = failures
        self.message = message

    def stats(self):
        self.calls.append("stats")
        if self.failures:
            self.failures -= 1
            raise DocdexTransportError(self.message)
        return {"num_docs": 3, "last_updated_epoch_ms": 1}


class MethodsOnly:
    def health_check(self) -> bool:
        return True

    def search(self, query, *, limit, dag_session_id=None):
        return []


def test_capabilities_come_from_declaration_or_methods() -> None:
    assert detect_capabilities(FakeDocdex(capabilities=["search"])) == frozenset({Capability.SEARCH})
    assert detect_capabilities(MethodsOnly()) == frozenset({Capability.HEALTH_CHECK, Capability.SEARCH})


def test_unsupported_capability_short_circuits() -> None:
    client = FakeDocdex(capabilities=["health_check"])
    gateway = DocdexGateway(client)

    outcome = gateway.symbols("src/app.py")

    assert not outcome.ok
    assert outcome.warning == "docdex_symbols_failed:src/app.py"
    assert client.calls == []


def test_backoff_errors_are_retried_with_growing_delay() -> None:
    client = FlakyStats(failures=2)
    delays: List[float] = []
    gateway = DocdexGateway(client, sleep=delays.append)

    outcome = gateway.stats()

    assert outcome.ok
    assert outcome.value.num_docs == 3
    assert delays == [0.15, 0.3]
    assert client.calls.count("stats") == 3


def test_retries_stop_after_two_attempts() -> None:
    client = FlakyStats(failures=5)
    gateway = DocdexGateway(client, sleep=lambda _: None)

    outcome = gateway.stats()

    assert outcome.warning == "docdex_stats_failed"
    assert client.calls.count("stats") == 3


def test_other_errors_are_not_retried() -> None:
    client = FlakyStats(failures=1, message="permission denied")
    gateway = DocdexGateway(client, sleep=lambda _: None)

    assert gateway.stats().warning == "docdex_stats_failed"
    assert client.calls.count("stats") == 1


def test_search_is_never_retried(docdex: FakeDocdex) -> None:
    docdex.search_error = DocdexTransportError("backoff requested")
    gateway = DocdexGateway(docdex, sleep=lambda _: None)

    assert gateway.search("q", limit=2).warning == "docdex_search_failed"
    assert docdex.calls.count("search") == 1


def test_expired_deadline_skips_calls(docdex: FakeDocdex) -> None:
    ticks = iter([0.0, 10.0])
    gateway = DocdexGateway(docdex, deadline=Deadline(5.0, clock=lambda: next(ticks)))

    outcome = gateway.tree(max_depth=2, include_hidden=False, extra_excludes=())

    assert outcome.warning == "deadline_exceeded:tree"
    assert "tree" not in docdex.calls


def test_events_bracket_each_call(docdex: FakeDocdex) -> None:
    docdex.default_hits = [{"doc_id": "1", "path": "src/app.py"}]
    channel = EventChannel()
    gateway = DocdexGateway(docdex, events=channel)

    channel.status("executing", "searching")
    gateway.search("login", limit=2)
    docdex.search_error = DocdexTransportError("boom")
    gateway.search("login", limit=2)

    events = channel.drain()
    assert [type(event) for event in events] == [
        StatusEvent,
        ToolCallEvent,
        ToolResultEvent,
        ToolCallEvent,
        ToolResultEvent,
    ]
    assert events[1].name == "docdex.search"
    assert events[2].ok is True
    assert events[4].ok is False
    assert channel.drain() == []


def test_unhealthy_report_becomes_unavailable() -> None:
    class Unhealthy(FakeDocdex):
        def health_check(self) -> bool:
            return False

    assert DocdexGateway(Unhealthy()).health().warning == "docdex_unavailable"


def test_payload_shapes_are_normalised(docdex: FakeDocdex) -> None:
    docdex.impact_map["src/app.py"] = {"inbound": [".\\src\\routes.py"], "outbound": ["src/db.py"]}
    docdex.memories = ["plain fact", {"text": "scored fact", "score": 0.7}]
    gateway = DocdexGateway(docdex)

    impact = gateway.impact("src/app.py", max_depth=2, max_edges=10)
    memories = gateway.memory_recall("q", top_k=5)

    assert impact.value.inbound == ["src/routes.py"]
    assert [record.content for record in memories.value] == ["plain fact", "scored fact"]
    assert memories.value[1].score == 0.7


def test_background_rebuild_runs_off_thread(docdex: FakeDocdex) -> None:
    worker = DocdexGateway(docdex).rebuild_index_in_background()

    assert worker is not None
    worker.join(timeout=2)
    assert docdex.rebuilt.is_set()
