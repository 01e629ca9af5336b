"""Typed progress events written by the assembler and read by callers."""

from __future__ import annotations

import queue
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Union

__all__ = ["AssemblerEvent", "EventChannel", "StatusEvent", "ToolCallEvent", "ToolResultEvent"]

Phase = Literal["thinking", "executing", "done"]


@dataclass(frozen=True, slots=True)
class StatusEvent:
    phase: Phase
    message: str = ""
    type: str = field(default="status", init=False)


@dataclass(frozen=True, slots=True)
class ToolCallEvent:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool_call", init=False)


@dataclass(frozen=True, slots=True)
class ToolResultEvent:
    name: str
    ok: bool
    output: str = ""
    type: str = field(default="tool_result", init=False)


AssemblerEvent = Union[StatusEvent, ToolCallEvent, ToolResultEvent]


class EventChannel:
    """FIFO channel of assembler events; safe to write from worker threads."""

    def __init__(self) -> None:
        self._queue: "queue.SimpleQueue[AssemblerEvent]" = queue.SimpleQueue()

    def emit(self, event: AssemblerEvent) -> None:
        self._queue.put(event)

    def status(self, phase: Phase, message: str = "") -> None:
        self.emit(StatusEvent(phase=phase, message=message))

    def drain(self) -> List[AssemblerEvent]:
        """Return and remove every queued event in emission order."""
        events: List[AssemblerEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def __iter__(self) -> Iterator[AssemblerEvent]:
        return iter(self.drain())
