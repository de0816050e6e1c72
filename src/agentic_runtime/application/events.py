"""Run lifecycle events and best-effort sinks.

Events are emitted in completion order:

    run_start → (planning)? → step_complete → ... → run_complete | run_error

with ``control_yielded`` / ``control_resumed`` pairs in between whenever a
step suspends on the control channel, and a ``repetition_detected`` after any
step that repeats the ones before it. Sinks never influence the run: an
exception raised by a sink is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from agentic_runtime.application.ports import EventSink

logger = logging.getLogger(__name__)

RUN_START = "run_start"
PLANNING = "planning"
STEP_COMPLETE = "step_complete"
CONTROL_YIELDED = "control_yielded"
CONTROL_RESUMED = "control_resumed"
REPETITION_DETECTED = "repetition_detected"
RUN_COMPLETE = "run_complete"
RUN_ERROR = "run_error"


@dataclass(frozen=True)
class RunEvent:
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    step: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


class QueueEventSink:
    """Puts events on an ``asyncio.Queue``; drops them when the queue is full."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue

    def emit(self, event: RunEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("event queue full; dropping event kind=%s", event.kind)


class CallbackEventSink:
    """Forwards each event to a plain callable."""

    def __init__(self, callback: Callable[[RunEvent], None]) -> None:
        self.callback = callback

    def emit(self, event: RunEvent) -> None:
        self.callback(event)


class ListEventSink:
    """Keeps every event in memory. Handy for tests and post-run inspection."""

    def __init__(self) -> None:
        self.events: List[RunEvent] = []

    def emit(self, event: RunEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]


def emit(
    sink: Optional[EventSink],
    kind: str,
    data: Dict[str, Any],
    step: Optional[int] = None,
) -> None:
    """Send one event to ``sink`` (no-op when sink is None). Never raises."""
    if sink is None:
        return
    try:
        sink.emit(RunEvent(kind=kind, data=data, step=step))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Event sink failed on %s: %s", kind, exc)
