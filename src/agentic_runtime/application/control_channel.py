"""Control channel: lets a running step ask the caller a question and resume with the answer.

A step (or a tool inside it) calls ``await context.request(...)``. When a
consumer is attached (a suspendable run), the request is published on the
single-slot *outbox* and the step's coroutine waits on the single-slot
*response* queue; only that logical step is suspended, the event loop keeps
running sibling tools. When nothing is attached (blocking and streaming runs),
the request resolves immediately through its ``FallbackBehavior``.

At most one request is outstanding per run: concurrent requests from sibling
tools queue up behind an ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from agentic_runtime.application.events import CONTROL_RESUMED, CONTROL_YIELDED, emit
from agentic_runtime.application.ports import EventSink
from agentic_runtime.domain import (
    ChannelMisuseError,
    Confirmation,
    ControlFlowError,
    ControlRequest,
    ControlResponse,
    FallbackBehavior,
    SubAgentQuery,
    UserInput,
)
from agentic_runtime.domain.control import request_prompt

logger = logging.getLogger(__name__)


def resolve_fallback(request: ControlRequest) -> ControlResponse:
    """Answer ``request`` without a consumer, according to its fallback behavior."""
    behavior = request.fallback
    if behavior is FallbackBehavior.RAISE:
        raise ControlFlowError(
            f"No consumer attached to answer {request.request_type} request: {request_prompt(request)}",
            request_type=request.request_type,
            context={"request_id": request.id, "prompt": request_prompt(request)},
        )
    if behavior is FallbackBehavior.USE_DEFAULT_VALUE:
        return ControlResponse.respond(request.id, getattr(request, "default_value", None))
    if behavior is FallbackBehavior.AUTO_APPROVE:
        return ControlResponse.approve(request.id)
    if behavior is FallbackBehavior.SKIP_WITH_NIL:
        return ControlResponse.respond(request.id, None)
    raise ValueError(f"Unhandled fallback behavior: {behavior!r}")


class ControlChannel:
    """One per run. ``outbox`` is None for runs with no live consumer."""

    def __init__(
        self,
        outbox: Optional[asyncio.Queue] = None,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        self._outbox = outbox
        self._responses: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._lock = asyncio.Lock()
        self._event_sink = event_sink
        self._pending: Optional[ControlRequest] = None
        self._active_step: Optional[int] = None

    @property
    def consumer_attached(self) -> bool:
        return self._outbox is not None

    @property
    def pending(self) -> Optional[ControlRequest]:
        """The request currently waiting for ``respond``, if any."""
        return self._pending

    @property
    def active_step(self) -> Optional[int]:
        return self._active_step

    @contextlib.contextmanager
    def step_scope(self, step_number: int) -> Iterator[None]:
        """Mark ``step_number`` as executing; requests are only legal inside this scope."""
        self._active_step = step_number
        try:
            yield
        finally:
            self._active_step = None

    async def request(self, request: ControlRequest) -> ControlResponse:
        if self._active_step is None:
            raise ChannelMisuseError(
                f"{request.request_type} request issued outside an executing step"
            )
        if not self.consumer_attached:
            response = resolve_fallback(request)
            logger.debug(
                "Step %s: %s resolved by fallback %s",
                self._active_step, request.request_type, request.fallback.value,
            )
            return response

        async with self._lock:
            step = self._active_step
            self._pending = request
            emit(
                self._event_sink,
                CONTROL_YIELDED,
                {"request_type": request.request_type, "request_id": request.id,
                 "prompt": request_prompt(request)},
                step=step,
            )
            logger.info("Step %s: suspended on %s request", step, request.request_type)
            await self._outbox.put(request)
            response: ControlResponse = await self._responses.get()
            emit(
                self._event_sink,
                CONTROL_RESUMED,
                {"request_type": request.request_type, "request_id": request.id,
                 "approved": response.approved},
                step=step,
            )
            logger.debug("Step %s: resumed (approved=%s)", step, response.approved)
            return response

    def respond(self, response: ControlResponse) -> None:
        """Deliver the caller's answer to the pending request."""
        pending = self._pending
        if pending is None:
            raise ChannelMisuseError("respond() called with no pending control request")
        if response.request_id != pending.id:
            raise ChannelMisuseError(
                f"Response for request {response.request_id!r} does not match "
                f"pending request {pending.id!r}"
            )
        self._pending = None
        self._responses.put_nowait(response)


@dataclass
class StepContext:
    """What a step (and every tool it calls) receives to reach the control channel."""
    channel: ControlChannel
    step_number: int
    agent_name: str = "agent"
    loop: Optional[asyncio.AbstractEventLoop] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    async def request(self, request: ControlRequest) -> ControlResponse:
        return await self.channel.request(request)

    async def request_input(
        self,
        prompt: str,
        *,
        options: Optional[List[str]] = None,
        default_value: Any = None,
        **context: Any,
    ) -> Any:
        response = await self.request(
            UserInput(prompt=prompt, options=options, default_value=default_value, context=context)
        )
        return response.value

    async def request_confirmation(
        self,
        action: str,
        description: str,
        *,
        consequences: Optional[List[str]] = None,
        reversible: bool = True,
    ) -> bool:
        response = await self.request(
            Confirmation(
                action=action,
                description=description,
                consequences=list(consequences or []),
                reversible=reversible,
            )
        )
        return response.approved

    async def escalate(
        self,
        query: str,
        *,
        options: Optional[List[str]] = None,
        **context: Any,
    ) -> Any:
        """Ask the parent (or the caller) a question on behalf of this agent."""
        response = await self.request(
            SubAgentQuery(agent_name=self.agent_name, query=query, options=options, context=context)
        )
        return response.value

    def request_blocking(
        self, request: ControlRequest, timeout: Optional[float] = None
    ) -> ControlResponse:
        """``request`` for synchronous tools running in a worker thread.

        Must not be called from the event loop thread itself; that would block
        the loop that has to deliver the answer.
        """
        if self.loop is None:
            raise ChannelMisuseError("StepContext has no event loop bound")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            raise ChannelMisuseError(
                "request_blocking() called on the event loop; use 'await context.request()'"
            )
        future = asyncio.run_coroutine_threadsafe(self.request(request), self.loop)
        return future.result(timeout)
