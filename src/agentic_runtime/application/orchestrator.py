"""Run orchestrator: drives steps under a budget and owns the termination state machine.

Flow per step: plan (when due) → execute one step → append it to memory →
accumulate tokens → emit ``step_complete`` → decide whether to stop.

    running ──final answer──────────▶ success
    running ──budget exhausted──────▶ max_steps_reached
    running ──step raised───────────▶ error
    running ──control request───────▶ suspended ──respond()──▶ running
    running ──closed by consumer────▶ error

Three ways to drive a run, all over the same loop:

* ``await run(task)`` returns the RunResult; never raises for step failures.
* ``run_stream(task)`` yields each ActionStep lazily; ``stream.result`` holds
  the RunResult once the stream is exhausted.
* ``run_suspendable(task)`` additionally yields ControlRequests raised by steps
  and waits for ``await handle.respond(...)`` before continuing; the RunResult
  is the last item.

Step failures end the run in state ``error`` (the model's ``aclose`` is
attempted, failures there are only logged). ``ChannelMisuseError`` means the
caller broke the control protocol and is always raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from agentic_runtime.application.control_channel import ControlChannel, StepContext
from agentic_runtime.application.dispatcher import ToolDispatcher
from agentic_runtime.application.events import (
    PLANNING,
    REPETITION_DETECTED,
    RUN_COMPLETE,
    RUN_ERROR,
    RUN_START,
    STEP_COMPLETE,
    emit,
)
from agentic_runtime.application.memory import AgentMemory
from agentic_runtime.application.planning import ModelPlanner
from agentic_runtime.application.ports import EventSink, Model, Planner, Sandbox, Tool
from agentic_runtime.application.prompts import build_system_prompt, tool_definitions
from agentic_runtime.application.repetition import check_repetition
from agentic_runtime.application.step_executor import StepExecutor
from agentic_runtime.config import MemoryPolicy, RepetitionPolicy, RuntimeSettings
from agentic_runtime.config.constants import (
    DEFAULT_MAX_STEPS,
    DEFAULT_MAX_TOOL_CONCURRENCY,
    FINAL_ANSWER_TOOL_NAME,
    MAX_EVENT_CONTENT_CHARS,
    SANDBOX_DEFAULT_TIMEOUT_S,
)
from agentic_runtime.domain import (
    ActionStep,
    ChannelMisuseError,
    ControlFlowError,
    ControlRequest,
    ControlResponse,
    GuidanceRecord,
    RunResult,
    RunState,
    Timing,
    TokenUsage,
)
from agentic_runtime.infrastructure.telemetry import get_tracer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunConfig:
    """Everything one orchestrator needs. Validated on construction."""
    model: Model
    tools: Sequence[Tool] = ()
    max_steps: int = DEFAULT_MAX_STEPS
    planning_interval: Optional[int] = None
    planning_templates: Dict[str, str] = field(default_factory=dict)
    planner: Optional[Planner] = None
    custom_instructions: Optional[str] = None
    managed_agents: Sequence[Tool] = ()
    memory_policy: MemoryPolicy = field(default_factory=MemoryPolicy)
    repetition: RepetitionPolicy = field(default_factory=RepetitionPolicy)
    event_sink: Optional[EventSink] = None
    sandbox: Optional[Sandbox] = None
    sandbox_timeout_s: int = SANDBOX_DEFAULT_TIMEOUT_S
    max_tool_concurrency: int = DEFAULT_MAX_TOOL_CONCURRENCY
    final_answer_tool: str = FINAL_ANSWER_TOOL_NAME
    raise_on_unknown_tool: bool = False
    agent_name: str = "agent"
    registry: Dict[str, Tool] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_steps <= 0:
            raise ValueError(f"max_steps must be > 0, got {self.max_steps}")
        if self.planning_interval is not None and self.planning_interval < 0:
            raise ValueError(f"planning_interval must be >= 0, got {self.planning_interval}")
        if self.max_tool_concurrency < 1:
            raise ValueError(f"max_tool_concurrency must be >= 1, got {self.max_tool_concurrency}")
        registry: Dict[str, Tool] = {}
        for tool in list(self.tools) + list(self.managed_agents):
            if tool.name in registry:
                raise ValueError(f"Duplicate tool name: {tool.name!r}")
            registry[tool.name] = tool
        object.__setattr__(self, "registry", registry)

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        model: Model,
        tools: Sequence[Tool] = (),
        **overrides: Any,
    ) -> "RunConfig":
        """Build a RunConfig from loaded settings; keyword overrides win."""
        values: Dict[str, Any] = dict(
            model=model,
            tools=tuple(tools),
            max_steps=settings.max_steps,
            planning_interval=settings.planning.interval,
            planning_templates=dict(settings.planning.templates),
            custom_instructions=settings.custom_instructions,
            memory_policy=settings.memory,
            repetition=settings.repetition,
            sandbox_timeout_s=settings.sandbox_timeout_s,
            max_tool_concurrency=settings.max_tool_concurrency,
            final_answer_tool=settings.final_answer_tool,
            raise_on_unknown_tool=settings.raise_on_unknown_tool,
        )
        values.update(overrides)
        return cls(**values)


class RunOrchestrator:
    """Owns the memory of one agent and drives runs over it, one at a time."""

    def __init__(self, config: RunConfig) -> None:
        self.config = config
        self.tools = config.registry
        self.dispatcher = ToolDispatcher(
            self.tools,
            max_concurrency=config.max_tool_concurrency,
            final_answer_tool=config.final_answer_tool,
            raise_on_unknown_tool=config.raise_on_unknown_tool,
        )
        self.executor = StepExecutor(
            config.model,
            self.dispatcher,
            tool_definitions=tool_definitions(self.tools),
            sandbox=config.sandbox,
            sandbox_timeout_s=config.sandbox_timeout_s,
        )
        self.planner: Optional[Planner] = config.planner
        if self.planner is None and config.planning_interval:
            self.planner = ModelPlanner(config.model, self.tools, config.planning_templates)
        if config.sandbox is None and config.final_answer_tool not in self.tools:
            logger.warning(
                "No %r tool registered; tool-calling runs can only end by exhausting max_steps",
                config.final_answer_tool,
            )
        self.memory = AgentMemory(
            build_system_prompt(
                self.tools,
                code_agent=config.sandbox is not None,
                final_answer_tool=config.final_answer_tool,
                managed_agents={a.name: a for a in config.managed_agents},
                custom_instructions=config.custom_instructions,
            ),
            policy=config.memory_policy,
        )
        self._state: Optional[RunState] = None
        self._channel: Optional[ControlChannel] = None
        self._run_lock = asyncio.Lock()

    @property
    def state(self) -> Optional[RunState]:
        """Current run state; None before the first run."""
        if self._state is RunState.RUNNING and self._channel is not None and self._channel.pending is not None:
            return RunState.SUSPENDED
        return self._state

    # ------------------------------------------------------------------
    # Driving modes
    # ------------------------------------------------------------------

    async def run(self, task: str, reset: bool = True) -> RunResult:
        channel = ControlChannel(event_sink=self.config.event_sink)
        result: Optional[RunResult] = None
        async for item in self._iterate(task, reset, channel):
            if isinstance(item, RunResult):
                result = item
        return result

    def run_sync(self, task: str, reset: bool = True) -> RunResult:
        """``run`` for callers without an event loop."""
        return asyncio.run(self.run(task, reset=reset))

    def run_stream(self, task: str, reset: bool = True) -> "RunStream":
        channel = ControlChannel(event_sink=self.config.event_sink)
        return RunStream(self._iterate(task, reset, channel))

    def run_suspendable(self, task: str, reset: bool = True) -> "SuspendableRun":
        return SuspendableRun(self, task, reset)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _planning_due(self, step_number: int) -> bool:
        interval = self.config.planning_interval
        if not interval or self.planner is None:
            return False
        return step_number == 1 or (step_number - 1) % interval == 0

    async def _iterate(
        self,
        task: str,
        reset: bool,
        channel: ControlChannel,
    ) -> AsyncIterator[Union[ActionStep, RunResult]]:
        """Yield each ActionStep as it completes, then the RunResult.

        Runs on one orchestrator share its memory, so they are serialized. A run
        closed by its consumer before reaching a terminal state ends in ``error``.
        """
        cfg = self.config
        sink = cfg.event_sink
        async with self._run_lock:
            if reset:
                self.memory.reset()
            self.memory.add_task(task)
            self._channel = channel
            self._state = RunState.RUNNING

            run_timing = Timing.start_now()
            usage = TokenUsage()
            steps: List[ActionStep] = []
            output: Any = None
            error: Optional[str] = None

            emit(sink, RUN_START, {"task": task[:MAX_EVENT_CONTENT_CHARS], "max_steps": cfg.max_steps})
            logger.info("Run started: max_steps=%d tools=%s", cfg.max_steps, sorted(self.tools))

            try:
                tracer = get_tracer()
                with tracer.start_as_current_span("agent.run") as span:
                    span.set_attribute("task_chars", len(task))
                    span.set_attribute("max_steps", cfg.max_steps)
                    while True:
                        step_number = len(steps) + 1
                        try:
                            if self._planning_due(step_number):
                                usage = usage + await self._plan(task, step_number)
                            context = StepContext(
                                channel=channel,
                                step_number=step_number,
                                agent_name=cfg.agent_name,
                                loop=asyncio.get_running_loop(),
                            )
                            with channel.step_scope(step_number):
                                step = await self.executor.execute(self.memory, step_number, context)
                        except ChannelMisuseError:
                            self._state = RunState.ERROR
                            raise
                        except ControlFlowError as exc:
                            usage = usage + getattr(exc, "step_token_usage", TokenUsage())
                            error = f"Unanswered {exc.request_type} request: {exc}"
                            logger.error("Step %d: %s", step_number, error)
                            await self._on_error(step_number, error)
                            break
                        except Exception as exc:
                            usage = usage + getattr(exc, "step_token_usage", TokenUsage())
                            error = f"{type(exc).__name__}: {exc}"
                            logger.error("Step %d failed: %s", step_number, error, exc_info=True)
                            await self._on_error(step_number, error)
                            break

                        self.memory.add(step)
                        steps.append(step)
                        usage = usage + step.token_usage
                        emit(
                            sink,
                            STEP_COMPLETE,
                            {
                                "outcome": "final_answer" if step.is_final_answer else "success",
                                "tool_calls": [tc.tool_name for tc in step.tool_calls],
                                "error": step.error,
                                "duration": step.timing.duration,
                            },
                            step=step_number,
                        )
                        logger.info(
                            "Step %d done: tool_calls=%d final=%s error=%s",
                            step_number, len(step.tool_calls), step.is_final_answer, bool(step.error),
                        )
                        yield step

                        if step.is_final_answer:
                            self._state = RunState.SUCCESS
                            output = step.action_output
                            break
                        if len(steps) >= cfg.max_steps:
                            self._state = RunState.MAX_STEPS_REACHED
                            logger.warning("Max steps reached (%d) without a final answer", cfg.max_steps)
                            break
                        self._check_repetition(steps, step_number)
                    span.set_attribute("state", self._state.value)

                result = RunResult(
                    output=output,
                    state=self._state,
                    token_usage=usage,
                    timing=run_timing.stop(),
                    steps_taken=len(steps),
                    steps=steps,
                    error=error,
                )
                if self._state is RunState.ERROR:
                    emit(sink, RUN_ERROR, {"error": error, "steps_taken": len(steps)})
                else:
                    emit(
                        sink,
                        RUN_COMPLETE,
                        {"state": self._state.value, "steps_taken": len(steps),
                         "total_tokens": usage.total_tokens},
                    )
                logger.info(
                    "Run finished: state=%s steps=%d tokens=%d",
                    self._state.value, len(steps), usage.total_tokens,
                )
                yield result
            finally:
                if self._state is RunState.RUNNING:
                    self._state = RunState.ERROR
                    logger.warning("Run closed by its consumer after %d steps", len(steps))

    def _check_repetition(self, steps: List[ActionStep], step_number: int) -> None:
        repeated = check_repetition(steps, self.config.repetition)
        if repeated is None:
            return
        logger.warning(
            "Step %d: %s repeated over %d steps; adding guidance",
            step_number, repeated.pattern, repeated.count,
        )
        self.memory.add(GuidanceRecord(repeated.guidance, step_number))
        emit(
            self.config.event_sink,
            REPETITION_DETECTED,
            {"pattern": repeated.pattern, "count": repeated.count},
            step=step_number,
        )

    async def _plan(self, task: str, step_number: int) -> TokenUsage:
        tracer = get_tracer()
        with tracer.start_as_current_span("agent.planning") as span:
            span.set_attribute("step", step_number)
            record = await self.planner.plan(task, self.memory.action_steps, step_number)
        self.memory.add(record)
        emit(
            self.config.event_sink,
            PLANNING,
            {"plan": record.plan[:MAX_EVENT_CONTENT_CHARS]},
            step=step_number,
        )
        return record.token_usage

    async def _on_error(self, step_number: int, error: str) -> None:
        self._state = RunState.ERROR
        aclose = getattr(self.config.model, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Step %d: releasing model resources failed: %s", step_number, exc)


class RunStream:
    """Lazy, single-use async iterator over the ActionSteps of one run."""

    def __init__(self, iterator: AsyncIterator[Union[ActionStep, RunResult]]) -> None:
        self._iterator = iterator
        self.result: Optional[RunResult] = None

    def __aiter__(self) -> "RunStream":
        return self

    async def __anext__(self) -> ActionStep:
        item = await self._iterator.__anext__()
        if isinstance(item, RunResult):
            self.result = item
            # Finish the loop now so the orchestrator is free for the next run.
            await self._iterator.aclose()
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        await self._iterator.aclose()


@dataclass(frozen=True)
class _DriverFailure:
    exc: BaseException


class SuspendableRun:
    """Async iterator yielding ActionSteps, ControlRequests and finally the RunResult.

    Each ControlRequest must be answered with ``await respond(...)`` before the
    next pull. The run advances only as far as the consumer pulls.
    """

    def __init__(self, orchestrator: RunOrchestrator, task: str, reset: bool = True) -> None:
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.channel = ControlChannel(outbox=self._outbox, event_sink=orchestrator.config.event_sink)
        self._iterator = orchestrator._iterate(task, reset, self.channel)
        self._driver: Optional[asyncio.Task] = None
        self._demand = asyncio.Event()
        self._awaiting_demand = False
        self._done = False
        self.result: Optional[RunResult] = None

    def __aiter__(self) -> "SuspendableRun":
        return self

    async def __anext__(self) -> Union[ActionStep, ControlRequest, RunResult]:
        if self._done:
            raise StopAsyncIteration
        if self.channel.pending is not None:
            raise ChannelMisuseError(
                "A control request is pending; call respond() before pulling the next item"
            )
        if self._driver is None:
            self._driver = asyncio.create_task(self._drive())
        elif self._awaiting_demand:
            self._awaiting_demand = False
            self._demand.set()

        item = await self._outbox.get()
        if isinstance(item, _DriverFailure):
            self._done = True
            raise item.exc
        if isinstance(item, RunResult):
            self._done = True
            self.result = item
        elif isinstance(item, ActionStep):
            self._awaiting_demand = True
        return item

    async def respond(self, response: ControlResponse) -> None:
        self.channel.respond(response)
        await asyncio.sleep(0)

    async def aclose(self) -> None:
        """Abandon the run. Safe to call at any point, including after completion."""
        self._done = True
        if self._driver is not None and not self._driver.done():
            self._driver.cancel()
            try:
                await self._driver
            except asyncio.CancelledError:
                pass
        await self._iterator.aclose()

    async def _drive(self) -> None:
        try:
            async for item in self._iterator:
                await self._outbox.put(item)
                if isinstance(item, ActionStep):
                    await self._demand.wait()
                    self._demand.clear()
        except Exception as exc:  # noqa: BLE001
            await self._outbox.put(_DriverFailure(exc))
