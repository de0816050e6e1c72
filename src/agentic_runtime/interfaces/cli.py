"""CLI: Typer app wired to the run orchestrator."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from agentic_runtime.application.events import RunEvent
from agentic_runtime.application.orchestrator import RunConfig, RunOrchestrator
from agentic_runtime.application.ports import Tool
from agentic_runtime.config import RuntimeSettings, load_config
from agentic_runtime.domain import (
    ActionStep,
    Confirmation,
    ControlRequest,
    ControlResponse,
    RunResult,
    UserInput,
    is_control_request,
)
from agentic_runtime.infrastructure.chat import build_model
from agentic_runtime.infrastructure.telemetry import setup_telemetry
from agentic_runtime.infrastructure.tools.function_tools import AskUserTool, FinalAnswerTool
from agentic_runtime.infrastructure.tools.sandbox import SubprocessSandbox

app = typer.Typer(help="agentic-runtime: run an LLM agent on a task (Ollama by default).")


def _summary(value: object, limit: int = 80) -> str:
    text = str(value).replace("\n", " ")
    return text if len(text) <= limit else text[: limit - 1] + "…"


def _render_step(console: Console, step: ActionStep) -> None:
    prefix = f"[dim]{step.step_number}[/dim] "
    for tc, out in zip(step.tool_calls, step.tool_outputs):
        args = ", ".join(f"{k}={_summary(repr(v), 40)}" for k, v in list(tc.arguments.items())[:3])
        mark = "[green]✓[/green]" if out.output is not None else "[red]✗[/red]"
        console.print(f"{prefix}[yellow]⚙ {tc.tool_name}[/yellow]({args}) {mark} {_summary(out.observation)}")
    if step.code_action:
        console.print(f"{prefix}[yellow]⚙ code[/yellow] ({len(step.code_action.splitlines())} lines)")
        if step.observations:
            console.print(f"{prefix}[dim]{_summary(step.observations)}[/dim]")
    if step.error:
        console.print(f"{prefix}[red]✗ {_summary(step.error)}[/red]")


def _render_event(console: Console, event: RunEvent) -> None:
    if event.kind == "planning":
        console.print(f"[dim]{event.step}[/dim] [cyan]◆ plan[/cyan]: {_summary(event.data.get('plan', ''))}")


def _ask(console: Console, request: ControlRequest) -> ControlResponse:
    """Answer a control request at the terminal."""
    if isinstance(request, Confirmation):
        console.print(Panel.fit(
            f"[bold]{request.action}[/bold]\n{request.description}"
            + "".join(f"\n  • {c}" for c in request.consequences)
            + ("\n[red]This cannot be undone.[/red]" if request.dangerous else ""),
            title="Confirm",
        ))
        if Confirm.ask("Proceed?", default=request.reversible):
            return ControlResponse.approve(request.id)
        return ControlResponse.deny(request.id, "declined at the terminal")

    question = request.prompt if isinstance(request, UserInput) else f"[{request.agent_name}] {request.query}"
    kwargs = {}
    if request.options:
        kwargs["choices"] = list(request.options)
    if isinstance(request, UserInput) and request.default_value is not None:
        kwargs["default"] = str(request.default_value)
    return ControlResponse.respond(request.id, Prompt.ask(question, **kwargs))


def _build_orchestrator(
    settings: RuntimeSettings,
    *,
    max_steps: Optional[int],
    code: bool,
    console: Optional[Console],
) -> RunOrchestrator:
    model = build_model(settings.model)
    tools: List[Tool] = [] if code else [FinalAnswerTool(settings.final_answer_tool), AskUserTool()]
    overrides = {}
    if max_steps is not None:
        overrides["max_steps"] = max_steps
    if code:
        overrides["sandbox"] = SubprocessSandbox()
    if console is not None:
        overrides["event_sink"] = _ConsoleSink(console)
    return RunOrchestrator(RunConfig.from_settings(settings, model, tools, **overrides))


class _ConsoleSink:
    def __init__(self, console: Console) -> None:
        self.console = console

    def emit(self, event: RunEvent) -> None:
        _render_event(self.console, event)


async def _drive(orchestrator: RunOrchestrator, prompt: str, console: Console, stream: bool, interactive: bool) -> RunResult:
    if interactive:
        handle = orchestrator.run_suspendable(prompt)
        try:
            async for item in handle:
                if is_control_request(item):
                    await handle.respond(_ask(console, item))
                elif isinstance(item, ActionStep):
                    _render_step(console, item)
        finally:
            await handle.aclose()
        return handle.result
    if stream:
        steps = orchestrator.run_stream(prompt)
        async for step in steps:
            _render_step(console, step)
        return steps.result
    return await orchestrator.run(prompt)


@app.command()
def run(
    prompt: str = typer.Argument(..., help="The task for the agent."),
    max_steps: Optional[int] = typer.Option(None, "--max-steps", min=1, help="Override the step budget."),
    stream: bool = typer.Option(False, "--stream", "-s", help="Print each step as it completes."),
    interactive: bool = typer.Option(
        False, "--interactive", "-i", help="Answer the agent's questions and confirmations at the terminal."
    ),
    code: bool = typer.Option(False, "--code", help="Let the agent act by writing Python run in a subprocess."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging to stderr."),
) -> None:
    """Run a task to completion and print the result."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    settings = load_config()
    setup_telemetry(settings)
    console = Console()
    rprint(f"[dim]Using model: {settings.model.model} at {settings.model.base_url}[/dim]")

    orchestrator = _build_orchestrator(
        settings, max_steps=max_steps, code=code, console=console if (stream or interactive) else None
    )
    result = asyncio.run(_drive(orchestrator, prompt, console, stream, interactive))

    color = {"success": "green", "max_steps_reached": "yellow"}.get(result.state.value, "red")
    rprint(
        Panel.fit(
            f"[bold]State:[/bold] [{color}]{result.state.value}[/{color}]\n"
            f"[bold]Steps:[/bold] {result.steps_taken}\n"
            f"[bold]Tokens:[/bold] {result.token_usage.total_tokens}\n"
            f"[bold]Duration:[/bold] {result.timing.duration or 0:.1f}s"
            + (f"\n[bold]Error:[/bold] {result.error}" if result.error else "")
        )
    )
    if result.output is not None:
        rprint(result.output if isinstance(result.output, str) else json.dumps(result.output, indent=2, default=str))
    if result.error:
        sys.exit(1)


@app.command("config")
def show_config() -> None:
    """Print the effective settings (API key masked)."""
    data = load_config().model_dump()
    if data["model"].get("api_key"):
        data["model"]["api_key"] = "***"
    rprint(json.dumps(data, indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
