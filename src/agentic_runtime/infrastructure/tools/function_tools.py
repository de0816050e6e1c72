"""Tools backed by plain Python callables, plus the built-in final-answer and ask-user tools."""

from __future__ import annotations

import inspect
import typing
from typing import Any, Callable, Dict, List, Optional

from agentic_runtime.config.constants import FINAL_ANSWER_TOOL_NAME

_JSON_TYPES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def _inputs_from_signature(fn: Callable[..., Any]) -> Dict[str, Dict[str, Any]]:
    try:
        hints = typing.get_type_hints(fn)
    except (NameError, TypeError):
        hints = {}
    inputs: Dict[str, Dict[str, Any]] = {}
    for name, param in inspect.signature(fn).parameters.items():
        if name == "context" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        hint = hints.get(name)
        if typing.get_origin(hint) is typing.Union:
            # Optional[X] -> X
            hint = next((a for a in typing.get_args(hint) if a is not type(None)), None)
        hint = typing.get_origin(hint) or hint
        spec: Dict[str, Any] = {"type": _JSON_TYPES.get(hint, "string")}
        if param.default is not param.empty:
            spec["nullable"] = True
        inputs[name] = spec
    return inputs


class FunctionTool:
    """Wrap a sync or async callable as a tool.

    Inputs are derived from the signature unless given. A parameter named
    ``context`` receives the StepContext and is not exposed to the model.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        inputs: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        self.fn = fn
        self.name = name or fn.__name__
        doc = inspect.getdoc(fn) or ""
        self.description = description or doc.split("\n\n")[0].strip() or self.name
        self.inputs = inputs if inputs is not None else _inputs_from_signature(fn)
        self._wants_context = "context" in inspect.signature(fn).parameters
        if inspect.iscoroutinefunction(fn):
            self.call = self._call_async

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        if not isinstance(arguments, dict):
            raise TypeError(f"{self.name} expects a JSON object of arguments, got {type(arguments).__name__}")
        unknown = sorted(set(arguments) - set(self.inputs))
        if unknown:
            raise ValueError(f"Unexpected argument(s) {unknown}; expected {sorted(self.inputs)}")
        missing = [k for k, spec in self.inputs.items() if not spec.get("nullable") and k not in arguments]
        if missing:
            raise ValueError(f"Missing required argument(s) {missing}")

    def _kwargs(self, arguments: Dict[str, Any], context: Any) -> Dict[str, Any]:
        kwargs = dict(arguments)
        if self._wants_context:
            kwargs["context"] = context
        return kwargs

    def call(self, arguments: Dict[str, Any], context: Any) -> Any:
        return self.fn(**self._kwargs(arguments, context))

    async def _call_async(self, arguments: Dict[str, Any], context: Any) -> Any:
        return await self.fn(**self._kwargs(arguments, context))

    def __repr__(self) -> str:
        return f"FunctionTool(name={self.name!r})"


def tool(
    fn: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Any:
    """Decorator form of FunctionTool: ``@tool`` or ``@tool(name=...)``."""
    if fn is None:
        return lambda f: FunctionTool(f, name=name, description=description)
    return FunctionTool(fn, name=name, description=description)


class FinalAnswerTool:
    """Calling this tool ends the run; its ``answer`` becomes the run output."""

    description = "Provide the final answer to the task. Calling this ends the task."
    inputs = {"answer": {"type": "string", "description": "The final answer."}}

    def __init__(self, name: str = FINAL_ANSWER_TOOL_NAME) -> None:
        self.name = name

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        if "answer" not in arguments:
            raise ValueError("Missing required argument 'answer'")

    def call(self, arguments: Dict[str, Any], context: Any) -> Any:
        return arguments["answer"]


class AskUserTool:
    """Ask the person driving the run a question and return their answer.

    Without an interactive consumer the question resolves to ``default_answer``.
    """

    name = "ask_user"
    description = "Ask the user a clarifying question. Use only when the task is ambiguous."
    inputs = {
        "question": {"type": "string", "description": "The question to ask."},
        "options": {"type": "array", "items": {"type": "string"}, "nullable": True},
    }

    def __init__(self, default_answer: Optional[str] = None) -> None:
        self.default_answer = default_answer

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        if not str(arguments.get("question") or "").strip():
            raise ValueError("question must be a non-empty string")
        options = arguments.get("options")
        if options is not None and not isinstance(options, list):
            raise TypeError("options must be a list of strings")

    async def call(self, arguments: Dict[str, Any], context: Any) -> Any:
        options: Optional[List[str]] = arguments.get("options")
        return await context.request_input(
            arguments["question"], options=options, default_value=self.default_answer
        )
