"""System prompt and planning prompt templates."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from agentic_runtime.application.ports import Tool

_TOOL_CALLING_PROMPT = """\
You are an agent that solves tasks step by step by calling tools.

Each turn, call one or more of the available tools. Tool results come back as
observations; use them to decide the next call. When you have the answer, call
the `{final_answer_tool}` tool with it. Do not answer in plain text.

Available tools:
{tools}
"""

_CODE_PROMPT = """\
You are an agent that solves tasks step by step by writing Python code.

Each turn, reply with a short thought followed by exactly one code block:

```python
# your code
```

Whatever you print is returned to you as an observation. Call the available
tools as ordinary Python functions. When you have the answer, call
`final_answer(answer)` inside the code block.

Available tools:
{tools}
"""

_TEAM_SECTION = """
You can also delegate to these team members (call them like tools, with a `task` argument):
{agents}
"""

_CUSTOM_SECTION = """
Additional instructions:
{instructions}
"""

# Planning templates. Keys may be overridden per run through PlanningConfig.templates.
PLANNING_TEMPLATES: Dict[str, str] = {
    "planning_system": (
        "You are a strategic planning assistant. "
        "Create concise, actionable plans that map directly to available tools. "
        "Focus on concrete steps, not abstract strategies."
    ),
    "initial_plan": """\
Create a step-by-step plan to complete this task.

Task: {task}

Available tools:
{tools}

Instructions:
- Create 3-5 concrete steps
- Each step should use one of the available tools
- Be specific about what information to gather or actions to take
- Number each step

Plan:
""",
    "update_plan": """\
Review your progress and update your plan.

Task: {task}

Progress so far:
{steps}

Latest observations:
{observations}

Current plan:
{plan}

Based on what you've learned, either:
1. Confirm the plan is still valid and continue, OR
2. Update the remaining steps based on new information

Updated plan:
""",
}


def describe_tools(tools: Mapping[str, Tool]) -> str:
    """One line per tool: name, description, and argument names."""
    lines: List[str] = []
    for tool in tools.values():
        args = ", ".join(
            f"{name}{'?' if spec.get('nullable') else ''}: {spec.get('type', 'any')}"
            for name, spec in tool.inputs.items()
        )
        lines.append(f"- {tool.name}({args}): {tool.description}")
    return "\n".join(lines) if lines else "(none)"


def build_system_prompt(
    tools: Mapping[str, Tool],
    *,
    code_agent: bool = False,
    final_answer_tool: str = "final_answer",
    managed_agents: Optional[Mapping[str, Any]] = None,
    custom_instructions: Optional[str] = None,
) -> str:
    """Assemble the system prompt for a tool-calling or code-writing agent."""
    regular = {k: t for k, t in tools.items() if k not in (managed_agents or {})}
    if code_agent:
        prompt = _CODE_PROMPT.format(tools=describe_tools(regular))
    else:
        prompt = _TOOL_CALLING_PROMPT.format(
            tools=describe_tools(regular), final_answer_tool=final_answer_tool
        )
    if managed_agents:
        agents = "\n".join(
            f"- {name}: {getattr(agent, 'description', '')}" for name, agent in managed_agents.items()
        )
        prompt += _TEAM_SECTION.format(agents=agents)
    if custom_instructions:
        prompt += _CUSTOM_SECTION.format(instructions=custom_instructions.strip())
    return prompt


def tool_definitions(tools: Mapping[str, Tool]) -> List[Dict[str, Any]]:
    """OpenAI-format function definitions for ``tools``."""
    defs: List[Dict[str, Any]] = []
    for tool in tools.values():
        properties = {
            name: {k: v for k, v in spec.items() if k != "nullable"}
            for name, spec in tool.inputs.items()
        }
        required = [name for name, spec in tool.inputs.items() if not spec.get("nullable")]
        defs.append({
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {"type": "object", "properties": properties, "required": required},
            },
        })
    return defs
