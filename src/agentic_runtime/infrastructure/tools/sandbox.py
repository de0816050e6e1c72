"""Subprocess sandbox: run a Python code action in a fresh interpreter.

The code runs under ``python -I`` in a temporary directory. It may call
``final_answer(value)`` to end the run. The value of a trailing expression
is reported as the output, like a REPL cell. Uncaught exceptions, a non-zero exit
or a timeout come back as ``SandboxResult.error``; this module never raises for
problems inside the executed code.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Optional

from agentic_runtime.config.constants import MAX_OBSERVATION_CHARS, SANDBOX_DEFAULT_TIMEOUT_S
from agentic_runtime.domain import SandboxResult

logger = logging.getLogger(__name__)

_RESULT_MARKER = "__AGENT_RUNTIME_RESULT__"

_RUNNER = r'''
import ast, json, sys

class _FinalAnswer(Exception):
    def __init__(self, value):
        self.value = value

def final_answer(answer):
    raise _FinalAnswer(answer)

def _encode(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return repr(value)

with open(sys.argv[1], encoding="utf-8") as f:
    tree = ast.parse(f.read(), "<code>")
last = None
if tree.body and isinstance(tree.body[-1], ast.Expr):
    last = ast.Expression(tree.body.pop().value)
ns = {"__name__": "__main__", "final_answer": final_answer}
final, output = False, None
try:
    exec(compile(tree, "<code>", "exec"), ns)
    if last is not None:
        output = eval(compile(last, "<code>", "eval"), ns)
except _FinalAnswer as fa:
    final, output = True, fa.value
sys.stdout.flush()
sys.stdout.write("\n" + MARKER + json.dumps({"final": final, "output": _encode(output)}) + "\n")
'''.replace("MARKER", repr(_RESULT_MARKER))


def _truncate(s: str, limit: int) -> str:
    if len(s) <= limit:
        return s
    return s[:limit] + f"\n... [truncated {len(s)-limit} chars]"


def _last_error_line(stderr: str) -> str:
    lines = [ln for ln in stderr.strip().splitlines() if ln.strip()]
    return lines[-1] if lines else "process exited with an error"


class SubprocessSandbox:
    def __init__(
        self,
        python: Optional[str] = None,
        max_output_chars: int = MAX_OBSERVATION_CHARS,
    ) -> None:
        self.python = python or sys.executable
        self.max_output_chars = max_output_chars

    async def execute(
        self,
        code: str,
        language: str = "python",
        timeout: int = SANDBOX_DEFAULT_TIMEOUT_S,
    ) -> SandboxResult:
        if language.lower() not in ("python", "py"):
            return SandboxResult(error=f"Unsupported language {language!r}; only python is available")
        return await asyncio.to_thread(self._run, code, timeout)

    def _run(self, code: str, timeout: int) -> SandboxResult:
        with tempfile.TemporaryDirectory(prefix="agent-sandbox-") as tmp:
            workdir = Path(tmp)
            (workdir / "runner.py").write_text(_RUNNER, encoding="utf-8")
            (workdir / "action.py").write_text(code, encoding="utf-8")
            env = os.environ.copy()
            env["PYTHONIOENCODING"] = "utf-8"
            try:
                p = subprocess.run(
                    [self.python, "-I", "runner.py", "action.py"],
                    cwd=str(workdir), env=env,
                    stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout,
                )
            except subprocess.TimeoutExpired as exc:
                logs = exc.stdout.decode("utf-8", "replace") if isinstance(exc.stdout, bytes) else (exc.stdout or "")
                logger.warning("Code action timed out after %ss", timeout)
                return SandboxResult(
                    logs=_truncate(logs, self.max_output_chars),
                    error=f"Code execution timed out after {timeout}s",
                )

        logs, _, tail = p.stdout.rpartition("\n" + _RESULT_MARKER)
        if not tail or p.returncode != 0:
            logger.debug("Code action failed (rc=%s): %s", p.returncode, p.stderr.strip()[-500:])
            return SandboxResult(
                logs=_truncate(p.stdout, self.max_output_chars),
                error=_last_error_line(p.stderr),
            )
        payload = json.loads(tail.strip())
        return SandboxResult(
            output=payload.get("output"),
            logs=_truncate(logs.rstrip("\n"), self.max_output_chars),
            is_final_answer=bool(payload.get("final")),
        )
