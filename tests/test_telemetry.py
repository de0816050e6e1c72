"""Tests for infrastructure/telemetry.py: no-op shim and spans from a real run.

Real-span tests use InMemorySpanExporter and install the tracer directly on the
module, since OTEL only honours the first global set_tracer_provider() call.
"""
from __future__ import annotations

import pytest

import agentic_runtime.infrastructure.telemetry as tel_mod
from agentic_runtime.application.orchestrator import RunConfig, RunOrchestrator
from agentic_runtime.config import DEFAULT_CONFIG, TelemetryConfig
from agentic_runtime.infrastructure.telemetry import (
    _NOOP_TRACER,
    _NoOpSpan,
    _NoOpTracer,
    get_tracer,
    reset_for_testing,
    setup_telemetry,
)
from tests.conftest import ScriptedModel, calls_response, final_response, make_tools, tool_call


@pytest.fixture(autouse=True)
def _fresh_tracer():
    reset_for_testing()
    yield
    reset_for_testing()


# ---------------------------------------------------------------------------
# No-op shim
# ---------------------------------------------------------------------------

def test_noop_span_accepts_everything():
    span = _NoOpSpan()
    span.set_attribute("key", "value")
    span.record_exception(RuntimeError("x"))
    span.set_status("ERROR")
    with span as s:
        assert s is span


def test_noop_tracer_returns_noop_span():
    with _NoOpTracer().start_as_current_span("test") as span:
        assert isinstance(span, _NoOpSpan)


def test_default_settings_keep_noop_tracer():
    assert setup_telemetry(DEFAULT_CONFIG) is False
    assert get_tracer() is _NOOP_TRACER


def test_disabled_telemetry_keeps_noop_tracer():
    settings = DEFAULT_CONFIG.model_copy(update={"telemetry": TelemetryConfig(enabled=False)})
    assert setup_telemetry(settings) is False
    assert get_tracer() is _NOOP_TRACER


def test_telemetry_config_defaults():
    cfg = TelemetryConfig()
    assert cfg.enabled is False
    assert cfg.service_name == "agentic-runtime"
    assert cfg.exporter == "none"


# ---------------------------------------------------------------------------
# Real OTEL with InMemorySpanExporter (requires opentelemetry-sdk)
# ---------------------------------------------------------------------------

try:
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import SimpleSpanProcessor
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
    _OTEL_AVAILABLE = True
except ImportError:
    _OTEL_AVAILABLE = False

otel_only = pytest.mark.skipif(not _OTEL_AVAILABLE, reason="opentelemetry-sdk not installed")


@otel_only
def test_console_exporter_installs_real_tracer():
    settings = DEFAULT_CONFIG.model_copy(
        update={"telemetry": TelemetryConfig(enabled=True, exporter="console", service_name="t")}
    )
    assert setup_telemetry(settings) is True
    assert get_tracer() is not _NOOP_TRACER


@otel_only
@pytest.mark.asyncio
async def test_run_emits_run_step_and_tool_spans():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    tel_mod._tracer = provider.get_tracer("test")

    model = ScriptedModel([calls_response(tool_call("echo", text="a")), final_response("ok")])
    orch = RunOrchestrator(RunConfig(model=model, tools=make_tools()))
    await orch.run("task")

    names = [s.name for s in exporter.get_finished_spans()]
    assert names.count("agent.step") == 2
    assert names.count("agent.tool_call") == 2
    assert names.count("agent.run") == 1
    run_span = next(s for s in exporter.get_finished_spans() if s.name == "agent.run")
    assert run_span.attributes["state"] == "success"
