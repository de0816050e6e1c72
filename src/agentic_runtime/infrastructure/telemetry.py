"""Optional OpenTelemetry tracing for the agent runtime.

With the ``otel`` extra installed (``pip install "agentic-runtime[otel]"``) and
``telemetry.enabled`` set, ``setup_telemetry`` installs a tracer provider and
``get_tracer`` hands out real spans. Otherwise every call returns a no-op
tracer, so the run loop is written once against the span API and never checks
whether OTEL is present.

Spans emitted by the runtime::

    agent.run        one per run (attributes: task_chars, max_steps, state)
    agent.planning   one per planning invocation (step)
    agent.step       one per action step (step, tool_calls, final)
    agent.tool_call  one per dispatched tool call (tool_name, error_type)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentic_runtime.config import RuntimeSettings

logger = logging.getLogger(__name__)


class _NoOpSpan:
    """Span stand-in that accepts attributes and exceptions and records nothing."""

    def set_attribute(self, key: str, value: Any) -> None:  # noqa: ARG002
        pass

    def record_exception(self, exc: BaseException) -> None:  # noqa: ARG002
        pass

    def set_status(self, *args: Any, **kwargs: Any) -> None:
        pass

    def __enter__(self) -> "_NoOpSpan":
        return self

    def __exit__(self, *args: Any) -> None:
        pass


class _NoOpTracer:
    def start_as_current_span(self, name: str, **kwargs: Any) -> _NoOpSpan:  # noqa: ARG002
        return _NoOpSpan()


_NOOP_TRACER = _NoOpTracer()

_tracer: Any = None
_otel_available: bool = False

try:
    import opentelemetry  # noqa: F401
    _otel_available = True
except ImportError:
    pass


def setup_telemetry(settings: "RuntimeSettings") -> bool:
    """Install a tracer provider from ``settings.telemetry``.

    Returns True when real tracing is active afterwards. Repeated calls keep the
    first provider. Disabled telemetry or a missing ``opentelemetry-sdk`` leave
    the no-op tracer in place.
    """
    global _tracer  # noqa: PLW0603

    if _tracer is not None:
        return True

    tel_cfg = settings.telemetry
    if tel_cfg is None or not tel_cfg.enabled:
        logger.debug("Telemetry disabled; spans go to the no-op tracer")
        return False

    if not _otel_available:
        logger.warning(
            "Telemetry is enabled but opentelemetry-sdk is not installed. "
            "Install with: pip install 'agentic-runtime[otel]'"
        )
        return False

    _install_provider(tel_cfg)
    return True


def _install_provider(tel_cfg: Any) -> None:
    global _tracer  # noqa: PLW0603

    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: tel_cfg.service_name}))

    if tel_cfg.exporter == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    elif tel_cfg.exporter == "otlp":
        if not tel_cfg.otlp_endpoint:
            logger.warning("exporter='otlp' without otlp_endpoint; spans will not be exported")
        else:
            try:
                from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            except ImportError:
                logger.warning(
                    "OTLP exporter requested but opentelemetry-exporter-otlp-proto-grpc is missing"
                )
            else:
                provider.add_span_processor(
                    BatchSpanProcessor(OTLPSpanExporter(endpoint=tel_cfg.otlp_endpoint))
                )
    elif tel_cfg.exporter != "none":
        logger.warning("Unknown telemetry exporter %r; spans will not be exported", tel_cfg.exporter)

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("agentic_runtime")
    logger.info("Telemetry on: exporter=%s service=%s", tel_cfg.exporter, tel_cfg.service_name)


def get_tracer() -> Any:
    """Active tracer; the no-op tracer until ``setup_telemetry`` succeeds."""
    return _tracer if _tracer is not None else _NOOP_TRACER


def reset_for_testing() -> None:
    global _tracer  # noqa: PLW0603
    _tracer = None
    if _otel_available:
        from opentelemetry import trace
        trace.set_tracer_provider(trace.NoOpTracerProvider())
