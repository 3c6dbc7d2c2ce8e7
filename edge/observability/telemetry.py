"""Stackdriver telemetry: Cloud Trace spans, Cloud Monitoring metrics, trace propagation.

Telemetry is process-wide state: init_telemetry() runs once in the lifespan and
the resulting Telemetry object is stored at ``app.state.telemetry``. Request
code only touches it through ``trace_for()`` and ``record_request()``.

When telemetry is disabled no exporter is created (the Google exporters are
imported lazily, so a disabled deployment never needs Cloud credentials) and
``trace_for()`` always returns ``""``.

Propagation accepts both the W3C ``traceparent`` header and Google's
``X-Cloud-Trace-Context``. A recovered trace id is formatted the way Cloud
Logging correlates log lines with traces:

    projects/<project>/traces/<32 lowercase hex digits>
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from opentelemetry import trace
from opentelemetry.propagators.cloud_trace_propagator import CloudTraceFormatPropagator
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from edge.config import Config
from edge.constants import TRACE_SAMPLING_RATE
from edge.utils.logger import get_logger

logger = get_logger(__name__)

SERVICE_NAME = "writing-edge"
INIT_SPAN_NAME = "init"


def build_propagator() -> TextMapPropagator:
    """W3C trace-context first, then the Cloud Trace header."""
    return CompositePropagator(
        [TraceContextTextMapPropagator(), CloudTraceFormatPropagator()]
    )


def format_trace(project_id: str, trace_id: int) -> str:
    return f"projects/{project_id}/traces/{trace_id:032x}"


def extract_trace(
    headers: Mapping[str, str],
    project_id: str,
    propagator: Optional[TextMapPropagator] = None,
) -> str:
    """Recover the inbound trace id from request headers.

    Args:
        headers:    Case-insensitive header mapping (Starlette ``Headers``).
        project_id: Google Cloud project the trace belongs to.
        propagator: Defaults to build_propagator().

    Returns:
        ``projects/<project>/traces/<hex>`` or ``""`` when no valid context is present.
    """
    propagator = propagator or build_propagator()
    context = propagator.extract(carrier=headers)
    span_context = trace.get_current_span(context).get_span_context()
    if not span_context.is_valid:
        return ""
    return format_trace(project_id, span_context.trace_id)


@dataclass
class Telemetry:
    """Handles to the exporter pipeline. ``enabled=False`` means every call is a no-op."""

    enabled: bool
    project_id: str
    propagator: Optional[TextMapPropagator] = None
    tracer_provider: Any = None
    meter_provider: Any = None
    request_latency: Any = None

    @classmethod
    def disabled(cls, project_id: str = "") -> "Telemetry":
        return cls(enabled=False, project_id=project_id)

    def trace_for(self, headers: Mapping[str, str]) -> str:
        if not self.enabled:
            return ""
        return extract_trace(headers, self.project_id, self.propagator)

    def record_request(self, method: str, status: int, latency_ms: float) -> None:
        if self.request_latency is None:
            return
        self.request_latency.record(
            latency_ms, {"http.method": method, "http.status_code": status}
        )

    def shutdown(self) -> None:
        """Flush and stop the exporters. Errors are logged, never raised."""
        for name, provider in (
            ("tracer", self.tracer_provider),
            ("meter", self.meter_provider),
        ):
            if provider is None:
                continue
            try:
                provider.shutdown()
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Telemetry shutdown error (non-fatal)", provider=name, error=str(exc)
                )


def init_telemetry(config: Config) -> Telemetry:
    """Register the Cloud Trace / Cloud Monitoring exporters.

    Sampling rate is 1.0 (every trace is kept). A single ``init`` span is emitted
    to verify the export path.

    Raises:
        Exception: whatever the Google exporters raise when credentials or the
            project are unusable. Startup treats it as fatal.
    """
    project_id = config.telemetry.project_id
    if not config.telemetry.enabled:
        logger.debug("Telemetry disabled")
        return Telemetry.disabled(project_id)

    from opentelemetry import metrics
    from opentelemetry.exporter.cloud_monitoring import CloudMonitoringMetricsExporter
    from opentelemetry.exporter.cloud_trace import CloudTraceSpanExporter
    from opentelemetry.propagate import set_global_textmap
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

    resource = Resource.create({"service.name": SERVICE_NAME})

    tracer_provider = TracerProvider(
        resource=resource,
        sampler=TraceIdRatioBased(TRACE_SAMPLING_RATE),
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(CloudTraceSpanExporter(project_id=project_id))
    )
    trace.set_tracer_provider(tracer_provider)

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[
            PeriodicExportingMetricReader(
                CloudMonitoringMetricsExporter(project_id=project_id)
            )
        ],
    )
    metrics.set_meter_provider(meter_provider)
    request_latency = meter_provider.get_meter(SERVICE_NAME).create_histogram(
        "edge.request.latency",
        unit="ms",
        description="Time from request arrival to response finish",
    )

    propagator = build_propagator()
    set_global_textmap(propagator)

    with tracer_provider.get_tracer(SERVICE_NAME).start_as_current_span(INIT_SPAN_NAME):
        logger.info(
            "Telemetry enabled",
            project_id=project_id,
            sampling_rate=TRACE_SAMPLING_RATE,
        )

    return Telemetry(
        enabled=True,
        project_id=project_id,
        propagator=propagator,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        request_latency=request_latency,
    )
