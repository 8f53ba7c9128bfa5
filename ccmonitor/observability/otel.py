"""OpenTelemetry + Prometheus fallback wiring for the session monitor.

Instruments are declared once in ``METRICS`` and created for whichever
backend is active. Every ``record_*`` helper is a no-op when telemetry is
disabled or the optional packages are not installed.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI

from ccmonitor import config

logger = logging.getLogger("ccmonitor.observability")


@dataclass(frozen=True)
class MetricSpec:
    name: str
    kind: str  # "counter" | "histogram"
    description: str
    unit: str
    labels: tuple[str, ...]


METRICS: dict[str, MetricSpec] = {
    spec.name: spec
    for spec in (
        MetricSpec("ccmonitor_ingestion_events_total", "counter", "Count of log ingestion cycles", "1", ("surface", "result")),
        MetricSpec("ccmonitor_ingestion_latency_ms", "histogram", "Latency of log ingestion cycles", "ms", ("surface", "result")),
        MetricSpec("ccmonitor_parser_failures_total", "counter", "Count of undecodable log lines", "1", ("parser",)),
        MetricSpec("ccmonitor_tool_calls_total", "counter", "Tool call outcomes observed in live sessions", "1", ("tool", "status")),
        MetricSpec("ccmonitor_tool_duration_ms", "histogram", "Observed tool execution durations", "ms", ("tool",)),
        MetricSpec("ccmonitor_tokens_total", "counter", "Token totals by model", "1", ("model", "direction")),
        MetricSpec("ccmonitor_cost_usd_total", "counter", "Estimated cost totals by model", "usd", ("model",)),
    )
}

_initialized = False
_enabled = False
_tracer: Any | None = None
_providers: list[Any] = []
_fastapi_instrumentor: Any | None = None
_otel_instruments: dict[str, Any] = {}
_prom_instruments: dict[str, Any] = {}


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    endpoint = endpoint.rstrip("/")
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _label(value: str | None, default: str = "unknown") -> str:
    return (value or "").strip() or default


def _emit(name: str, value: float, labels: dict[str, str]) -> None:
    """Send one measurement to every active backend."""
    spec = METRICS[name]
    instrument = _otel_instruments.get(name) if _enabled else None
    if instrument is not None:
        if spec.kind == "counter":
            instrument.add(value, labels)
        else:
            instrument.record(value, labels)

    prom = _prom_instruments.get(name)
    if prom is not None:
        bound = prom.labels(**labels)
        if spec.kind == "counter":
            bound.inc(value)
        else:
            bound.observe(value)


def _start_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        kinds = {"counter": Counter, "histogram": Histogram}
        for spec in METRICS.values():
            _prom_instruments[spec.name] = kinds[spec.kind](spec.name, spec.description, list(spec.labels))
        logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_instruments.clear()


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _fastapi_instrumentor

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (CCMONITOR_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    service_name = config.OTEL_SERVICE_NAME or "ccmonitor"
    resource = Resource.create({"service.name": service_name, "service.namespace": "ccmonitor"})

    trace_provider = TracerProvider(resource=resource)
    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("ccmonitor")

    for spec in METRICS.values():
        factory = meter.create_counter if spec.kind == "counter" else meter.create_histogram
        _otel_instruments[spec.name] = factory(spec.name, unit=spec.unit, description=spec.description)

    _providers[:] = [meter_provider, trace_provider]
    _tracer = trace.get_tracer("ccmonitor")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in _providers:
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _providers.clear()
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_ingestion(surface: str, result: str, duration_ms: float) -> None:
    labels = {"surface": _label(surface), "result": _label(result)}
    _emit("ccmonitor_ingestion_events_total", 1, labels)
    _emit("ccmonitor_ingestion_latency_ms", max(0.0, float(duration_ms)), labels)


def record_parser_failure(parser: str) -> None:
    _emit("ccmonitor_parser_failures_total", 1, {"parser": _label(parser)})


def record_tool_result(tool: str, status: str, *, duration_ms: float = 0.0) -> None:
    tool_label = _label(tool)
    _emit("ccmonitor_tool_calls_total", 1, {"tool": tool_label, "status": _label(status)})
    if duration_ms > 0:
        _emit("ccmonitor_tool_duration_ms", float(duration_ms), {"tool": tool_label})


def record_token_cost(*, model: str, token_input: int, token_output: int, cost_usd: float) -> None:
    model_label = _label(model)
    for direction, count in (("input", token_input), ("output", token_output)):
        count = max(0, int(count))
        if count > 0:
            _emit("ccmonitor_tokens_total", count, {"model": model_label, "direction": direction})
    if cost_usd > 0:
        _emit("ccmonitor_cost_usd_total", float(cost_usd), {"model": model_label})


def is_enabled() -> bool:
    return _enabled
