"""OpenTelemetry initialization and sync span wrappers for the board calendar."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

_TRACER_NAME = "boardcal"

# Guard flag: True once the global TracerProvider has been installed.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str) -> trace.Tracer:
    """Install an OTLP-exporting TracerProvider named *service_name*.

    Only acts when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set and no provider was
    installed yet; otherwise the current (possibly no-op) provider is used.
    The gRPC exporter comes from the ``otlp`` extra.
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set; sync spans are not exported")
    elif _tracer_provider_installed:
        logger.debug("TracerProvider already installed; reusing it for %s", service_name)
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        _tracer_provider_installed = True
        logger.info("Exporting sync spans for %s to %s", service_name, endpoint)

    return trace.get_tracer(service_name)


class sync_span:
    """Create an OpenTelemetry span around one sync operation.

    Usage::

        with sync_span("load_all", board_id="12345") as span:
            ...

    The span is named ``boardcal.sync.<operation>`` and carries a
    ``board.id`` attribute. Exceptions are recorded on the span and the
    status is set to ERROR before the exception propagates.
    """

    def __init__(self, operation: str, *, board_id: str) -> None:
        self._operation = operation
        self._board_id = board_id
        self._span_name = f"boardcal.sync.{operation}"
        self._span: trace.Span | None = None
        self._token: object | None = None

    def __enter__(self) -> trace.Span:
        tracer = trace.get_tracer(_TRACER_NAME)
        self._span = tracer.start_span(self._span_name)
        self._span.set_attribute("board.id", self._board_id)
        self._span.set_attribute("sync.operation", self._operation)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)


def mark_span_error(span: trace.Span, error: str) -> None:
    """Flag a span as failed for operations that report errors as results."""
    span.set_status(trace.StatusCode.ERROR, error)
