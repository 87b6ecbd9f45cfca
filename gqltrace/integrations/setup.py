"""
OpenTelemetry tracer provider setup for gqltrace.

This module configures the OpenTelemetry SDK so an ``OpenTelemetryExtension`` has
somewhere to send its spans.

Example:
    >>> from gqltrace import OpenTelemetryExtension
    >>> from gqltrace.integrations import setup_tracing, get_tracer
    >>>
    >>> setup_tracing(service_name="graphql-api", console_output=True)
    >>> extension = OpenTelemetryExtension(tracer=get_tracer("graphql-api"))
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

logger = logging.getLogger(__name__)

# Global reference to the configured provider
_tracer_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    console_output: bool = False,
    use_batch_processor: bool = True,
    exporters: Optional[list[SpanExporter]] = None,
    set_global: bool = True,
) -> TracerProvider:
    """Setup an OpenTelemetry TracerProvider for GraphQL tracing.

    Args:
        service_name: Name of the service, recorded on every span's resource.
        console_output: Whether to also print finished spans to stdout.
        use_batch_processor: Use BatchSpanProcessor (True) or SimpleSpanProcessor.
        exporters: SpanExporters to send finished spans to.
        set_global: Install the provider as the global TracerProvider.

    Returns:
        The configured TracerProvider.

    Example:
        >>> from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
        ...     InMemorySpanExporter,
        ... )
        >>> provider = setup_tracing(
        ...     service_name="graphql-api",
        ...     exporters=[InMemorySpanExporter()],
        ...     use_batch_processor=False,
        ... )
    """
    global _tracer_provider

    resource = Resource.create({
        SERVICE_NAME: service_name,
    })
    provider = TracerProvider(resource=resource)

    all_exporters: list[SpanExporter] = list(exporters or [])
    if console_output:
        all_exporters.append(ConsoleSpanExporter())

    for exporter in all_exporters:
        if use_batch_processor:
            provider.add_span_processor(BatchSpanProcessor(exporter))
        else:
            provider.add_span_processor(SimpleSpanProcessor(exporter))

    if set_global:
        trace.set_tracer_provider(provider)
    _tracer_provider = provider

    logger.info(
        "Tracing configured: service=%s, exporters=%d, batch=%s",
        service_name,
        len(all_exporters),
        use_batch_processor,
    )

    return provider


def get_tracer(name: str, version: Optional[str] = None) -> trace.Tracer:
    """Get a tracer instance.

    Uses the provider configured by ``setup_tracing`` when there is one,
    otherwise the global provider.

    Args:
        name: Name of the tracer (usually module name).
        version: Optional version of the tracer.

    Returns:
        A Tracer instance for creating spans.
    """
    provider = _tracer_provider or trace.get_tracer_provider()
    return provider.get_tracer(name, version)


def shutdown_tracing() -> None:
    """Shutdown the tracing system.

    Flushes all pending spans and shuts down the TracerProvider.
    Call this on application shutdown to ensure all spans are exported.
    """
    global _tracer_provider

    if _tracer_provider:
        logger.info("Shutting down tracing...")
        _tracer_provider.shutdown()
        _tracer_provider = None
        logger.info("Tracing shutdown complete")
